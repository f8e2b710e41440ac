"""Centralized logging helpers.

Every module logs through ``logging.getLogger(__name__)``; this module only
provides the root configuration and a few helpers for structured ``extra``
payloads so log records stay greppable (``event=... component=...``).
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from constants import Constants

_SENSITIVE_KEYS = re.compile(r"(token|secret|password|auth|key|signature)", re.IGNORECASE)
_CONTEXT_FIELDS = ("event", "component", "action", "outcome", "target")


class _ContextFormatter(logging.Formatter):
    """Appends structured context fields (when present) to the message."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        ctx = getattr(record, "context", None)
        if not ctx or not _debug_context_enabled():
            return base
        parts = [f"{k}={ctx[k]}" for k in sorted(ctx)]
        return f"{base} [{' '.join(parts)}]"


def _debug_context_enabled() -> bool:
    return logging.getLogger().isEnabledFor(logging.DEBUG)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once, honoring ESMIRROR_LOG_LEVEL."""
    level_name = (level or os.environ.get(Constants.LOG_LEVEL_ENV) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not any(getattr(h, "_esmirror", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(_ContextFormatter(Constants.LOG_FORMAT))
        handler._esmirror = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping carrying structured context."""
    return {"context": {k: v for k, v in fields.items() if v is not None}}


def redact(value: str) -> str:
    """Mask a sensitive value for logs."""
    if not value:
        return value
    return "[REDACTED]"


def safe_url(url: str) -> str:
    """Strip credentials and sensitive query values from a URL for logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "[REDACTED]@" + netloc.rsplit("@", 1)[1]
    query = parts.query
    if query:
        pairs = [
            (k, redact(v) if _SENSITIVE_KEYS.search(k) else v)
            for k, v in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="[]^~@/")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, *exc: Any) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
