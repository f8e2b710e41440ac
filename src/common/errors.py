"""Exception hierarchy shared by every pipeline stage.

Recoverable conditions (a missing package, a 404, an unsatisfiable range) are
raised as ``FetchError``/``RegistryError`` and handled by the stage that owns
the affected package. ``StructuralError`` and ``ConfigurationError`` are never
handled inside the pipeline; they reach the CLI and abort the run.
"""
from __future__ import annotations

from typing import Iterable, Optional


class MirrorError(Exception):
    """Base class for all esmirror errors."""


class ConfigurationError(MirrorError):
    """Invalid or missing configuration/index input."""


class IndexLockedError(MirrorError):
    """Another process currently owns the lookup index."""


class RegistryError(MirrorError):
    """Package metadata could not be obtained from the registry."""

    def __init__(self, package: str, message: str):
        super().__init__(f"{package}: {message}")
        self.package = package


class FetchError(MirrorError):
    """A URL could not be fetched (after retries, where applicable)."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status = status


class TransientFetchError(FetchError):
    """Timeout, connection failure or 5xx; eligible for retry."""


class NotFoundError(FetchError):
    """The resource does not exist (404/410)."""


class StructuralError(MirrorError):
    """The mirror is inconsistent and continuing would serve broken code."""

    def __init__(
        self,
        message: str,
        *,
        specifier: Optional[str] = None,
        unit: Optional[str] = None,
        candidates: Optional[Iterable[str]] = None,
    ):
        self.specifier = specifier
        self.unit = unit
        self.candidates = list(candidates or [])
        super().__init__(message)

    def __str__(self) -> str:
        lines = [self.args[0]]
        if self.specifier is not None:
            lines.append(f"  specifier: {self.specifier}")
        if self.unit is not None:
            lines.append(f"  from: {self.unit}")
        if self.candidates:
            lines.append("  candidates:")
            lines.extend(f"    - {c}" for c in self.candidates)
        return "\n".join(lines)
