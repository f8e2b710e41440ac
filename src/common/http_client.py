"""Shared HTTP helpers used by the registry client, the version selector and
the content fetcher.

Synchronous calls go through ``requests``; CDN content is fetched concurrently
through an ``aiohttp`` session. Both paths share the same notion of a
transient failure (timeout, connection error, 5xx) and the same exponential
backoff schedule.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp
import requests

from constants import Constants
from common.errors import FetchError, NotFoundError, TransientFetchError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

NOT_FOUND_STATUSES = (404, 410)


def is_transient_status(status: int) -> bool:
    """Return True for HTTP statuses worth retrying."""
    return status >= 500


def backoff_delay(attempt: int, base_delay: Optional[float] = None) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2**(attempt-1)."""
    base = Constants.HTTP_RETRY_BASE_DELAY_SEC if base_delay is None else base_delay
    return base * (2 ** (attempt - 1))


# Simple in-memory cache for HTTP responses
_http_cache: Dict[str, Tuple[Any, float]] = {}


def _get_cache_key(method: str, url: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Generate cache key from request parameters."""
    headers_str = str(sorted(headers.items())) if headers else ""
    return f"{method}:{url}:{headers_str}"


def _is_cache_valid(cache_entry: Tuple[Any, float]) -> bool:
    """Check if cache entry is still valid."""
    _, cached_time = cache_entry
    return time.time() - cached_time < Constants.HTTP_CACHE_TTL_SEC


def clear_cache() -> None:
    """Drop every cached response."""
    _http_cache.clear()


def robust_request(
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], str]:
    """Perform a request with timeout, retries with backoff, and caching.

    Only transient failures are retried. Returns ``(status, headers, text)``;
    a status of 0 means every attempt failed at the transport level and the
    text carries the last error.
    """
    cache_key = _get_cache_key(method, url, headers)
    safe_target = safe_url(url)

    if cache_key in _http_cache and _is_cache_valid(_http_cache[cache_key]):
        cached_data, _ = _http_cache[cache_key]
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP cache hit",
                extra=extra_context(
                    event="cache_hit",
                    component="http_client",
                    action=method,
                    target=safe_target
                )
            )
        return cached_data

    last_exception = None
    retries = max(1, Constants.HTTP_RETRY_MAX)

    for attempt in range(1, retries + 1):
        if attempt > 1:
            time.sleep(backoff_delay(attempt - 1))
        with Timer() as t:
            try:
                response = requests.request(
                    method,
                    url,
                    timeout=Constants.REQUEST_TIMEOUT,
                    headers=headers,
                    **kwargs
                )
            except requests.Timeout:
                last_exception = "timeout"
                logger.debug(
                    "HTTP timeout",
                    extra=extra_context(
                        event="http_exception",
                        component="http_client",
                        action=method,
                        outcome="timeout",
                        attempt=attempt,
                        target=safe_target
                    )
                )
                continue
            except requests.RequestException as exc:  # includes ConnectionError
                last_exception = str(exc)
                logger.debug(
                    "HTTP request exception",
                    extra=extra_context(
                        event="http_exception",
                        component="http_client",
                        action=method,
                        outcome="request_exception",
                        attempt=attempt,
                        target=safe_target
                    )
                )
                continue

        if is_transient_status(response.status_code) and attempt < retries:
            last_exception = f"HTTP {response.status_code}"
            logger.warning(
                "%s %s returned %s (attempt %d/%d), retrying",
                method, safe_target, response.status_code, attempt, retries,
            )
            continue

        result = (response.status_code, dict(response.headers), response.text)
        if not is_transient_status(response.status_code):
            _http_cache[cache_key] = (result, time.time())

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action=method,
                    outcome="success",
                    status_code=response.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target
                )
            )
        return result

    return 0, {}, f"Request failed after {retries} attempts: {last_exception}"


def robust_get(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], str]:
    """GET with retries and caching; see ``robust_request``."""
    return robust_request("GET", url, headers=headers, **kwargs)


def get_json(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """Perform GET request and parse JSON response.

    Args:
        url: Target URL
        headers: Optional request headers
        **kwargs: Additional requests parameters

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none)
    """
    status_code, response_headers, text = robust_get(url, headers=headers, **kwargs)

    if status_code == 200 and text:
        try:
            return status_code, response_headers, json.loads(text)
        except json.JSONDecodeError:
            logger.debug(
                "JSON decode error",
                extra=extra_context(
                    event="parse",
                    component="http_client",
                    action="get_json",
                    outcome="json_decode_error",
                    status_code=status_code,
                    target=safe_url(url)
                )
            )
            return status_code, response_headers, None

    return status_code, response_headers, None


def probe_url(url: str) -> int:
    """Lightweight existence check; returns the final HTTP status (0 on failure)."""
    status_code, _, _ = robust_request("HEAD", url, allow_redirects=True)
    return status_code


async def fetch_text(session: aiohttp.ClientSession, url: str) -> str:
    """Fetch ``url`` once and return its body.

    Raises:
        TransientFetchError: timeout, connection failure, DNS failure or 5xx.
        NotFoundError: 404/410.
        FetchError: any other non-2xx status.
    """
    safe_target = safe_url(url)
    try:
        async with session.get(url) as response:
            if response.status in NOT_FOUND_STATUSES:
                raise NotFoundError(safe_target, "not found", status=response.status)
            if is_transient_status(response.status):
                raise TransientFetchError(
                    safe_target, f"server error {response.status}", status=response.status
                )
            if response.status >= 400:
                raise FetchError(safe_target, f"HTTP {response.status}", status=response.status)
            return await response.text()
    except asyncio.TimeoutError as exc:
        raise TransientFetchError(safe_target, "timeout") from exc
    except aiohttp.ClientConnectionError as exc:
        # Covers connection reset/refused, DNS failures and server disconnects
        raise TransientFetchError(safe_target, f"connection error: {exc}") from exc
    except aiohttp.ClientPayloadError as exc:
        raise TransientFetchError(safe_target, f"payload error: {exc}") from exc
    except aiohttp.ClientResponseError as exc:
        raise FetchError(safe_target, str(exc), status=exc.status) from exc
