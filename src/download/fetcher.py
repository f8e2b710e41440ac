"""Content Fetcher: retrieves CDN modules and crawls their import graph."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set

import aiohttp

from constants import Constants
from common.errors import FetchError, TransientFetchError
from common.http_client import backoff_delay, fetch_text
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from download.imports import extract_import_refs, has_cdn_reexports, specifiers
from download.store import FetchStore
from lookup.models import DependencyInfo
from lookup.urls import CdnUrls

logger = logging.getLogger(__name__)

Transport = Callable[[str], Awaitable[str]]


class ContentFetcher:
    """Fetches modules with retry/backoff and memoizes them in a ``FetchStore``.

    Nested imports are crawled with a bounded pool of workers draining a
    shared queue. A nested module that cannot be fetched is logged and
    skipped; only the failure of the requested root propagates.

    ``transport`` replaces the aiohttp session (tests pass a coroutine
    function mapping URL to body).

    ``on_fetched`` runs once per newly stored module, after the tree it
    belongs to has been crawled.
    """

    def __init__(
        self,
        urls: CdnUrls,
        store: Optional[FetchStore] = None,
        transport: Optional[Transport] = None,
        retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        concurrency: Optional[int] = None,
        on_fetched: Optional[Callable[[DependencyInfo], None]] = None,
    ):
        self.urls = urls
        self.store = store if store is not None else FetchStore()
        self.retries = max(1, retries if retries is not None else Constants.HTTP_RETRY_MAX)
        self.base_delay = base_delay
        self.concurrency = max(1, concurrency or Constants.FETCH_MAX_CONCURRENCY)
        self.on_fetched = on_fetched
        self.failed: Set[str] = set()
        self._unsaved: List[DependencyInfo] = []
        self._transport = transport
        self._session: Optional[aiohttp.ClientSession] = None

    @contextlib.asynccontextmanager
    async def open(self) -> AsyncIterator["ContentFetcher"]:
        """Open the HTTP session used when no transport was injected."""
        if self._transport is not None:
            yield self
            return
        timeout = aiohttp.ClientTimeout(total=Constants.REQUEST_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            self._session = session
            try:
                yield self
            finally:
                self._session = None

    async def _get(self, url: str) -> str:
        if self._transport is not None:
            return await self._transport(url)
        if self._session is None:
            raise RuntimeError("ContentFetcher.open() must be entered before fetching")
        return await fetch_text(self._session, url)

    def _build_info(self, url: str, content: str) -> DependencyInfo:
        refs = extract_import_refs(content)
        return DependencyInfo(
            name=self.urls.package_name(url),
            version=self.urls.version(url),
            url=url,
            content=content,
            imports=[self.urls.resolve(spec, url) for spec in specifiers(refs)],
            is_leaf=not has_cdn_reexports(refs, self.urls.is_cdn_url),
        )

    async def fetch_one(self, url: str) -> DependencyInfo:
        """Fetch and parse a single URL, retrying transient failures only.

        Raises:
            FetchError: permanent failure, or retries exhausted.
        """
        for attempt in range(1, self.retries + 1):
            try:
                with Timer() as timer:
                    content = await self._get(url)
            except TransientFetchError as exc:
                if attempt >= self.retries:
                    raise FetchError(
                        url, f"failed after {self.retries} attempts: {exc}", status=exc.status
                    ) from exc
                delay = backoff_delay(attempt, self.base_delay)
                logger.warning(
                    "Attempt %d/%d failed for %s, retrying in %.1fs",
                    attempt, self.retries, safe_url(url), delay,
                    extra=extra_context(
                        event="fetch_retry",
                        component="fetcher",
                        action="fetch",
                        outcome="transient_error",
                        attempt=attempt,
                        target=safe_url(url),
                    ),
                )
                await asyncio.sleep(delay)
                continue
            if is_debug_enabled(logger):
                logger.debug(
                    "Fetched %s",
                    safe_url(url),
                    extra=extra_context(
                        event="fetch",
                        component="fetcher",
                        action="fetch",
                        outcome="success",
                        duration_ms=timer.duration_ms(),
                        target=safe_url(url),
                    ),
                )
            return self._build_info(url, content)
        raise FetchError(url, "no fetch attempts made")

    def _record(self, info: DependencyInfo) -> DependencyInfo:
        stored = self.store.put_if_absent(info)
        if stored is info and self.on_fetched is not None:
            self._unsaved.append(info)
        return stored

    def _flush(self) -> None:
        unsaved, self._unsaved = self._unsaved, []
        for info in unsaved:
            self.on_fetched(info)

    async def _crawl(self, roots: List[DependencyInfo]) -> None:
        queue: "asyncio.Queue[str]" = asyncio.Queue()
        scheduled: Set[str] = set()
        errors: List[BaseException] = []

        def schedule(info: DependencyInfo) -> None:
            for dep in info.imports:
                if not self.urls.is_cdn_url(dep):
                    continue
                if dep in self.store or dep in scheduled or dep in self.failed:
                    continue
                scheduled.add(dep)
                queue.put_nowait(dep)

        async def worker() -> None:
            while True:
                url = await queue.get()
                try:
                    info = await self.fetch_one(url)
                except FetchError as exc:
                    self.failed.add(url)
                    logger.warning(
                        "Failed to download nested %s: %s",
                        safe_url(url), exc,
                        extra=extra_context(
                            event="fetch_failed",
                            component="fetcher",
                            action="crawl",
                            outcome="skipped",
                            target=safe_url(url),
                        ),
                    )
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    # Re-raised after the queue drains so other workers do not hang
                    errors.append(exc)
                else:
                    schedule(self._record(info))
                finally:
                    queue.task_done()

        for root in roots:
            schedule(root)
        if queue.empty():
            return
        workers = [asyncio.create_task(worker()) for _ in range(self.concurrency)]
        try:
            await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
        if errors:
            raise errors[0]

    async def fetch_tree(self, url: str) -> DependencyInfo:
        """Fetch ``url`` and everything it transitively imports from the CDN.

        Raises:
            FetchError: the root itself could not be fetched.
        """
        cached = self.store.get(url)
        if cached is not None:
            return cached
        root = self._record(await self.fetch_one(url))
        try:
            await self._crawl([root])
        finally:
            # Disk writes stay out of the crawl workers
            self._flush()
        return root
