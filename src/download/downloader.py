"""Download stage: fetch every analyzed unit in depth order and materialize contexts."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from constants import Constants
from common.errors import FetchError
from common.logging_utils import extra_context, safe_url, Timer
from analysis.peers import external_context
from download.fetcher import ContentFetcher, Transport
from download.replicator import PeerContextReplicator
from download.store import FetchStore
from lookup.index_store import IndexStore
from lookup.mirror import MirrorWriter
from lookup.models import AnalyzedDependency, DependencyInfo, LookupIndex, MirrorConfig
from lookup.urls import CdnUrls, contextual_url, split_query

logger = logging.getLogger(__name__)


class DependencyDownloader:
    """Runs the fetch/replicate/cleanup cycle over the persisted package list."""

    def __init__(
        self,
        config: MirrorConfig,
        store: IndexStore,
        mirror_dir: Optional[str] = None,
        urls: Optional[CdnUrls] = None,
        transport: Optional[Transport] = None,
        retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        concurrency: Optional[int] = None,
    ):
        self.config = config
        self.store = store
        self.mirror_dir = mirror_dir or Constants.MIRROR_DIR
        self.urls = urls or CdnUrls()
        self.transport = transport
        self.retries = retries
        self.base_delay = base_delay
        self.concurrency = concurrency

    def _already_mirrored(self, pkg: AnalyzedDependency, writer: MirrorWriter) -> bool:
        if not pkg.downloaded:
            return False
        key = contextual_url(pkg.url, external_context(pkg.name, pkg.peer_context, self.config.groups))
        return key in writer.files_by_url()

    async def _download(
        self,
        index: LookupIndex,
        writer: MirrorWriter,
        fetcher: ContentFetcher,
        replicator: PeerContextReplicator,
    ) -> List[DependencyInfo]:
        roots: List[DependencyInfo] = []
        async with fetcher.open():
            for pkg in index.packages:
                label = f"{pkg.name}@{pkg.version} (depth {pkg.depth}"
                label += f", peer context: {pkg.peer_context})" if pkg.peer_context else ")"
                if self._already_mirrored(pkg, writer):
                    logger.debug("Skipping %s: already mirrored", label)
                    continue
                logger.info("Downloading %s", label)
                base_url, _ = split_query(pkg.url)
                try:
                    info = await fetcher.fetch_tree(base_url)
                except FetchError as exc:
                    logger.warning(
                        "Failed to download %s: %s",
                        label, exc,
                        extra=extra_context(
                            event="fetch_failed",
                            component="downloader",
                            action="download",
                            outcome="skipped",
                            target=safe_url(base_url),
                        ),
                    )
                    continue
                if pkg.peer_context:
                    created = replicator.replicate(info, pkg.peer_context)
                    logger.debug("Created %d peer-context copies for %s", created, label)
                else:
                    roots.append(info)
                pkg.downloaded = True

            roots.extend(await self._download_managed_subpaths(index, fetcher, replicator))
        return roots

    async def _download_managed_subpaths(
        self,
        index: LookupIndex,
        fetcher: ContentFetcher,
        replicator: PeerContextReplicator,
    ) -> List[DependencyInfo]:
        fetched: List[DependencyInfo] = []
        for name in sorted(replicator.managed_subpaths):
            versions = []
            for pkg in index.packages:
                if pkg.name == name and not pkg.peer_context and pkg.version not in versions:
                    versions.append(pkg.version)
            for subpath in sorted(replicator.managed_subpaths[name]):
                logger.info("Downloading subpath %s%s for %d versions", name, subpath, len(versions))
                for version in versions:
                    url = f"{self.urls.origin}/{name}@{version}{subpath}"
                    if url in fetcher.store:
                        continue
                    try:
                        fetched.append(await fetcher.fetch_tree(url))
                    except FetchError as exc:
                        logger.warning("Failed to download %s: %s", safe_url(url), exc)
        return fetched

    def run(self) -> LookupIndex:
        """Run the stage and persist the updated index.

        Raises:
            ConfigurationError: no lookup index to work from.
        """
        index = self.store.load(required=True)
        writer = MirrorWriter(self.mirror_dir, index, self.config.groups)
        fetch_store = FetchStore()
        fetcher = ContentFetcher(
            self.urls,
            fetch_store,
            transport=self.transport,
            retries=self.retries,
            base_delay=self.base_delay,
            concurrency=self.concurrency,
            on_fetched=writer.save,
        )
        managed = set(self.config.managed) | {pkg.name for pkg in index.packages}
        replicator = PeerContextReplicator(fetch_store, writer, self.urls, self.config.groups, managed)

        with Timer() as timer:
            roots = asyncio.run(self._download(index, writer, fetcher, replicator))
            replicator.cleanup(roots)
            self.store.save(index)

        logger.info(
            "Dependency download complete: %d modules fetched, %d files mapped",
            len(fetch_store),
            len(index.url_to_file),
            extra=extra_context(
                event="stage_complete",
                component="downloader",
                action="download",
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )
        return index
