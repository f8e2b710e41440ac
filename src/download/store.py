"""Run-scoped memo of fetched and cloned modules."""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional

from lookup.models import DependencyInfo
from lookup.urls import split_query


class FetchStore:
    """Holds every ``DependencyInfo`` produced in a run, keyed by exact URL.

    Exposes only lookup, insert-once and listing by base URL so memoization
    stays the one piece of shared state between the fetcher, the replicator
    and the downloader.
    """

    def __init__(self):
        self._by_url: Dict[str, DependencyInfo] = {}
        self._by_base: Dict[str, List[str]] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._by_url

    def __len__(self) -> int:
        return len(self._by_url)

    def __iter__(self) -> Iterator[DependencyInfo]:
        return iter(list(self._by_url.values()))

    def get(self, url: str) -> Optional[DependencyInfo]:
        return self._by_url.get(url)

    def put_if_absent(self, info: DependencyInfo) -> DependencyInfo:
        """Insert ``info`` unless its URL is known; returns the stored entry."""
        existing = self._by_url.get(info.url)
        if existing is not None:
            return existing
        self._by_url[info.url] = info
        base, _ = split_query(info.url)
        self._by_base.setdefault(base, []).append(info.url)
        return info

    def list_by_base_url(self, base_url: str) -> List[DependencyInfo]:
        """All entries sharing ``base_url``, context-free first, in insertion order."""
        urls = self._by_base.get(split_query(base_url)[0], [])
        entries = [self._by_url[url] for url in urls]
        return sorted(entries, key=lambda info: bool(info.peer_context))
