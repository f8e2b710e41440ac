"""Peer-Context Replicator: clones fetched module trees into peer-qualified copies."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Set

from analysis.peers import external_context
from download.store import FetchStore
from lookup.mirror import MirrorWriter
from lookup.models import DependencyInfo, SameVersionGroups
from lookup.urls import CdnUrls, contextual_url

logger = logging.getLogger(__name__)


class PeerContextReplicator:
    """Materializes one peer context over an already fetched base tree.

    A unit is cloned when its projected (external) context is non-empty and it
    is not itself one of the pinned peers; pinned peers were fetched at the
    right version directly. Entry points of managed packages are not cloned
    but collected in ``managed_subpaths`` for a later per-version download.
    """

    def __init__(
        self,
        store: FetchStore,
        writer: MirrorWriter,
        urls: CdnUrls,
        groups: SameVersionGroups,
        managed: Iterable[str],
    ):
        self.store = store
        self.writer = writer
        self.urls = urls
        self.groups = groups
        self.managed = set(managed)
        self.managed_subpaths: Dict[str, Set[str]] = {}

    def _track_subpath(self, url: str) -> bool:
        found = self.urls.managed_subpath(url, self.managed)
        if found is None:
            return False
        name, _, subpath = found
        known = self.managed_subpaths.setdefault(name, set())
        if subpath not in known:
            known.add(subpath)
            logger.info("Tracked subpath: %s%s", name, subpath)
        return True

    def replicate(self, base: DependencyInfo, peer_context: Mapping[str, str]) -> int:
        """Clone ``base`` and its CDN imports under ``peer_context``; returns clones created."""
        created = 0
        worklist: List[DependencyInfo] = [base]
        while worklist:
            info = worklist.pop()
            if info.name in peer_context:
                continue
            context = external_context(info.name, peer_context, self.groups)
            if not context:
                continue
            clone_url = contextual_url(info.url, context)
            if clone_url in self.store:
                continue
            clone = replace(info, url=clone_url, peer_context=dict(context))
            self.store.put_if_absent(clone)
            self.writer.save(clone)
            created += 1

            for dep in info.imports:
                if not self.urls.is_cdn_url(dep):
                    continue
                if self._track_subpath(dep):
                    continue
                nested = self.store.get(dep)
                if nested is not None:
                    worklist.append(nested)
        return created

    def _reachable(self, roots: Iterable[DependencyInfo]) -> Set[str]:
        seen: Set[str] = set()
        worklist = [root.url for root in roots]
        while worklist:
            url = worklist.pop()
            if url in seen:
                continue
            seen.add(url)
            info = self.store.get(url)
            if info is None:
                continue
            worklist.extend(dep for dep in info.imports if self.urls.is_cdn_url(dep))
        return seen

    def cleanup(self, context_free_roots: Iterable[DependencyInfo]) -> int:
        """Delete base copies that only existed to seed a clone.

        A base copy is removed when it was written in this run, at least one
        peer-qualified clone of it exists, and no context-free unit of this run
        reaches it.
        """
        reachable = self._reachable(context_free_roots)
        removed = 0
        for info in self.store:
            if info.peer_context or info.url in reachable:
                continue
            key = self.writer.index_key(info)
            if key not in self.writer.created:
                continue
            clones = [entry for entry in self.store.list_by_base_url(info.url) if entry.peer_context]
            if not clones:
                continue
            if self.writer.remove(key) is not None:
                removed += 1
                logger.debug("Removed base version %s (%d contextual copies)", info.url, len(clones))
        if removed:
            logger.info("Removed %d base copies superseded by peer-context copies", removed)
        return removed
