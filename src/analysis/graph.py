"""Dependency graph construction, depth assignment and incremental merge."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from analysis.peers import external_peer_dependencies
from analysis.permutations import PermutationEngine
from lookup.models import AnalyzedDependency, SameVersionGroups
from lookup.urls import contextual_url

logger = logging.getLogger(__name__)


@dataclass
class PackageInfo:
    """Registry facts about one selected version of a managed package."""
    name: str
    version: str
    url: str
    peer_dependencies: Dict[str, str] = field(default_factory=dict)


class DependencyGraphBuilder:
    """Turns package infos into depth-ordered ``AnalyzedDependency`` rows.

    A version with external peers is emitted once per permutation and never as a
    context-free base row; every other version is emitted as a single base row.
    """

    def __init__(self, managed: Sequence[str], groups: SameVersionGroups, engine: PermutationEngine):
        self.managed = list(managed)
        self.groups = groups
        self.engine = engine

    def build(self, infos: Iterable[PackageInfo]) -> List[AnalyzedDependency]:
        entries: List[AnalyzedDependency] = []
        for info in infos:
            external = external_peer_dependencies(
                info.name, info.peer_dependencies, self.managed, self.groups
            )
            if not external:
                entries.append(
                    AnalyzedDependency(
                        name=info.name,
                        version=info.version,
                        url=info.url,
                        peer_dependencies=dict(info.peer_dependencies),
                    )
                )
                continue
            contexts = self.engine.permutations(info.name, info.peer_dependencies)
            if not contexts:
                logger.warning(
                    "%s@%s cannot be resolved with the current catalog; skipped",
                    info.name, info.version,
                )
            for context in contexts:
                entries.append(
                    AnalyzedDependency(
                        name=info.name,
                        version=info.version,
                        url=contextual_url(info.url, context),
                        peer_context=context,
                        peer_dependencies=dict(info.peer_dependencies),
                    )
                )
        return self.sort(entries)

    @staticmethod
    def assign_depths(entries: List[AnalyzedDependency]) -> None:
        """Set ``depth`` on every entry in place.

        depth = 0 without peer context, else 1 + the max depth of the referenced
        peer versions. A (name, version) takes the max over all its entries;
        unknown peers count as 0 and cycles are cut at 0.
        """
        by_unit: Dict[Tuple[str, str], List[AnalyzedDependency]] = {}
        for entry in entries:
            by_unit.setdefault((entry.name, entry.version), []).append(entry)

        memo: Dict[Tuple[str, str], int] = {}
        visiting: Set[Tuple[str, str]] = set()

        def unit_depth(unit: Tuple[str, str]) -> int:
            if unit in memo:
                return memo[unit]
            if unit not in by_unit or unit in visiting:
                return 0
            visiting.add(unit)
            depth = max(entry_depth(entry) for entry in by_unit[unit])
            visiting.discard(unit)
            memo[unit] = depth
            return depth

        def entry_depth(entry: AnalyzedDependency) -> int:
            if not entry.peer_context:
                return 0
            return 1 + max(unit_depth((peer, version)) for peer, version in entry.peer_context.items())

        for entry in entries:
            entry.depth = entry_depth(entry)

    def sort(self, entries: List[AnalyzedDependency]) -> List[AnalyzedDependency]:
        """Assign depths and order by (depth, name); ties keep their input order."""
        self.assign_depths(entries)
        return sorted(entries, key=lambda entry: (entry.depth, entry.name))

    @staticmethod
    def filter_shadowed(entries: List[AnalyzedDependency]) -> Tuple[List[AnalyzedDependency], int]:
        """Drop context-free rows of units that also exist in permutation form."""
        contextual = {(e.name, e.version) for e in entries if e.peer_context}
        kept = [e for e in entries if e.peer_context or (e.name, e.version) not in contextual]
        return kept, len(entries) - len(kept)

    def merge(
        self,
        previous: List[AnalyzedDependency],
        current: List[AnalyzedDependency],
    ) -> List[AnalyzedDependency]:
        """Merge a fresh analysis into the persisted one, keyed by canonical key.

        Superseded rows take the new data but keep their lifecycle flags; new
        keys are appended.
        """
        merged: Dict[str, AnalyzedDependency] = {entry.key: entry for entry in previous}
        added = 0
        for entry in current:
            old: Optional[AnalyzedDependency] = merged.get(entry.key)
            if old is not None:
                entry.downloaded = entry.downloaded or old.downloaded
                entry.transformed = entry.transformed or old.transformed
            else:
                added += 1
            merged[entry.key] = entry
        rows, shadowed = self.filter_shadowed(list(merged.values()))
        logger.info(
            "Merged analysis: %d existing, %d new, %d shadowed base entries removed",
            len(previous), added, shadowed,
        )
        return self.sort(rows)

    @staticmethod
    def depth_distribution(entries: Iterable[AnalyzedDependency]) -> Dict[int, int]:
        return dict(sorted(Counter(entry.depth for entry in entries).items()))
