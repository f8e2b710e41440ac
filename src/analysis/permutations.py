"""Peer-context permutation generation.

Each external peer contributes one slot of candidate versions; peers that share
a same-version group collapse into a single slot resolved against the first
group member present in the constraints. The permutations are the Cartesian
product of all slots.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from analysis.peers import external_peer_dependencies
from lookup.models import SameVersionGroups
from versioning.resolvers.npm import InvalidRangeError, NpmVersionResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """One combinatorial dimension: the peers it pins and their candidate versions."""
    peers: Tuple[str, ...]
    versions: Tuple[str, ...]


class PermutationEngine:
    def __init__(
        self,
        managed: Sequence[str],
        groups: SameVersionGroups,
        available_versions: Mapping[str, Sequence[str]],
        resolver: Optional[NpmVersionResolver] = None,
    ):
        self.managed = list(managed)
        self.groups = groups
        self.available_versions = available_versions
        self.resolver = resolver or NpmVersionResolver()

    def _compatible(self, peer: str, constraint: str) -> List[str]:
        candidates = self.available_versions.get(peer, [])
        try:
            return self.resolver.filter_compatible(candidates, constraint)
        except InvalidRangeError as exc:
            logger.warning("Unsatisfiable peer constraint %s@%s: %s", peer, constraint, exc)
            return []

    def slots(self, name: str, peer_dependencies: Mapping[str, str]) -> List[Slot]:
        """Build the slots for ``name``: groups first, then independent peers."""
        external = external_peer_dependencies(name, peer_dependencies, self.managed, self.groups)
        group_slots: List[Slot] = []
        independent_slots: List[Slot] = []
        seen_groups = set()

        for peer in external:
            group = self.groups.group_of(peer)
            if group is None:
                independent_slots.append(
                    Slot((peer,), tuple(self._compatible(peer, external[peer])))
                )
                continue
            if group in seen_groups:
                continue
            seen_groups.add(group)
            primary = next(member for member in group if member in external)
            members = tuple(member for member in group if member in self.managed)
            group_slots.append(
                Slot(members, tuple(self._compatible(primary, external[primary])))
            )
        return group_slots + independent_slots

    def permutations(self, name: str, peer_dependencies: Mapping[str, str]) -> List[Dict[str, str]]:
        """Every peer context ``name`` must be mirrored under.

        An empty list means either no external peers or an unresolvable slot;
        callers tell the two apart through ``external_peer_dependencies``.
        """
        slots = self.slots(name, peer_dependencies)
        if not slots:
            return []
        empty = [slot.peers for slot in slots if not slot.versions]
        if empty:
            logger.warning(
                "No compatible versions for peer(s) %s of %s; no permutations generated",
                ", ".join(peer for peers in empty for peer in peers), name,
            )
            return []

        result = []
        for combination in itertools.product(*(slot.versions for slot in slots)):
            context: Dict[str, str] = {}
            for slot, version in zip(slots, combination):
                for peer in slot.peers:
                    context[peer] = version
            result.append(dict(sorted(context.items())))
        return result

    def count(self, name: str, peer_dependencies: Mapping[str, str]) -> int:
        """Number of permutations without materializing them."""
        slots = self.slots(name, peer_dependencies)
        if not slots:
            return 0
        total = 1
        for slot in slots:
            total *= len(slot.versions)
        return total
