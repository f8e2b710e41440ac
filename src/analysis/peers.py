"""The single rule deciding which peers of a unit are external.

A peer is external to a unit when it is a managed package other than the unit
itself, is constrained by something narrower than ``*`` and does not share a
same-version group with the unit. Only external peers produce permutations,
contribute to depth, qualify mirror URLs and appear in file names and dep-keys.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from lookup.models import SameVersionGroups
from versioning.resolvers import WILDCARD


def is_external_peer(
    name: str,
    peer: str,
    groups: SameVersionGroups,
    constraint: Optional[str] = None,
    managed: Optional[Iterable[str]] = None,
) -> bool:
    """Return True if ``peer`` must be pinned separately for ``name``.

    ``constraint`` and ``managed`` are optional so the same rule can be applied
    to an already resolved peer context, where they were checked upstream.
    """
    if peer == name:
        return False
    if constraint is not None and constraint.strip() in ("", WILDCARD):
        return False
    if managed is not None and peer not in managed:
        return False
    if groups.group_of(name) is not None:
        # Group members are pinned by their group, never by combinatorics
        return False
    return True


def external_peer_dependencies(
    name: str,
    peer_dependencies: Mapping[str, str],
    managed: Iterable[str],
    groups: SameVersionGroups,
) -> Dict[str, str]:
    """Filter declared peer constraints down to the external ones, keeping order."""
    managed_set = set(managed)
    return {
        peer: constraint
        for peer, constraint in peer_dependencies.items()
        if is_external_peer(name, peer, groups, constraint, managed_set)
    }


def external_context(
    name: str,
    peer_context: Optional[Mapping[str, str]],
    groups: SameVersionGroups,
) -> Dict[str, str]:
    """Project a peer context onto ``name``, sorted by peer name.

    Used for URL queries, store keys and index keys.
    """
    if not peer_context:
        return {}
    return {
        peer: peer_context[peer]
        for peer in sorted(peer_context)
        if is_external_peer(name, peer, groups)
    }


def collapsed_context(
    name: str,
    peer_context: Optional[Mapping[str, str]],
    groups: SameVersionGroups,
) -> Dict[str, str]:
    """Like ``external_context`` but with one representative per group.

    The representative is the first group member present in the context. Used
    for file names and dep-keys, where group members would only repeat the
    same version.
    """
    context = external_context(name, peer_context, groups)
    collapsed: Dict[str, str] = {}
    seen_groups = set()
    for peer in context:
        group = groups.group_of(peer)
        if group is None:
            collapsed[peer] = context[peer]
            continue
        if group in seen_groups:
            continue
        seen_groups.add(group)
        representative = next(member for member in group if member in context)
        collapsed[representative] = context[representative]
    return dict(sorted(collapsed.items()))
