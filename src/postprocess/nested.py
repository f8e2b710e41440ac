"""Nested relative-import trees: interior nodes are path segments, leaves are URLs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class Leaf:
    url: str


@dataclass
class Branch:
    children: Dict[str, "PathNode"] = field(default_factory=dict)


PathNode = Union[Branch, Leaf]

# Key holding the leaf of a path that is also a prefix of other paths
SELF_KEY = ""


def split_path(path: str) -> List[str]:
    segments = [segment for segment in path.split("/") if segment]
    return segments or [SELF_KEY]


def set_path(root: Branch, path: str, url: str) -> None:
    """Insert ``url`` at ``path`` (``a/b/c.mjs``), creating branches as needed."""
    _set(root, split_path(path), url)


def _set(branch: Branch, segments: List[str], url: str) -> None:
    head, rest = segments[0], segments[1:]
    child = branch.children.get(head)
    if not rest:
        if isinstance(child, Branch):
            child.children[SELF_KEY] = Leaf(url)
        else:
            branch.children[head] = Leaf(url)
        return
    if child is None:
        child = Branch()
        branch.children[head] = child
    elif isinstance(child, Leaf):
        child = Branch({SELF_KEY: child})
        branch.children[head] = child
    _set(child, rest, url)


def get_path(root: PathNode, path: str) -> Optional[str]:
    """Resolve ``path``; a walk ending on a branch yields its own or first leaf."""
    return _get(root, split_path(path))


def _get(node: PathNode, segments: List[str]) -> Optional[str]:
    if isinstance(node, Leaf):
        return node.url if not segments else None
    if not segments:
        own = node.children.get(SELF_KEY)
        if isinstance(own, Leaf):
            return own.url
        for child in node.children.values():
            if isinstance(child, Leaf):
                return child.url
        return None
    child = node.children.get(segments[0])
    if child is None:
        return None
    return _get(child, segments[1:])


def to_json(node: PathNode) -> Any:
    if isinstance(node, Leaf):
        return node.url
    return {key: to_json(child) for key, child in node.children.items()}


def from_json(value: Any) -> PathNode:
    if isinstance(value, str):
        return Leaf(value)
    if isinstance(value, dict):
        return Branch({str(key): from_json(child) for key, child in value.items()})
    raise ValueError(f"Unexpected relative import node: {value!r}")


def count_leaves(node: PathNode) -> int:
    if isinstance(node, Leaf):
        return 1
    return sum(count_leaves(child) for child in node.children.values())
