"""Data models for the mirror configuration and the persisted lookup index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

PeerContext = Dict[str, str]
PeerDependencies = Dict[str, str]


@dataclass(frozen=True)
class PackageSpec:
    """A managed package and its CDN URL template (contains ``{version}``)."""
    name: str
    url_template: str

    def url_for(self, version: str, placeholder: str = "{version}") -> str:
        return self.url_template.replace(placeholder, version)


@dataclass(frozen=True)
class SubpathConfig:
    """A package-internal entry point mirrored as its own top-level unit."""
    name: str
    from_version: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Union[str, Mapping[str, Any]]) -> "SubpathConfig":
        if isinstance(raw, str):
            return cls(name=raw)
        return cls(name=str(raw["name"]), from_version=raw.get("fromVersion"))

    def to_raw(self) -> Union[str, Dict[str, str]]:
        if self.from_version is None:
            return self.name
        return {"name": self.name, "fromVersion": self.from_version}


class SameVersionGroups:
    """Groups of packages whose versions must move in lockstep.

    The first member of each group is its primary; it decides the candidate
    versions of the group's combinatorial slot.
    """

    def __init__(self, groups: Sequence[Sequence[str]] = ()):
        self._groups: Tuple[Tuple[str, ...], ...] = tuple(
            tuple(group) for group in groups if group
        )

    def __iter__(self):
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def group_of(self, name: str) -> Optional[Tuple[str, ...]]:
        for group in self._groups:
            if name in group:
                return group
        return None

    @staticmethod
    def primary(group: Sequence[str]) -> str:
        return group[0]

    def to_list(self) -> List[List[str]]:
        return [list(group) for group in self._groups]


@dataclass(frozen=True)
class MirrorConfig:
    """Static configuration of one run."""
    packages: Dict[str, PackageSpec]
    groups: SameVersionGroups = field(default_factory=SameVersionGroups)
    standalone_subpaths: Dict[str, List[SubpathConfig]] = field(default_factory=dict)

    @property
    def managed(self) -> List[str]:
        return list(self.packages)

    def is_standalone_subpath(self, name: str) -> bool:
        """True if ``name`` is ``parent/sub`` declared under standaloneSubpaths."""
        for parent, configs in self.standalone_subpaths.items():
            prefix = parent + "/"
            if name.startswith(prefix) and any(c.name == name[len(prefix):] for c in configs):
                return True
        return False

    def standalone_subpaths_raw(self) -> Dict[str, List[Union[str, Dict[str, str]]]]:
        return {
            parent: [config.to_raw() for config in configs]
            for parent, configs in self.standalone_subpaths.items()
        }


def canonical_key(name: str, version: str, peer_context: Optional[Mapping[str, str]]) -> str:
    """Stable identity of a unit: ``name@version`` plus its sorted peer context."""
    if not peer_context:
        return f"{name}@{version}"
    suffix = ",".join(f"{peer}={peer_context[peer]}" for peer in sorted(peer_context))
    return f"{name}@{version}[{suffix}]"


@dataclass
class AnalyzedDependency:
    """One resolved unit of work, persisted in the lookup index."""
    name: str
    version: str
    url: str
    depth: int = 0
    peer_context: Optional[PeerContext] = None
    peer_dependencies: Optional[PeerDependencies] = None
    downloaded: bool = False
    transformed: bool = False

    @property
    def key(self) -> str:
        return canonical_key(self.name, self.version, self.peer_context)

    @property
    def has_peer_context(self) -> bool:
        return bool(self.peer_context)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "url": self.url,
        }
        if self.peer_context:
            data["peerContext"] = dict(self.peer_context)
        if self.peer_dependencies is not None:
            data["peerDependencies"] = dict(self.peer_dependencies)
        data["depth"] = self.depth
        data["downloaded"] = self.downloaded
        data["transformed"] = self.transformed
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalyzedDependency":
        return cls(
            name=data["name"],
            version=data["version"],
            url=data["url"],
            depth=int(data.get("depth", 0)),
            peer_context=dict(data["peerContext"]) if data.get("peerContext") else None,
            peer_dependencies=(
                dict(data["peerDependencies"]) if data.get("peerDependencies") is not None else None
            ),
            downloaded=bool(data.get("downloaded", False)),
            transformed=bool(data.get("transformed", False)),
        )


@dataclass
class DependencyInfo:
    """In-memory result of fetching one module; never persisted directly."""
    name: str
    version: str
    url: str
    content: str
    imports: List[str] = field(default_factory=list)
    is_leaf: bool = True
    peer_context: Optional[PeerContext] = None

    @property
    def base_url(self) -> str:
        return self.url.split("?", 1)[0]


@dataclass
class LookupIndex:
    """The single persisted artifact shared by every stage."""
    packages: List[AnalyzedDependency] = field(default_factory=list)
    url_to_file: Dict[str, str] = field(default_factory=dict)
    relative_imports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    available_versions: Dict[str, List[str]] = field(default_factory=dict)
    standalone_subpaths: Optional[Dict[str, List[Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "packages": [pkg.to_dict() for pkg in self.packages],
            "urlToFile": dict(self.url_to_file),
            "relativeImports": self.relative_imports,
            "availableVersions": {k: list(v) for k, v in self.available_versions.items()},
        }
        if self.standalone_subpaths is not None:
            data["standaloneSubpaths"] = self.standalone_subpaths
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LookupIndex":
        return cls(
            packages=[AnalyzedDependency.from_dict(p) for p in data.get("packages", [])],
            url_to_file=dict(data.get("urlToFile", {})),
            relative_imports=dict(data.get("relativeImports", {})),
            available_versions={k: list(v) for k, v in data.get("availableVersions", {}).items()},
            standalone_subpaths=data.get("standaloneSubpaths"),
        )
