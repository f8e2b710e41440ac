"""Analysis stage: registry discovery, permutations and the persisted graph."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from constants import Constants
from common.errors import RegistryError
from common.logging_utils import extra_context, Timer
from analysis.graph import DependencyGraphBuilder, PackageInfo
from analysis.permutations import PermutationEngine
from lookup.index_store import IndexStore
from lookup.models import LookupIndex, MirrorConfig
from registry.npm.client import NpmRegistryClient
from versioning.resolvers.npm import NpmVersionResolver, WILDCARD
from versioning.selector import VersionSelector

logger = logging.getLogger(__name__)


class DependencyAnalyzer:
    """Builds (or incrementally refreshes) the package list of the lookup index."""

    def __init__(
        self,
        config: MirrorConfig,
        store: IndexStore,
        registry: Optional[NpmRegistryClient] = None,
        selector: Optional[VersionSelector] = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry or NpmRegistryClient()
        self.selector = selector or VersionSelector(registry=self.registry)
        self.resolver = NpmVersionResolver()
        self.available_versions: Dict[str, List[str]] = {}
        self.infos: Dict[str, List[PackageInfo]] = {}

    def gather(self) -> None:
        """Select versions and read peer dependencies for every managed package."""
        for name, spec in self.config.packages.items():
            if self.config.is_standalone_subpath(name):
                logger.info("Skipping %s (standalone subpath, handled with its parent)", name)
                continue
            logger.info("Analyzing %s", name)
            try:
                versions = self.selector.select(spec)
            except RegistryError as exc:
                logger.warning(
                    "Skipping %s: %s",
                    name, exc,
                    extra=extra_context(
                        event="registry_error",
                        component="analyzer",
                        action="select",
                        outcome="skipped",
                        target=name,
                    ),
                )
                continue
            self.available_versions[name] = versions
            infos = []
            for version in versions:
                try:
                    peers = self.registry.get_peer_dependencies(name, version)
                except RegistryError as exc:
                    logger.warning("Skipping %s@%s: %s", name, version, exc)
                    continue
                infos.append(
                    PackageInfo(
                        name=name,
                        version=version,
                        url=spec.url_for(version, Constants.VERSION_PLACEHOLDER),
                        peer_dependencies=peers,
                    )
                )
            self.infos[name] = infos
            self._gather_standalone_subpaths(name, versions)

    def _gather_standalone_subpaths(self, parent: str, versions: List[str]) -> None:
        for subpath in self.config.standalone_subpaths.get(parent, []):
            full_name = f"{parent}/{subpath.name}"
            spec = self.config.packages.get(full_name)
            if spec is None:
                logger.warning("Subpath %s not found in packages mapping", full_name)
                continue
            applicable = list(versions)
            if subpath.from_version:
                applicable = [v for v in versions if self.resolver.satisfies(v, subpath.from_version)]
                if not applicable:
                    logger.info(
                        "Skipping %s: no versions match constraint %s",
                        full_name, subpath.from_version,
                    )
                    continue
                logger.info(
                    "Filtered %s to %d/%d versions matching %s",
                    full_name, len(applicable), len(versions), subpath.from_version,
                )
            self.available_versions[full_name] = applicable
            parent_peers = {info.version: info.peer_dependencies for info in self.infos.get(parent, [])}
            self.infos[full_name] = [
                PackageInfo(
                    name=full_name,
                    version=version,
                    url=spec.url_for(version, Constants.VERSION_PLACEHOLDER),
                    peer_dependencies=dict(parent_peers.get(version, {})),
                )
                for version in applicable
            ]

    def _log_permutation_counts(self, engine: PermutationEngine) -> None:
        for infos in self.infos.values():
            for info in infos:
                constrained = [c for c in info.peer_dependencies.values() if c.strip() != WILDCARD]
                logger.info(
                    "%s@%s: %d peer deps, permutations: %d",
                    info.name, info.version, len(constrained),
                    engine.count(info.name, info.peer_dependencies),
                )

    def run(self) -> LookupIndex:
        """Run the stage and persist the result; returns the saved index."""
        with Timer() as timer:
            self.gather()
            previous = self.store.load(required=False)
            available = dict(previous.available_versions)
            available.update(self.available_versions)

            engine = PermutationEngine(self.config.managed, self.config.groups, available)
            self._log_permutation_counts(engine)
            builder = DependencyGraphBuilder(self.config.managed, self.config.groups, engine)
            current = builder.build(info for infos in self.infos.values() for info in infos)
            packages = builder.merge(previous.packages, current)

            for depth, count in builder.depth_distribution(packages).items():
                logger.info("Depth %d: %d units", depth, count)

            previous.packages = packages
            previous.available_versions = available
            if self.config.standalone_subpaths:
                previous.standalone_subpaths = self.config.standalone_subpaths_raw()
            self.store.save(previous)

        logger.info(
            "Dependency analysis complete: %d units to download",
            len(packages),
            extra=extra_context(
                event="stage_complete",
                component="analyzer",
                action="analyze",
                outcome="success",
                duration_ms=timer.duration_ms(),
            ),
        )
        return previous
