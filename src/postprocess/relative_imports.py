"""Relative-Import Mapper: per dep-key trees of where relative imports resolve."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from common.errors import StructuralError
from common.logging_utils import extra_context, Timer
from analysis.peers import collapsed_context
from download.imports import extract_imports
from lookup.mirror import MirrorWriter
from lookup.models import LookupIndex, MirrorConfig
from lookup.naming import dep_key
from lookup.urls import CdnUrls, context_from_query, contextual_url, split_query
from lookup.index_store import IndexStore
from postprocess.nested import Branch, count_leaves, set_path, to_json

logger = logging.getLogger(__name__)


def is_relative(specifier: str) -> bool:
    return specifier.startswith(("./", "../"))


@dataclass
class MirroredUnit:
    """A mirrored file as seen from the lookup index."""
    url: str
    filename: str
    name: str
    version: str
    peer_context: Dict[str, str] = field(default_factory=dict)
    content: str = ""

    @property
    def base_url(self) -> str:
        return split_query(self.url)[0]


def load_units(index: LookupIndex, writer: MirrorWriter, urls: CdnUrls) -> List[MirroredUnit]:
    """Materialize every ``url_to_file`` entry whose file exists on disk."""
    units = []
    for url, filename in writer.files_by_url().items():
        base, query = split_query(url)
        try:
            name = urls.package_name(base)
        except ValueError as exc:
            raise StructuralError(str(exc), unit=filename) from exc
        units.append(
            MirroredUnit(
                url=url,
                filename=filename,
                name=name,
                version=urls.version(base).lstrip("^~"),
                peer_context=context_from_query(query),
                content=writer.read(filename),
            )
        )
    missing = len(index.url_to_file) - len(units)
    if missing:
        logger.warning("%d mapped files are missing on disk", missing)
    return units


class RelativeImportMapper:
    """Resolves every relative import of every mirrored unit to a mirrored URL."""

    def __init__(self, config: MirrorConfig, urls: CdnUrls):
        self.config = config
        self.urls = urls

    def unit_dep_key(self, unit: MirroredUnit) -> str:
        return dep_key(
            unit.name,
            unit.version,
            collapsed_context(unit.name, unit.peer_context, self.config.groups),
        )

    def _match(self, absolute: str, unit: MirroredUnit, known: Dict[str, List[str]]) -> Optional[str]:
        base, _ = split_query(absolute)
        candidates = known.get(base, [])
        if unit.peer_context:
            contextual = contextual_url(absolute, unit.peer_context)
            if contextual in candidates:
                return contextual
        if absolute in candidates:
            return absolute
        if base in candidates:
            return base
        return candidates[0] if candidates else None

    def build(self, units: List[MirroredUnit]) -> Dict[str, Branch]:
        """Return dep-key -> tree for all relative imports observed in ``units``.

        Raises:
            StructuralError: a relative import has no mirrored target, or the
                target does not belong to the importing package.
        """
        known: Dict[str, List[str]] = {}
        for unit in units:
            known.setdefault(unit.base_url, []).append(unit.url)

        trees: Dict[str, Branch] = {}
        for unit in units:
            key = self.unit_dep_key(unit)
            for specifier in extract_imports(unit.content):
                if not is_relative(specifier):
                    continue
                absolute = self.urls.resolve(specifier, unit.base_url)
                matched = self._match(absolute, unit, known)
                if matched is None:
                    logger.error("No match found for relative import %r from %s", specifier, key)
                    raise StructuralError(
                        f"Failed to resolve relative import {specifier!r} to {absolute}",
                        specifier=specifier,
                        unit=f"{key} ({unit.filename})",
                        candidates=known.get(split_query(absolute)[0], []),
                    )
                package_path = self.urls.package_path(matched, unit.name)
                if package_path is None:
                    logger.error("Cannot extract package path from %s for %s", matched, unit.name)
                    raise StructuralError(
                        f"Failed to extract package path from {matched!r} for package {unit.name!r}",
                        specifier=specifier,
                        unit=f"{key} ({unit.filename})",
                        candidates=[matched],
                    )
                set_path(trees.setdefault(key, Branch()), package_path, matched)
                logger.debug("Mapped %s: %s -> %s = %s", key, specifier, package_path, matched)
        return trees


def map_relative_imports(
    config: MirrorConfig,
    store: IndexStore,
    mirror_dir: str,
    urls: Optional[CdnUrls] = None,
) -> LookupIndex:
    """Stage entry point: rebuild ``relativeImports`` from the mirrored files."""
    urls = urls or CdnUrls()
    index = store.load(required=True)
    writer = MirrorWriter(mirror_dir, index, config.groups)
    with Timer() as timer:
        units = load_units(index, writer, urls)
        trees = RelativeImportMapper(config, urls).build(units)
        index.relative_imports = {key: to_json(tree) for key, tree in trees.items()}
        store.save(index)
    logger.info(
        "Generated %d relative import mappings across %d dependencies",
        sum(count_leaves(tree) for tree in trees.values()),
        len(trees),
        extra=extra_context(
            event="stage_complete",
            component="relative_imports",
            action="map-imports",
            outcome="success",
            duration_ms=timer.duration_ms(),
        ),
    )
    return index
