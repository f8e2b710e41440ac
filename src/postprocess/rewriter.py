"""Import Rewriter: points every import of a mirrored file at its local copy."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote

from constants import Constants
from common.errors import StructuralError
from common.logging_utils import extra_context, is_debug_enabled, Timer
from analysis.peers import collapsed_context, external_context
from download.imports import extract_imports
from lookup.index_store import IndexStore
from lookup.mirror import MirrorWriter
from lookup.models import AnalyzedDependency, LookupIndex, MirrorConfig
from lookup.naming import parse_filename
from lookup.urls import CdnUrls, context_from_query, context_query, contextual_url, split_query
from postprocess.nested import from_json, get_path
from postprocess.relative_imports import is_relative
from versioning.resolvers.npm import NpmVersionResolver

logger = logging.getLogger(__name__)

_SCOPED_IMPORT = re.compile(r"^/(@[^/]+/[^@/?]+)(?:@[^/?]*)?([/?].*)?$")
_UNSCOPED_IMPORT = re.compile(r"^/([^@/?]+)(?:@[^/?]*)?([/?].*)?$")
_VERSION_SEGMENT = re.compile(r"^/(?:@[^/]+/)?[^@/?]+@([^/?]*)")

EXACT_SUBPATH_SCORE = 100
PARTIAL_SUBPATH_SCORE = 50
PACKAGE_SCORE = 1


def split_import_path(path: str) -> Optional[Tuple[str, str]]:
    """Split ``/name@range/sub?q`` into (name, "/sub"); the query is dropped."""
    match = _SCOPED_IMPORT.match(path) or _UNSCOPED_IMPORT.match(path)
    if not match:
        return None
    subpath = split_query(match.group(2) or "")[0]
    return match.group(1), subpath


def subpath_score(import_subpath: str, candidate_subpath: str) -> int:
    if not import_subpath:
        return PACKAGE_SCORE
    if candidate_subpath == import_subpath:
        return EXACT_SUBPATH_SCORE
    if import_subpath in candidate_subpath:
        return PARTIAL_SUBPATH_SCORE
    return PACKAGE_SCORE


def substitution_patterns(specifier: str) -> List[re.Pattern]:
    """Static, dynamic, bare and minified import forms quoting ``specifier``."""
    escaped = re.escape(specifier)
    return [
        re.compile(rf"((?:import|export)[^;]*?from\s*[\"']){escaped}([\"'])"),
        re.compile(rf"(import\s*\(\s*[\"']){escaped}([\"']\s*\))"),
        re.compile(rf"(import\s*[\"']){escaped}([\"'];?)"),
        re.compile(rf"((?:import|export)[^;]*?from[\"']){escaped}([\"'])"),
    ]


def substitute(content: str, specifier: str, replacement: str) -> Tuple[str, int]:
    """Replace quoted occurrences of ``specifier`` in import positions."""
    total = 0
    for pattern in substitution_patterns(specifier):
        content, count = pattern.subn(lambda m: f"{m.group(1)}{replacement}{m.group(2)}", content)
        total += count
    return content, total


@dataclass
class RewriteStats:
    total_files: int = 0
    skipped_files: int = 0
    processed_files: int = 0
    files_with_imports: int = 0
    replacements: int = 0
    packages_marked: int = 0


class ImportRewriter:
    """Rewrites CDN, root-relative and relative imports to mirror paths.

    A file is skipped when the package entry it belongs to is already
    ``transformed``. Any import that cannot be mapped aborts the run with a
    ``StructuralError``; bare specifiers and non-CDN URLs are left alone.
    """

    def __init__(
        self,
        config: MirrorConfig,
        index: LookupIndex,
        writer: MirrorWriter,
        urls: Optional[CdnUrls] = None,
        import_prefix: Optional[str] = None,
    ):
        self.config = config
        self.index = index
        self.writer = writer
        self.urls = urls or CdnUrls()
        self.import_prefix = import_prefix or Constants.MIRROR_IMPORT_PREFIX
        self.resolver = NpmVersionResolver()
        self._by_base: Dict[str, List[str]] = {}
        for url in index.url_to_file:
            self._by_base.setdefault(split_query(url)[0], []).append(url)

    def _unit_key(self, name: str, version: str, peer_context: Optional[Mapping[str, str]]):
        collapsed = collapsed_context(name, peer_context, self.config.groups)
        return name, version.lstrip("^~"), tuple(collapsed.items())

    def _packages_by_unit(self) -> Dict[tuple, List[AnalyzedDependency]]:
        grouped: Dict[tuple, List[AnalyzedDependency]] = {}
        for pkg in self.index.packages:
            key = self._unit_key(pkg.name, pkg.version, pkg.peer_context)
            grouped.setdefault(key, []).append(pkg)
        return grouped

    def _file_unit(self, url: str) -> tuple:
        base, query = split_query(url)
        name = self.urls.package_name(base)
        return self._unit_key(name, self.urls.version(base), context_from_query(query))

    def _preference(self, url: str, own_query: str) -> int:
        query = split_query(url)[1]
        if query == own_query:
            return 0
        if not query:
            return 1
        return 2

    def _lookup_absolute(self, absolute: str, own_context: Mapping[str, str]) -> Optional[str]:
        """Index key for a CDN URL: own context, then exact, then context-free, then any."""
        base = split_query(absolute)[0]
        candidates = self._by_base.get(base, [])
        if own_context:
            try:
                name = self.urls.package_name(base)
            except ValueError:
                name = None
            if name is not None:
                contextual = contextual_url(base, external_context(name, own_context, self.config.groups))
                if contextual in candidates:
                    return contextual
        for candidate in (absolute, base):
            if candidate in self.index.url_to_file:
                return candidate
        return candidates[0] if candidates else None

    def _in_range(self, url: str, wanted_range: str) -> bool:
        if not wanted_range:
            return True
        return self.resolver.satisfies(self.urls.version(split_query(url)[0]), wanted_range)

    def best_match(self, import_path: str, own_context: Optional[Mapping[str, str]] = None) -> Optional[str]:
        """Score every known URL of the imported package against ``import_path``."""
        parsed = split_import_path(import_path)
        if parsed is None:
            return None
        package, import_subpath = parsed
        version_match = _VERSION_SEGMENT.match(import_path)
        wanted_range = unquote(version_match.group(1)) if version_match else ""
        own_query = context_query(own_context)

        best: Optional[Tuple[Tuple[int, int, int], str]] = None
        for url in self.index.url_to_file:
            if not self.urls.is_cdn_url(url):
                continue
            path = url[len(self.urls.origin):]
            candidate = split_import_path(path)
            if candidate is None or candidate[0] != package:
                continue
            score = subpath_score(import_subpath, candidate[1])
            out_of_range = 0 if self._in_range(url, wanted_range) else 1
            rank = (-score, out_of_range, self._preference(url, own_query))
            if best is None or rank < best[0]:
                best = (rank, url)
        if best is not None and is_debug_enabled(logger):
            logger.debug("Best match for %s: %s (score %d)", import_path, best[1], -best[0][0])
        return best[1] if best else None

    def _resolve_root_relative(self, specifier: str, file_url: str, own_context: Mapping[str, str]) -> Optional[str]:
        absolute = self.urls.resolve(specifier, file_url)
        found = self._lookup_absolute(absolute, own_context)
        if found is not None:
            return found
        for url in self.index.url_to_file:
            if specifier in url:
                return url
        return self.best_match(specifier, own_context)

    def _resolve_relative(self, specifier: str, filename: str, file_url: str) -> Optional[str]:
        parsed = parse_filename(filename)
        if parsed is None:
            raise StructuralError(
                f"Cannot parse mirror file name {filename!r}", specifier=specifier, unit=filename
            )
        tree = self.index.relative_imports.get(parsed.dep_key)
        if tree is None:
            return None
        base = split_query(file_url)[0]
        absolute = self.urls.resolve(specifier, base)
        package_path = self.urls.package_path(absolute, parsed.name)
        if package_path is None:
            return None
        target = get_path(from_json(tree), package_path)
        if target is not None and target in self.index.url_to_file:
            return target
        return None

    def resolve(self, specifier: str, filename: str, file_url: str) -> Optional[str]:
        """Return the index key ``specifier`` maps to; None for imports left as they are.

        Raises:
            StructuralError: a CDN, root-relative or relative import has no mirrored file.
        """
        own_context = context_from_query(split_query(file_url)[1])
        if specifier.startswith(("http://", "https://")):
            if not self.urls.is_cdn_url(specifier):
                return None
            target = self._lookup_absolute(specifier, own_context)
        elif specifier.startswith("/"):
            target = self._resolve_root_relative(specifier, file_url, own_context)
        elif is_relative(specifier):
            target = self._resolve_relative(specifier, filename, file_url)
        else:
            return None
        if target is None:
            candidates = self._by_base.get(split_query(self.urls.resolve(specifier, file_url))[0], [])
            logger.error("No mapping found for import %r in %s", specifier, filename)
            raise StructuralError(
                f"No mapping found for import {specifier!r}",
                specifier=specifier,
                unit=f"{filename} ({file_url})",
                candidates=candidates,
            )
        return target

    def rewrite_file(self, filename: str, file_url: str) -> Tuple[int, int]:
        """Rewrite one file in place; returns (imports seen, substitutions made)."""
        content = self.writer.read(filename)
        imports = extract_imports(content)
        replacements = 0
        for specifier in imports:
            if specifier.startswith(self.import_prefix):
                continue
            target = self.resolve(specifier, filename, file_url)
            if target is None:
                continue
            replacement = self.import_prefix + self.index.url_to_file[target]
            if replacement == specifier:
                continue
            content, count = substitute(content, specifier, replacement)
            if count:
                replacements += 1
                logger.debug("  %s -> %s", specifier, replacement)
        if replacements:
            self.writer.write(filename, content)
        return len(imports), replacements

    def run(self) -> RewriteStats:
        stats = RewriteStats()
        packages = self._packages_by_unit()
        processed: List[AnalyzedDependency] = []
        for file_url, filename in sorted(self.writer.files_by_url().items()):
            stats.total_files += 1
            owners = packages.get(self._file_unit(file_url), [])
            if owners and all(pkg.transformed for pkg in owners):
                stats.skipped_files += 1
                continue
            seen, replacements = self.rewrite_file(filename, file_url)
            stats.processed_files += 1
            if seen:
                stats.files_with_imports += 1
            stats.replacements += replacements
            processed.extend(pkg for pkg in owners if not pkg.transformed)

        for pkg in processed:
            if not pkg.transformed:
                pkg.transformed = True
                stats.packages_marked += 1
        return stats


def transform_imports(
    config: MirrorConfig,
    store: IndexStore,
    mirror_dir: str,
    urls: Optional[CdnUrls] = None,
    import_prefix: Optional[str] = None,
) -> RewriteStats:
    """Stage entry point: rewrite all mirrored files and persist ``transformed`` flags."""
    index = store.load(required=True)
    writer = MirrorWriter(mirror_dir, index, config.groups)
    rewriter = ImportRewriter(config, index, writer, urls, import_prefix)
    with Timer() as timer:
        stats = rewriter.run()
        if stats.packages_marked:
            store.save(index)
    logger.info(
        "Transformation summary: %d files, %d skipped, %d processed, %d with imports, "
        "%d replacements, %d packages marked transformed",
        stats.total_files,
        stats.skipped_files,
        stats.processed_files,
        stats.files_with_imports,
        stats.replacements,
        stats.packages_marked,
        extra=extra_context(
            event="stage_complete",
            component="rewriter",
            action="transform",
            outcome="success",
            duration_ms=timer.duration_ms(),
        ),
    )
    return stats
