"""Local mirror directory writer; the only place that turns URLs into file names."""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Set, Tuple

from analysis.peers import collapsed_context, external_context
from lookup.models import DependencyInfo, LookupIndex, SameVersionGroups
from lookup.naming import build_filename, url_hash
from lookup.urls import contextual_url
from common.logging_utils import extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)


class MirrorWriter:
    """Persists fetched modules and keeps ``LookupIndex.url_to_file`` in sync."""

    def __init__(self, directory: str, index: LookupIndex, groups: SameVersionGroups):
        self.directory = directory
        self.index = index
        self.groups = groups
        self.created: Set[str] = set()
        os.makedirs(directory, exist_ok=True)

    def index_key(self, info: DependencyInfo) -> str:
        """URL under which ``info`` is registered (base + external context query)."""
        return contextual_url(info.url, external_context(info.name, info.peer_context, self.groups))

    def filename_for(self, info: DependencyInfo) -> Tuple[str, str]:
        """Return (index_key, filename) for ``info`` without touching the disk."""
        key = self.index_key(info)
        version = info.version.lstrip("^~")
        peers = collapsed_context(info.name, info.peer_context, self.groups)
        return key, build_filename(info.name, version, peers, url_hash(key))

    def path(self, filename: str) -> str:
        return os.path.join(self.directory, filename)

    def save(self, info: DependencyInfo) -> str:
        """Write ``info`` once per index key and register it; returns the index key."""
        key, filename = self.filename_for(info)
        if key in self.index.url_to_file and os.path.exists(self.path(self.index.url_to_file[key])):
            return key
        with open(self.path(filename), "w", encoding="utf-8") as handle:
            handle.write(info.content)
        self.index.url_to_file[key] = filename
        self.created.add(key)
        if is_debug_enabled(logger):
            logger.debug(
                "Saved %s",
                filename,
                extra=extra_context(
                    event="mirror_write",
                    component="mirror",
                    action="save",
                    target=safe_url(key),
                ),
            )
        return key

    def remove(self, url: str) -> Optional[str]:
        """Delete the file registered for ``url`` and every mapping pointing at it."""
        filename = self.index.url_to_file.get(url)
        if filename is None:
            return None
        file_path = self.path(filename)
        if os.path.exists(file_path):
            os.remove(file_path)
        for key in [k for k, v in self.index.url_to_file.items() if v == filename]:
            del self.index.url_to_file[key]
        logger.debug("Removed base copy %s", filename)
        return filename

    def read(self, filename: str) -> str:
        with open(self.path(filename), "r", encoding="utf-8") as handle:
            return handle.read()

    def write(self, filename: str, content: str) -> None:
        with open(self.path(filename), "w", encoding="utf-8") as handle:
            handle.write(content)

    def files_by_url(self) -> Dict[str, str]:
        """Registered mappings whose file exists on disk."""
        return {
            url: filename
            for url, filename in self.index.url_to_file.items()
            if os.path.exists(self.path(filename))
        }
