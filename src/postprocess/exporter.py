"""Export of the published version catalogue (``cdn-exports.json``)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from common.errors import ConfigurationError
from lookup.index_store import IndexStore
from lookup.models import LookupIndex

logger = logging.getLogger(__name__)

EXCLUDED_PACKAGE_FIELDS = ("depth", "peerDependencies")


def build_export(index: LookupIndex) -> Dict[str, Any]:
    """Shape the index into the export document.

    Args:
        index (LookupIndex): Loaded lookup index.

    Returns:
        dict: ``availableVersions``, ``standaloneSubpaths`` and ``packages``
        (without ``depth`` and ``peerDependencies``).
    """
    packages = []
    for pkg in index.packages:
        data = pkg.to_dict()
        for key in EXCLUDED_PACKAGE_FIELDS:
            data.pop(key, None)
        packages.append(data)
    return {
        "availableVersions": {k: list(v) for k, v in index.available_versions.items()},
        "standaloneSubpaths": index.standalone_subpaths or {},
        "packages": packages,
    }


def export_available_versions(store: IndexStore, path: str) -> Dict[str, Any]:
    """Write the export document for the index behind ``store`` to ``path``.

    Raises:
        ConfigurationError: the index is missing or the export cannot be written.
    """
    index = store.load(required=True)
    data = build_export(index)
    logger.info("Found %d packages with available versions", len(data["availableVersions"]))
    try:
        with open(path, "w", encoding="utf-8") as file:
            json.dump(data, file, ensure_ascii=False, indent=2)
    except OSError as e:
        logger.error("Export file couldn't be written to disk: %s", e)
        raise ConfigurationError(f"Cannot write {path}: {e}") from e
    logger.info("Exported to: %s", path)
    return data
