"""NPM registry client: published versions and per-version peer dependencies."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from constants import Constants
from common.errors import RegistryError
from common.http_client import get_json
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

PACKUMENT_HEADERS = {
    "Accept": "application/json",
}


def packument_url(package_name: str, base_url: Optional[str] = None) -> str:
    """Build the registry document URL; scoped names keep their '@' but encode '/'."""
    base = base_url or Constants.REGISTRY_URL_NPM
    if not base.endswith("/"):
        base += "/"
    return base + quote(package_name, safe="@")


class NpmRegistryClient:
    """Reads package metadata from an npm-compatible registry.

    Packuments are fetched once per package and kept for the lifetime of the
    client, so version discovery and peer lookups cost one request per package.
    """

    def __init__(self, base_url: Optional[str] = None):
        self._base_url = base_url or Constants.REGISTRY_URL_NPM
        self._packuments: Dict[str, Dict[str, Any]] = {}

    def get_packument(self, package_name: str) -> Dict[str, Any]:
        """Return the full registry document for ``package_name``.

        Raises:
            RegistryError: registry unreachable, package missing, or bad payload.
        """
        cached = self._packuments.get(package_name)
        if cached is not None:
            return cached

        url = packument_url(package_name, self._base_url)
        with Timer() as timer:
            status_code, _, data = get_json(url, headers=PACKUMENT_HEADERS)

        if is_debug_enabled(logger):
            logger.debug(
                "Registry response",
                extra=extra_context(
                    event="http_response",
                    component="registry",
                    action="get_packument",
                    status_code=status_code,
                    duration_ms=timer.duration_ms(),
                    target=safe_url(url),
                ),
            )

        if status_code == 0:
            raise RegistryError(package_name, "registry unreachable")
        if status_code == 404:
            raise RegistryError(package_name, "package not found in registry")
        if status_code != 200 or not isinstance(data, dict):
            raise RegistryError(package_name, f"unexpected registry response ({status_code})")

        self._packuments[package_name] = data
        return data

    def get_versions(self, package_name: str) -> List[str]:
        """Return every published version string, in registry order."""
        return list(self.get_packument(package_name).get("versions", {}).keys())

    def get_latest_tag(self, package_name: str) -> Optional[str]:
        """Return ``dist-tags.latest`` if the registry declares one."""
        dist_tags = self.get_packument(package_name).get("dist-tags", {})
        latest = dist_tags.get("latest") if isinstance(dist_tags, dict) else None
        return latest or None

    def get_peer_dependencies(self, package_name: str, version: str) -> Dict[str, str]:
        """Return the ``peerDependencies`` declared by ``package_name@version``.

        Falls back to the per-version document when the packument does not
        carry the version (abbreviated or stale registry mirrors).
        """
        version_info = self.get_packument(package_name).get("versions", {}).get(version)
        if version_info is None:
            url = f"{packument_url(package_name, self._base_url)}/{quote(version, safe='')}"
            status_code, _, version_info = get_json(url, headers=PACKUMENT_HEADERS)
            if status_code != 200 or not isinstance(version_info, dict):
                raise RegistryError(
                    package_name, f"could not fetch peer dependencies for {version}"
                )
        peers = version_info.get("peerDependencies") or {}
        if not isinstance(peers, dict):
            logger.warning("Ignoring malformed peerDependencies for %s@%s", package_name, version)
            return {}
        return {str(name): str(constraint) for name, constraint in peers.items()}
