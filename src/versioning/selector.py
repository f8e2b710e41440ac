"""Representative version selection per managed package."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import List, Optional, Tuple

from constants import Constants
from common.errors import RegistryError
from common.http_client import NOT_FOUND_STATUSES, probe_url
from common.logging_utils import extra_context, safe_url
from lookup.models import PackageSpec
from registry.npm.client import NpmRegistryClient
from versioning.resolvers.npm import NpmVersionResolver

logger = logging.getLogger(__name__)


class VersionSelector:
    """Picks the newest minor lines of the newest major lines of a package.

    For each of the ``major_lines`` most recent majors, the ``minor_lines``
    most recent minors are kept with their highest patch. Every pick is then
    probed on the CDN so the index never references versions it cannot serve.
    """

    def __init__(
        self,
        registry: Optional[NpmRegistryClient] = None,
        resolver: Optional[NpmVersionResolver] = None,
        major_lines: Optional[int] = None,
        minor_lines: Optional[int] = None,
        probe: bool = True,
    ):
        self.registry = registry or NpmRegistryClient()
        self.resolver = resolver or NpmVersionResolver()
        self.major_lines = major_lines or Constants.SELECT_MAJOR_LINES
        self.minor_lines = minor_lines or Constants.SELECT_MINOR_LINES
        self.probe = probe

    def pick(self, versions: List[str]) -> List[str]:
        """Apply the major/minor window to raw version strings (no I/O)."""
        stable = [v for v in versions if self.resolver.is_stable(v)]
        ordered = self.resolver.sort_descending(stable)

        # major -> (major, minor) -> highest patch, newest first
        lines: "OrderedDict[int, OrderedDict[Tuple[int, int], str]]" = OrderedDict()
        for version in ordered:
            parsed = self.resolver.parse(version)
            minors = lines.setdefault(parsed.major, OrderedDict())
            minors.setdefault((parsed.major, parsed.minor), version)

        selected: List[str] = []
        for major in list(lines)[: self.major_lines]:
            for _, version in list(lines[major].items())[: self.minor_lines]:
                selected.append(version)
        return selected

    def _servable(self, spec: PackageSpec, version: str) -> bool:
        url = spec.url_for(version, Constants.VERSION_PLACEHOLDER)
        status = probe_url(url)
        if status in NOT_FOUND_STATUSES:
            logger.info(
                "Dropping %s@%s: not available on CDN (%s)",
                spec.name, version, status,
                extra=extra_context(
                    event="cdn_probe",
                    component="selector",
                    action="probe",
                    outcome="not_found",
                    target=safe_url(url),
                ),
            )
            return False
        if status == 0 or status >= 400:
            logger.warning(
                "CDN probe for %s@%s inconclusive (status %s); keeping version",
                spec.name, version, status,
                extra=extra_context(
                    event="cdn_probe",
                    component="selector",
                    action="probe",
                    outcome="inconclusive",
                    target=safe_url(url),
                ),
            )
        return True

    def select(self, spec: PackageSpec) -> List[str]:
        """Return the versions of ``spec.name`` to mirror, newest first.

        Raises:
            RegistryError: the registry cannot describe the package.
        """
        versions = self.registry.get_versions(spec.name)
        selected = self.pick(versions)
        if not selected:
            latest = self.registry.get_latest_tag(spec.name)
            if not latest:
                raise RegistryError(spec.name, "no stable versions and no 'latest' tag")
            logger.info("No stable versions for %s; falling back to latest (%s)", spec.name, latest)
            selected = [latest]

        if self.probe:
            selected = [v for v in selected if self._servable(spec, v)]
        logger.debug("Selected versions for %s: %s", spec.name, ", ".join(selected))
        return selected
