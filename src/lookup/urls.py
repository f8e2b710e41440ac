"""CDN URL helpers: package identity, import resolution and peer-context queries."""

from __future__ import annotations

import re
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from constants import Constants

_PACKAGE_IMPORT = re.compile(r"^/(?:@[^/]+/)?[^/@]+@[\^~]?[\d.]+")
_CONSTRAINT_PREFIX = re.compile(r"@[\^~]")
_SCOPED_VERSION = re.compile(r"@[^/]+/[^@/]+@([^/?#]+)")
_UNSCOPED_VERSION = re.compile(r"/([^/@]+)@([^/?#]+)")
_BUILD_TARGET = re.compile(r"^(?:es20\d\d|esnext|denonext)$")
_PACKAGE_SUBPATH = re.compile(r"^/((?:@[^/]+/)?[^@/]+)@([^/]+)(/[^?]+)?")
_BUILD_ARTIFACT_SUFFIXES = (".js", ".mjs", ".cjs")


def split_query(url: str) -> Tuple[str, str]:
    """Split ``url`` into (base, query) without the '?'."""
    base, _, query = url.partition("?")
    return base, query


def context_query(peer_context: Optional[Mapping[str, str]]) -> str:
    """Canonical ``peer=version&...`` query, sorted by peer name."""
    if not peer_context:
        return ""
    return "&".join(f"{peer}={peer_context[peer]}" for peer in sorted(peer_context))


def contextual_url(url: str, peer_context: Optional[Mapping[str, str]]) -> str:
    """Qualify the base of ``url`` with a peer context; empty context gives the base."""
    base, _ = split_query(url)
    query = context_query(peer_context)
    return f"{base}?{query}" if query else base


def context_from_query(query: str) -> Dict[str, str]:
    """Parse a ``peer=version`` query back into a mapping."""
    if not query:
        return {}
    return {key: value for key, value in parse_qsl(query, keep_blank_values=False)}


def is_package_import(path: str) -> bool:
    """True for root-relative specifiers like ``/react@^19.1.1/jsx-runtime``."""
    return bool(_PACKAGE_IMPORT.match(path))


def clean_constraint(path: str) -> str:
    """Normalize ``@^1.2.3``/``@~1.2.3`` into ``@1.2.3`` (first occurrence)."""
    return _CONSTRAINT_PREFIX.sub("@", path, count=1)


class CdnUrls:
    """Interprets URLs served by one CDN origin (esm.sh layout)."""

    def __init__(self, origin: Optional[str] = None):
        self.origin = (origin or Constants.CDN_ORIGIN).rstrip("/")

    def is_cdn_url(self, url: str) -> bool:
        return url.startswith(self.origin + "/")

    def _segments(self, url: str):
        return [part for part in urlsplit(url).path.split("/") if part]

    def package_name(self, url: str) -> str:
        """Extract the package name from a CDN URL.

        Raises:
            ValueError: the URL does not belong to the CDN or has no path.
        """
        if not self.is_cdn_url(url):
            raise ValueError(f"Cannot extract package name from URL: {url}")
        parts = self._segments(url)
        if not parts:
            raise ValueError(f"Cannot extract package name from URL: {url}")
        if parts[0].startswith("@") and len(parts) > 1:
            return f"{parts[0]}/{parts[1].split('@')[0]}"
        return parts[0].split("@")[0]

    @staticmethod
    def version(url: str) -> str:
        """Extract the version segment; ``latest`` when none is present."""
        match = _SCOPED_VERSION.search(url)
        if match:
            return match.group(1)
        if "/@" not in url:
            match = _UNSCOPED_VERSION.search(url)
            if match:
                return match.group(2)
        return "latest"

    def package_path(self, url: str, package_name: str) -> Optional[str]:
        """Path inside the package after ``name@version``, build target stripped.

        Returns None when ``url`` does not address ``package_name``.
        """
        if not self.is_cdn_url(url):
            return None
        parts = self._segments(split_query(url)[0])
        if package_name.startswith("@"):
            if len(parts) < 2 or f"{parts[0]}/{parts[1].split('@')[0]}" != package_name:
                return None
            rest = parts[2:]
        else:
            if not parts or parts[0].split("@")[0] != package_name:
                return None
            rest = parts[1:]
        if rest and _BUILD_TARGET.match(rest[0]):
            rest = rest[1:]
        return "/".join(rest)

    def resolve(self, specifier: str, base_url: str) -> str:
        """Resolve an import specifier found in the file at ``base_url``.

        Absolute URLs pass through, root-relative package imports lose their
        range prefix, ``./`` and ``../`` are resolved segment by segment, and
        bare specifiers are returned unchanged.
        """
        if specifier.startswith(("http://", "https://")):
            return specifier
        parts = urlsplit(base_url)
        origin = f"{parts.scheme}://{parts.netloc}"
        if specifier.startswith("/"):
            if is_package_import(specifier):
                return origin + clean_constraint(specifier)
            return origin + specifier
        if specifier.startswith(("./", "../")):
            segments = parts.path.split("/")
            segments.pop()
            for part in specifier.split("/"):
                if part == ".":
                    continue
                if part == "..":
                    if len(segments) > 1:
                        segments.pop()
                else:
                    segments.append(part)
            return origin + "/".join(segments)
        return specifier

    def managed_subpath(self, url: str, managed) -> Optional[Tuple[str, str, str]]:
        """Return (package, version, "/subpath") for an entry point of a managed package.

        ``/react@19.2.0/jsx-runtime`` qualifies; build artifacts such as
        ``/react@19.2.0/es2022/react.mjs`` and the package root do not.
        """
        if not self.is_cdn_url(url):
            return None
        match = _PACKAGE_SUBPATH.match(urlsplit(url).path)
        if not match:
            return None
        name, version, subpath = match.groups()
        if not subpath or subpath.endswith(_BUILD_ARTIFACT_SUFFIXES):
            return None
        if name not in managed:
            return None
        return name, version, subpath
