"""NPM version matching using semantic versioning."""

import logging
import re
from typing import Iterable, List, Optional, Union

import semantic_version

logger = logging.getLogger(__name__)

WILDCARD = "*"

RangeSpec = Union[semantic_version.NpmSpec, semantic_version.SimpleSpec]


class InvalidRangeError(ValueError):
    """Raised when a constraint cannot be parsed as an npm range."""


class NpmVersionResolver:
    """Parses npm versions and ranges and filters candidates against them."""

    @staticmethod
    def parse(version: str) -> Optional[semantic_version.Version]:
        """Parse a version string, tolerating a leading 'v' or '='; None if invalid."""
        if not version:
            return None
        cleaned = version.strip().lstrip("=v").strip()
        try:
            return semantic_version.Version(cleaned)
        except ValueError:
            return None

    def is_stable(self, version: str) -> bool:
        """True for a valid semver without a pre-release component."""
        parsed = self.parse(version)
        return parsed is not None and not parsed.prerelease

    def sort_descending(self, versions: Iterable[str]) -> List[str]:
        """Sort valid versions newest first; invalid strings are dropped."""
        parsed = [(self.parse(v), v) for v in versions]
        valid = [(p, v) for p, v in parsed if p is not None]
        valid.sort(key=lambda item: item[0], reverse=True)
        return [v for _, v in valid]

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3,<=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            return f">={m.group(1)},<={m.group(2)}"

        # x-ranges: 1.2.x or 1.x or 1.* -> convert to comparator pairs
        s2 = s.replace('*', 'x').lower()
        m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
        if m:
            major, minor = int(m.group(1)), int(m.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        m = re.match(r'^\s*(\d+)(?:\.x)?\s*$', s2)
        if m:
            major = int(m.group(1))
            return f">={major}.0.0,<{major + 1}.0.0"

        return spec_str

    def compile(self, constraint: str) -> RangeSpec:
        """Compile an npm range; NpmSpec first, normalized SimpleSpec as fallback.

        Raises:
            InvalidRangeError: neither grammar accepts the constraint.
        """
        text = (constraint or "").strip() or WILDCARD
        try:
            return semantic_version.NpmSpec(text)
        except ValueError:
            try:
                return semantic_version.SimpleSpec(self._normalize_spec(text))
            except ValueError as exc:
                raise InvalidRangeError(f"Invalid semver range '{constraint}': {exc}") from exc

    def satisfies(self, version: str, constraint: str) -> bool:
        """True if ``version`` matches ``constraint``; invalid input never matches."""
        parsed = self.parse(version)
        if parsed is None:
            return False
        try:
            spec = self.compile(constraint)
        except InvalidRangeError:
            return False
        return spec.match(parsed)

    def filter_compatible(self, versions: Iterable[str], constraint: str) -> List[str]:
        """Return the versions satisfying ``constraint``, preserving input order.

        Raises:
            InvalidRangeError: the constraint cannot be parsed.
        """
        spec = self.compile(constraint)
        compatible = []
        for version in versions:
            parsed = self.parse(version)
            if parsed is None:
                logger.debug("Skipping invalid version %r", version)
                continue
            if spec.match(parsed):
                compatible.append(version)
        return compatible
