"""Mirror file naming.

Grammar::

    file := enc(name) "@" version ["_" peer ("_" peer)*] "_" hash ".js"
    peer := enc(name) "-" semver

``enc`` replaces "/" with "+", which npm never allows in a package name, so
scoped names survive the round trip. ``hash`` is derived from the index URL
and keeps build artifacts of the same unit apart.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from constants import Constants

_SEMVER = r"\d+\.\d+\.\d+(?:-[0-9A-Za-z.]+)?(?:\+[0-9A-Za-z.]+)?"
_BASE_RE = re.compile(r"^(?P<name>@?[^@]+)@(?P<version>[^_]+)")
_TAIL_RE = re.compile(rf"^(?P<peers>(?:_.+?-{_SEMVER})*)_(?P<hash>[0-9a-f]+)\.js$")
_PEER_RE = re.compile(rf"_(?P<name>.+?)-(?P<version>{_SEMVER})(?=_|$)")


@dataclass(frozen=True)
class ParsedFilename:
    name: str
    version: str
    peer_context: Dict[str, str] = field(default_factory=dict)
    hash: str = ""

    @property
    def dep_key(self) -> str:
        return dep_key(self.name, self.version, self.peer_context)


def encode_name(name: str) -> str:
    return name.replace("/", "+")


def decode_name(encoded: str) -> str:
    return encoded.replace("+", "/")


def url_hash(url: str, length: Optional[int] = None) -> str:
    """Short md5 digest of the index URL."""
    size = length or Constants.FILENAME_HASH_LENGTH
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:size]


def peer_suffix(peer_context: Optional[Mapping[str, str]]) -> str:
    """``_peer-version`` segments, sorted by peer name."""
    if not peer_context:
        return ""
    return "".join(
        f"_{encode_name(peer)}-{peer_context[peer]}" for peer in sorted(peer_context)
    )


def build_filename(
    name: str, version: str, peer_context: Optional[Mapping[str, str]], hash_: str
) -> str:
    """Compose a mirror file name; ``peer_context`` is the collapsed context."""
    return f"{encode_name(name)}@{version}{peer_suffix(peer_context)}_{hash_}.js"


def parse_filename(filename: str) -> Optional[ParsedFilename]:
    """Inverse of ``build_filename``; None when ``filename`` does not follow the grammar."""
    base = _BASE_RE.match(filename)
    if not base:
        return None
    tail = _TAIL_RE.match(filename[base.end():])
    if not tail:
        return None
    peers = {
        decode_name(match.group("name")): match.group("version")
        for match in _PEER_RE.finditer(tail.group("peers"))
    }
    return ParsedFilename(
        name=decode_name(base.group("name")),
        version=base.group("version"),
        peer_context=peers,
        hash=tail.group("hash"),
    )


def dep_key(name: str, version: str, peer_context: Optional[Mapping[str, str]] = None) -> str:
    """Relative-import lookup key: ``name@version`` plus the collapsed peer suffix."""
    return f"{name}@{version}{peer_suffix(peer_context)}"
