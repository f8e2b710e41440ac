"""CDN mapping configuration loading and runtime tunable overrides.

Kept out of esmirror.py so the entrypoint only wires stages together. The
mapping file is read with ``yaml.safe_load`` (JSON is a YAML subset, so
``cdn-mappings.json`` works unchanged) and checked against a Draft-07 schema
before it is turned into a ``MirrorConfig``.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Mapping

import yaml
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from constants import Constants
from common.errors import ConfigurationError
from lookup.models import MirrorConfig, PackageSpec, SameVersionGroups, SubpathConfig

logger = logging.getLogger(__name__)

CDN_MAPPINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["packages"],
    "properties": {
        "packages": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {"type": "string", "pattern": re.escape(Constants.VERSION_PLACEHOLDER)},
        },
        "sameVersionRequired": {
            "type": "array",
            "items": {"type": "array", "items": {"type": "string"}},
        },
        "standaloneSubpaths": {
            "type": "object",
            "additionalProperties": {
                "type": "array",
                "items": {
                    "anyOf": [
                        {"type": "string"},
                        {
                            "type": "object",
                            "required": ["name"],
                            "properties": {
                                "name": {"type": "string"},
                                "fromVersion": {"type": "string"},
                            },
                        },
                    ]
                },
            },
        },
    },
}


def validate_cdn_mappings(data: Any) -> None:
    """Validate raw mapping data and raise on the most relevant error.

    Raises:
        ConfigurationError: the document does not match ``CDN_MAPPINGS_SCHEMA``.
    """
    error = best_match(Draft7Validator(CDN_MAPPINGS_SCHEMA).iter_errors(data))
    if error is not None:
        path = "/".join(str(p) for p in error.absolute_path)
        raise ConfigurationError(f"Invalid CDN mapping config at '{path}': {error.message}")


def _parse_packages(raw: Mapping[str, str]) -> Dict[str, PackageSpec]:
    return {str(name): PackageSpec(name=str(name), url_template=template) for name, template in raw.items()}


def _parse_groups(raw: Any, packages: Mapping[str, PackageSpec]) -> SameVersionGroups:
    groups: List[List[str]] = []
    for group in raw or []:
        members = []
        for member in group:
            if member not in packages:
                logger.warning("Ignoring unmanaged package %r in sameVersionRequired group", member)
                continue
            members.append(member)
        if members:
            groups.append(members)
    return SameVersionGroups(groups)


def _parse_subpaths(raw: Any, packages: Mapping[str, PackageSpec]) -> Dict[str, List[SubpathConfig]]:
    subpaths: Dict[str, List[SubpathConfig]] = {}
    for parent, entries in (raw or {}).items():
        configs = []
        for entry in entries:
            config = SubpathConfig.from_raw(entry)
            if f"{parent}/{config.name}" not in packages:
                logger.warning(
                    "Standalone subpath %s/%s has no entry in 'packages'; it will not be mirrored",
                    parent, config.name,
                )
            configs.append(config)
        subpaths[str(parent)] = configs
    return subpaths


def parse_cdn_mappings(data: Any) -> MirrorConfig:
    """Build a ``MirrorConfig`` from already parsed mapping data.

    Raises:
        ConfigurationError: malformed structure.
    """
    validate_cdn_mappings(data)
    packages = _parse_packages(data["packages"])
    return MirrorConfig(
        packages=packages,
        groups=_parse_groups(data.get("sameVersionRequired"), packages),
        standalone_subpaths=_parse_subpaths(data.get("standaloneSubpaths"), packages),
    )


def load_cdn_mappings(path: str) -> MirrorConfig:
    """Load the CDN mapping file (YAML, YML, or JSON).

    Raises:
        ConfigurationError: the file is missing, unreadable or malformed.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"CDN mapping config not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read CDN mapping config {path}: {e}") from e
    config = parse_cdn_mappings(data)
    logger.info(
        "Loaded %d packages and %d same-version groups from %s",
        len(config.packages), len(config.groups), path,
    )
    return config


def apply_runtime_overrides(args) -> None:
    """Apply environment overrides, then CLI overrides (highest precedence), to ``Constants``.

    Raises:
        ConfigurationError: an environment override is not a valid integer.
    """
    env_registry = os.environ.get(Constants.ENV_REGISTRY_URL)
    if env_registry and env_registry.strip():
        Constants.REGISTRY_URL_NPM = env_registry.strip().rstrip("/") + "/"
    env_origin = os.environ.get(Constants.ENV_CDN_ORIGIN)
    if env_origin and env_origin.strip():
        Constants.CDN_ORIGIN = env_origin.strip().rstrip("/")
    env_concurrency = os.environ.get(Constants.ENV_MAX_CONCURRENCY)
    if env_concurrency and env_concurrency.strip():
        try:
            Constants.FETCH_MAX_CONCURRENCY = max(1, int(env_concurrency))
        except ValueError as e:
            raise ConfigurationError(
                f"{Constants.ENV_MAX_CONCURRENCY} must be an integer, got {env_concurrency!r}"
            ) from e

    if getattr(args, "REGISTRY_URL", None):
        Constants.REGISTRY_URL_NPM = args.REGISTRY_URL.rstrip("/") + "/"
    if getattr(args, "CDN_ORIGIN", None):
        Constants.CDN_ORIGIN = args.CDN_ORIGIN.rstrip("/")
    if getattr(args, "TIMEOUT", None) is not None:
        Constants.REQUEST_TIMEOUT = int(args.TIMEOUT)
    if getattr(args, "RETRIES", None) is not None:
        Constants.HTTP_RETRY_MAX = max(1, int(args.RETRIES))
    if getattr(args, "CONCURRENCY", None) is not None:
        Constants.FETCH_MAX_CONCURRENCY = max(1, int(args.CONCURRENCY))
    if getattr(args, "IMPORT_PREFIX", None):
        Constants.MIRROR_IMPORT_PREFIX = args.IMPORT_PREFIX
