"""NPM registry package.

- client.py: packument retrieval, version listing and peer dependency lookup
"""

from .client import NpmRegistryClient, packument_url  # noqa: F401

__all__ = ["NpmRegistryClient", "packument_url"]
