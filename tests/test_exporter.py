"""Tests for the version catalogue export."""

import json

import pytest

from common.errors import ConfigurationError
from lookup.index_store import IndexStore
from lookup.models import AnalyzedDependency, LookupIndex
from postprocess.exporter import build_export, export_available_versions


def sample_index():
    return LookupIndex(
        packages=[
            AnalyzedDependency(
                "lib-a",
                "2.0.0",
                "https://esm.sh/lib-a@2.0.0?lib-b=1.0.0",
                depth=1,
                peer_context={"lib-b": "1.0.0"},
                peer_dependencies={"lib-b": "^1.0.0"},
                downloaded=True,
                transformed=True,
            ),
        ],
        available_versions={"lib-a": ["2.0.0"]},
        standalone_subpaths={"@mui/material": ["styles"]},
    )


class TestExport:
    def test_build_export_drops_internal_fields(self):
        data = build_export(sample_index())
        assert data["availableVersions"] == {"lib-a": ["2.0.0"]}
        assert data["standaloneSubpaths"] == {"@mui/material": ["styles"]}
        assert data["packages"] == [
            {
                "name": "lib-a",
                "version": "2.0.0",
                "url": "https://esm.sh/lib-a@2.0.0?lib-b=1.0.0",
                "peerContext": {"lib-b": "1.0.0"},
                "downloaded": True,
                "transformed": True,
            }
        ]

    def test_missing_subpaths_export_as_empty(self):
        assert build_export(LookupIndex())["standaloneSubpaths"] == {}

    def test_writes_file(self, tmp_path):
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        store.save(sample_index())
        out = tmp_path / "cdn-exports.json"
        export_available_versions(store, str(out))
        assert json.loads(out.read_text(encoding="utf-8")) == build_export(sample_index())

    def test_unwritable_target(self, tmp_path):
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        store.save(sample_index())
        with pytest.raises(ConfigurationError):
            export_available_versions(store, str(tmp_path / "missing-dir" / "out.json"))
