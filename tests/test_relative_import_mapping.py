"""Tests for the relative-import mapper."""

import pytest

from common.errors import ConfigurationError, StructuralError
from lookup.index_store import IndexStore
from lookup.mirror import MirrorWriter
from lookup.models import LookupIndex, MirrorConfig, PackageSpec
from lookup.naming import build_filename, url_hash
from lookup.urls import CdnUrls, context_from_query, split_query
from postprocess.relative_imports import (
    MirroredUnit,
    RelativeImportMapper,
    is_relative,
    load_units,
    map_relative_imports,
)


CONFIG = MirrorConfig(
    packages={
        "pkg": PackageSpec("pkg", "https://cdn/pkg@{version}"),
        "lib-a": PackageSpec("lib-a", "https://cdn/lib-a@{version}"),
        "lib-b": PackageSpec("lib-b", "https://cdn/lib-b@{version}"),
    }
)


def add_file(writer, url, name, version, content):
    ctx = context_from_query(split_query(url)[1])
    filename = build_filename(name, version, ctx, url_hash(url))
    writer.write(filename, content)
    writer.index.url_to_file[url] = filename
    return filename


@pytest.fixture
def writer(tmp_path):
    return MirrorWriter(str(tmp_path / "deps"), LookupIndex(), CONFIG.groups)


def test_is_relative():
    assert is_relative("./a.js")
    assert is_relative("../a.js")
    assert not is_relative("/a@1.0.0")
    assert not is_relative("a")


class TestMapper:
    """Relative import trees per dep-key."""

    def test_sub_module_scenario(self, writer):
        urls = CdnUrls("https://cdn")
        add_file(writer, "https://cdn/pkg@1.0.0/index.js", "pkg", "1.0.0", 'import x from "./sub/mod";')
        add_file(writer, "https://cdn/pkg@1.0.0/sub/mod", "pkg", "1.0.0", "export default 1;")
        units = load_units(writer.index, writer, urls)
        trees = RelativeImportMapper(CONFIG, urls).build(units)
        assert list(trees) == ["pkg@1.0.0"]
        assert trees["pkg@1.0.0"].children["sub"].children["mod"].url == "https://cdn/pkg@1.0.0/sub/mod"

    def test_contextual_target_is_preferred(self, writer):
        urls = CdnUrls("https://cdn")
        for ctx in ("1.0.0", "1.1.0"):
            add_file(
                writer,
                f"https://cdn/lib-a@2.0.0/es2022/lib-a.mjs?lib-b={ctx}",
                "lib-a",
                "2.0.0",
                'import "./util.mjs";',
            )
            add_file(writer, f"https://cdn/lib-a@2.0.0/es2022/util.mjs?lib-b={ctx}", "lib-a", "2.0.0", "")
        trees = RelativeImportMapper(CONFIG, urls).build(load_units(writer.index, writer, urls))
        assert set(trees) == {"lib-a@2.0.0_lib-b-1.0.0", "lib-a@2.0.0_lib-b-1.1.0"}
        for ctx in ("1.0.0", "1.1.0"):
            leaf = trees[f"lib-a@2.0.0_lib-b-{ctx}"].children["util.mjs"]
            assert leaf.url == f"https://cdn/lib-a@2.0.0/es2022/util.mjs?lib-b={ctx}"

    def test_missing_target_is_structural(self):
        urls = CdnUrls("https://cdn")
        unit = MirroredUnit(
            url="https://cdn/pkg@1.0.0/index.js",
            filename="pkg@1.0.0_00000000.js",
            name="pkg",
            version="1.0.0",
            content='import "./missing.js";',
        )
        with pytest.raises(StructuralError) as excinfo:
            RelativeImportMapper(CONFIG, urls).build([unit])
        assert excinfo.value.specifier == "./missing.js"
        assert "pkg@1.0.0" in excinfo.value.unit

    def test_non_relative_imports_are_ignored(self, writer):
        urls = CdnUrls("https://cdn")
        add_file(
            writer,
            "https://cdn/pkg@1.0.0",
            "pkg",
            "1.0.0",
            'export * from "/pkg@1.0.0/es2022/pkg.mjs"; import "react";',
        )
        assert RelativeImportMapper(CONFIG, urls).build(load_units(writer.index, writer, urls)) == {}


class TestStage:
    def test_requires_index(self, tmp_path):
        with pytest.raises(ConfigurationError):
            map_relative_imports(CONFIG, IndexStore(str(tmp_path / "index.lookup.json")), str(tmp_path / "deps"))

    def test_persists_trees(self, tmp_path, writer):
        urls = CdnUrls("https://cdn")
        add_file(writer, "https://cdn/pkg@1.0.0/index.js", "pkg", "1.0.0", 'import x from "./sub/mod";')
        add_file(writer, "https://cdn/pkg@1.0.0/sub/mod", "pkg", "1.0.0", "export default 1;")
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        store.save(writer.index)
        map_relative_imports(CONFIG, store, writer.directory, urls)
        assert store.load().relative_imports == {
            "pkg@1.0.0": {"sub": {"mod": "https://cdn/pkg@1.0.0/sub/mod"}},
        }
