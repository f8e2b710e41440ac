"""End-to-end tests of the download stage and the post-processing stages after it."""

import os

import pytest

from common.errors import ConfigurationError, NotFoundError
from download.downloader import DependencyDownloader
from lookup.index_store import IndexStore
from lookup.models import AnalyzedDependency, LookupIndex, MirrorConfig, PackageSpec
from lookup.urls import CdnUrls
from postprocess.relative_imports import map_relative_imports
from postprocess.rewriter import transform_imports


ORIGIN = "https://esm.sh"
URLS = CdnUrls(ORIGIN)
CONFIG = MirrorConfig(
    packages={
        "lib-a": PackageSpec("lib-a", f"{ORIGIN}/lib-a@{{version}}"),
        "lib-b": PackageSpec("lib-b", f"{ORIGIN}/lib-b@{{version}}"),
    }
)

PAGES = {
    f"{ORIGIN}/lib-b@1.0.0": 'export * from "/lib-b@1.0.0/es2022/lib-b.mjs";\n',
    f"{ORIGIN}/lib-b@1.0.0/es2022/lib-b.mjs": "export const b = 1;\n",
    f"{ORIGIN}/lib-b@1.1.0": 'export * from "/lib-b@1.1.0/es2022/lib-b.mjs";\n',
    f"{ORIGIN}/lib-b@1.1.0/es2022/lib-b.mjs": "export const b = 11;\n",
    f"{ORIGIN}/lib-a@2.0.0": 'export * from "/lib-a@2.0.0/es2022/lib-a.mjs";\n',
    f"{ORIGIN}/lib-a@2.0.0/es2022/lib-a.mjs": 'import { u } from "./util.mjs";\nexport default u;\n',
    f"{ORIGIN}/lib-a@2.0.0/es2022/util.mjs": "export const u = 1;\n",
}


class FakeCdn:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        if url not in self.pages:
            raise NotFoundError(url, "not found", status=404)
        return self.pages[url]


def analyzed_index():
    return LookupIndex(
        packages=[
            AnalyzedDependency("lib-b", "1.0.0", f"{ORIGIN}/lib-b@1.0.0"),
            AnalyzedDependency("lib-b", "1.1.0", f"{ORIGIN}/lib-b@1.1.0"),
            AnalyzedDependency(
                "lib-a", "2.0.0", f"{ORIGIN}/lib-a@2.0.0?lib-b=1.0.0",
                depth=1, peer_context={"lib-b": "1.0.0"}, peer_dependencies={"lib-b": "^1.0.0"},
            ),
            AnalyzedDependency(
                "lib-a", "2.0.0", f"{ORIGIN}/lib-a@2.0.0?lib-b=1.1.0",
                depth=1, peer_context={"lib-b": "1.1.0"}, peer_dependencies={"lib-b": "^1.0.0"},
            ),
        ],
        available_versions={"lib-a": ["2.0.0"], "lib-b": ["1.1.0", "1.0.0"]},
    )


@pytest.fixture
def workspace(tmp_path):
    store = IndexStore(str(tmp_path / "index.lookup.json"))
    store.save(analyzed_index())
    return store, str(tmp_path / "deps")


def download(store, mirror_dir, cdn):
    return DependencyDownloader(
        CONFIG, store, mirror_dir=mirror_dir, urls=URLS, transport=cdn, retries=1, base_delay=0
    ).run()


class TestDownload:
    """Fetching, peer-context cloning and cleanup."""

    def test_contexts_are_materialized(self, workspace):
        store, mirror_dir = workspace
        index = download(store, mirror_dir, FakeCdn(PAGES))
        keys = set(index.url_to_file)
        for ctx in ("1.0.0", "1.1.0"):
            assert f"{ORIGIN}/lib-a@2.0.0?lib-b={ctx}" in keys
            assert f"{ORIGIN}/lib-a@2.0.0/es2022/lib-a.mjs?lib-b={ctx}" in keys
            assert f"{ORIGIN}/lib-a@2.0.0/es2022/util.mjs?lib-b={ctx}" in keys
        # Context-free lib-a copies only seeded the clones
        assert not any(key.startswith(f"{ORIGIN}/lib-a@") and "?" not in key for key in keys)
        assert len(keys) == 10
        assert sorted(os.listdir(mirror_dir)) == sorted(index.url_to_file.values())
        assert all(pkg.downloaded for pkg in index.packages)
        assert store.load().url_to_file == index.url_to_file

    def test_files_carry_peer_context_in_name(self, workspace):
        store, mirror_dir = workspace
        index = download(store, mirror_dir, FakeCdn(PAGES))
        filename = index.url_to_file[f"{ORIGIN}/lib-a@2.0.0?lib-b=1.1.0"]
        assert filename.startswith("lib-a@2.0.0_lib-b-1.1.0_")
        assert filename.endswith(".js")

    def test_second_run_fetches_nothing(self, workspace):
        store, mirror_dir = workspace
        first = download(store, mirror_dir, FakeCdn(PAGES))
        cdn = FakeCdn(PAGES)
        second = download(store, mirror_dir, cdn)
        assert cdn.calls == []
        assert second.url_to_file == first.url_to_file

    def test_unavailable_package_is_skipped(self, workspace):
        store, mirror_dir = workspace
        pages = {url: body for url, body in PAGES.items() if "lib-b@1.1.0" not in url}
        index = download(store, mirror_dir, FakeCdn(pages))
        flags = {(pkg.name, pkg.version, str(pkg.peer_context)): pkg.downloaded for pkg in index.packages}
        assert flags[("lib-b", "1.1.0", "None")] is False
        assert flags[("lib-b", "1.0.0", "None")] is True
        assert not any("lib-b@1.1.0" in key and key.startswith(f"{ORIGIN}/lib-b") for key in index.url_to_file)

    def test_requires_index(self, tmp_path):
        with pytest.raises(ConfigurationError):
            download(IndexStore(str(tmp_path / "missing.json")), str(tmp_path / "deps"), FakeCdn(PAGES))


class TestPipeline:
    """download -> map-imports -> transform on the same mirror."""

    def test_imports_point_at_mirror(self, workspace):
        store, mirror_dir = workspace
        download(store, mirror_dir, FakeCdn(PAGES))
        mapped = map_relative_imports(CONFIG, store, mirror_dir, URLS)
        assert set(mapped.relative_imports) == {"lib-a@2.0.0_lib-b-1.0.0", "lib-a@2.0.0_lib-b-1.1.0"}

        stats = transform_imports(CONFIG, store, mirror_dir, URLS)
        assert stats.packages_marked == 4
        index = store.load()
        files = index.url_to_file

        def read(url):
            with open(os.path.join(mirror_dir, files[url]), "r", encoding="utf-8") as handle:
                return handle.read()

        for ctx in ("1.0.0", "1.1.0"):
            root = read(f"{ORIGIN}/lib-a@2.0.0?lib-b={ctx}")
            assert root == f'export * from "/dependencies/{files[f"{ORIGIN}/lib-a@2.0.0/es2022/lib-a.mjs?lib-b={ctx}"]}";\n'
            module = read(f"{ORIGIN}/lib-a@2.0.0/es2022/lib-a.mjs?lib-b={ctx}")
            util = files[f"{ORIGIN}/lib-a@2.0.0/es2022/util.mjs?lib-b={ctx}"]
            assert f'import {{ u }} from "/dependencies/{util}";' in module
        assert read(f"{ORIGIN}/lib-b@1.1.0") == (
            f'export * from "/dependencies/{files[f"{ORIGIN}/lib-b@1.1.0/es2022/lib-b.mjs"]}";\n'
        )
        assert transform_imports(CONFIG, store, mirror_dir, URLS).replacements == 0
