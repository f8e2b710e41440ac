"""Tests for the analysis stage."""

from common.errors import RegistryError
from analysis.analyzer import DependencyAnalyzer
from lookup.index_store import IndexStore
from lookup.models import MirrorConfig, PackageSpec, SameVersionGroups, SubpathConfig
from versioning.selector import VersionSelector


class FakeRegistry:
    """In-memory stand-in for ``NpmRegistryClient``."""

    def __init__(self, packages):
        self.packages = packages

    def _entry(self, name):
        if name not in self.packages:
            raise RegistryError(name, "package not found in registry")
        return self.packages[name]

    def get_versions(self, name):
        return list(self._entry(name))

    def get_latest_tag(self, name):
        versions = self.get_versions(name)
        return versions[-1] if versions else None

    def get_peer_dependencies(self, name, version):
        return dict(self._entry(name)[version])


def make_analyzer(config, store, packages):
    registry = FakeRegistry(packages)
    return DependencyAnalyzer(config, store, registry=registry, selector=VersionSelector(registry=registry, probe=False))


def spec(name):
    return PackageSpec(name, f"https://esm.sh/{name}@{{version}}")


class TestAnalyzer:
    """Registry discovery through to the persisted package list."""

    def test_peer_permutations_and_depth(self, tmp_path):
        config = MirrorConfig(packages={"lib-a": spec("lib-a"), "lib-b": spec("lib-b")})
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        registry = {
            "lib-a": {"2.0.0": {"lib-b": "^1.0.0"}},
            "lib-b": {"1.0.0": {}, "1.1.0": {}},
        }
        index = make_analyzer(config, store, registry).run()
        rows = [(pkg.name, pkg.version, pkg.peer_context, pkg.depth) for pkg in index.packages]
        assert rows[:2] == [("lib-b", "1.1.0", None, 0), ("lib-b", "1.0.0", None, 0)]
        assert sorted(rows[2:], key=lambda row: row[2]["lib-b"]) == [
            ("lib-a", "2.0.0", {"lib-b": "1.0.0"}, 1),
            ("lib-a", "2.0.0", {"lib-b": "1.1.0"}, 1),
        ]
        assert {pkg.url for pkg in index.packages if pkg.name == "lib-a"} == {
            "https://esm.sh/lib-a@2.0.0?lib-b=1.0.0",
            "https://esm.sh/lib-a@2.0.0?lib-b=1.1.0",
        }
        assert index.available_versions == {"lib-a": ["2.0.0"], "lib-b": ["1.1.0", "1.0.0"]}
        assert store.load().to_dict() == index.to_dict()

    def test_group_members_are_never_permuted(self, tmp_path):
        config = MirrorConfig(
            packages={"react": spec("react"), "react-dom": spec("react-dom")},
            groups=SameVersionGroups([["react", "react-dom"]]),
        )
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        registry = {
            "react": {"19.2.0": {}},
            "react-dom": {"19.2.0": {"react": "^19.2.0"}},
        }
        index = make_analyzer(config, store, registry).run()
        assert [(pkg.name, pkg.peer_context) for pkg in index.packages] == [("react", None), ("react-dom", None)]

    def test_rerun_keeps_lifecycle_flags(self, tmp_path):
        config = MirrorConfig(packages={"lib-b": spec("lib-b")})
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        registry = {"lib-b": {"1.0.0": {}}}
        index = make_analyzer(config, store, registry).run()
        index.packages[0].downloaded = True
        store.save(index)

        registry["lib-b"]["1.1.0"] = {}
        rerun = make_analyzer(config, store, registry).run()
        flags = {pkg.version: pkg.downloaded for pkg in rerun.packages}
        assert flags == {"1.0.0": True, "1.1.0": False}

    def test_registry_failure_skips_package(self, tmp_path):
        config = MirrorConfig(packages={"lib-b": spec("lib-b"), "gone": spec("gone")})
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        index = make_analyzer(config, store, {"lib-b": {"1.0.0": {}}}).run()
        assert [pkg.name for pkg in index.packages] == ["lib-b"]
        assert "gone" not in index.available_versions

    def test_standalone_subpaths(self, tmp_path):
        config = MirrorConfig(
            packages={
                "@mui/material": spec("@mui/material"),
                "@mui/material/styles": PackageSpec(
                    "@mui/material/styles", "https://esm.sh/@mui/material@{version}/styles"
                ),
            },
            standalone_subpaths={"@mui/material": [SubpathConfig("styles", from_version=">=7.0.0")]},
        )
        store = IndexStore(str(tmp_path / "index.lookup.json"))
        registry = {"@mui/material": {"6.5.0": {"react": "^19.0.0"}, "7.3.4": {"react": "^19.0.0"}}}
        index = make_analyzer(config, store, registry).run()
        assert index.available_versions["@mui/material/styles"] == ["7.3.4"]
        styles = [pkg for pkg in index.packages if pkg.name == "@mui/material/styles"]
        assert [(pkg.version, pkg.url) for pkg in styles] == [
            ("7.3.4", "https://esm.sh/@mui/material@7.3.4/styles"),
        ]
        assert styles[0].peer_dependencies == {"react": "^19.0.0"}
        assert index.standalone_subpaths == {"@mui/material": [{"name": "styles", "fromVersion": ">=7.0.0"}]}
