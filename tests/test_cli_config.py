"""Tests for CDN mapping loading and runtime overrides."""

import json
from types import SimpleNamespace

import pytest

from cli_config import apply_runtime_overrides, load_cdn_mappings, parse_cdn_mappings, validate_cdn_mappings
from common.errors import ConfigurationError
from constants import Constants


MAPPINGS = {
    "packages": {
        "react": "https://esm.sh/react@{version}",
        "react-dom": "https://esm.sh/react-dom@{version}",
        "@mui/material": "https://esm.sh/@mui/material@{version}",
        "@mui/material/styles": "https://esm.sh/@mui/material@{version}/styles",
    },
    "sameVersionRequired": [["react", "react-dom", "scheduler"]],
    "standaloneSubpaths": {"@mui/material": ["styles", {"name": "colors", "fromVersion": "5.0.0"}]},
}

TUNABLES = (
    "REGISTRY_URL_NPM",
    "CDN_ORIGIN",
    "REQUEST_TIMEOUT",
    "HTTP_RETRY_MAX",
    "FETCH_MAX_CONCURRENCY",
    "MIRROR_IMPORT_PREFIX",
)


@pytest.fixture
def constants(monkeypatch):
    """Restore tunables after each test and start from a clean environment."""
    for name in TUNABLES:
        monkeypatch.setattr(Constants, name, getattr(Constants, name))
    for env in (Constants.ENV_REGISTRY_URL, Constants.ENV_CDN_ORIGIN, Constants.ENV_MAX_CONCURRENCY):
        monkeypatch.delenv(env, raising=False)
    return monkeypatch


def cli_args(**overrides):
    values = dict(
        REGISTRY_URL=None, CDN_ORIGIN=None, TIMEOUT=None, RETRIES=None, CONCURRENCY=None, IMPORT_PREFIX=None
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestParse:
    """Structure validation of the mapping document."""

    def test_full_document(self):
        config = parse_cdn_mappings(MAPPINGS)
        assert config.managed == ["react", "react-dom", "@mui/material", "@mui/material/styles"]
        assert config.packages["react"].url_for("19.2.0") == "https://esm.sh/react@19.2.0"
        assert config.groups.to_list() == [["react", "react-dom"]]
        assert [c.name for c in config.standalone_subpaths["@mui/material"]] == ["styles", "colors"]
        assert config.standalone_subpaths["@mui/material"][1].from_version == "5.0.0"
        assert config.is_standalone_subpath("@mui/material/styles")
        assert not config.is_standalone_subpath("@mui/material")

    def test_optional_sections(self):
        config = parse_cdn_mappings({"packages": {"react": "https://esm.sh/react@{version}"}})
        assert len(config.groups) == 0
        assert config.standalone_subpaths == {}

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {},
            {"packages": {}},
            {"packages": {"react": "https://esm.sh/react"}},
            {"packages": {"react": 1}},
            {"packages": {"react": "https://esm.sh/react@{version}"}, "sameVersionRequired": ["react"]},
            {"packages": {"react": "https://esm.sh/react@{version}"}, "standaloneSubpaths": ["x"]},
            {"packages": {"react": "https://esm.sh/react@{version}"}, "standaloneSubpaths": {"react": "x"}},
            {"packages": {"react": "https://esm.sh/react@{version}"}, "standaloneSubpaths": {"react": [{}]}},
        ],
    )
    def test_invalid_documents(self, data):
        with pytest.raises(ConfigurationError):
            parse_cdn_mappings(data)


class TestLoad:
    def test_json_file(self, tmp_path):
        path = tmp_path / "cdn-mappings.json"
        path.write_text(json.dumps(MAPPINGS), encoding="utf-8")
        assert len(load_cdn_mappings(str(path)).packages) == 4

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "cdn-mappings.yaml"
        path.write_text(
            "packages:\n"
            "  react: https://esm.sh/react@{version}\n"
            "  react-dom: https://esm.sh/react-dom@{version}\n"
            "sameVersionRequired:\n"
            "  - [react, react-dom]\n",
            encoding="utf-8",
        )
        config = load_cdn_mappings(str(path))
        assert config.groups.group_of("react-dom") == ("react", "react-dom")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_cdn_mappings(str(tmp_path / "nope.json"))

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "cdn-mappings.yaml"
        path.write_text("packages: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_cdn_mappings(str(path))


class TestOverrides:
    """Environment overrides defaults, CLI overrides environment."""

    def test_defaults_untouched(self, constants):
        before = {name: getattr(Constants, name) for name in TUNABLES}
        apply_runtime_overrides(cli_args())
        assert {name: getattr(Constants, name) for name in TUNABLES} == before

    def test_environment(self, constants):
        constants.setenv(Constants.ENV_REGISTRY_URL, "https://registry.example.com")
        constants.setenv(Constants.ENV_CDN_ORIGIN, "https://cdn.example.com/")
        constants.setenv(Constants.ENV_MAX_CONCURRENCY, "4")
        apply_runtime_overrides(cli_args())
        assert Constants.REGISTRY_URL_NPM == "https://registry.example.com/"
        assert Constants.CDN_ORIGIN == "https://cdn.example.com"
        assert Constants.FETCH_MAX_CONCURRENCY == 4

    def test_cli_wins_over_environment(self, constants):
        constants.setenv(Constants.ENV_CDN_ORIGIN, "https://env.example.com")
        constants.setenv(Constants.ENV_MAX_CONCURRENCY, "4")
        apply_runtime_overrides(
            cli_args(CDN_ORIGIN="https://cli.example.com", CONCURRENCY=2, RETRIES=0, TIMEOUT=5, IMPORT_PREFIX="/vendor/")
        )
        assert Constants.CDN_ORIGIN == "https://cli.example.com"
        assert Constants.FETCH_MAX_CONCURRENCY == 2
        assert Constants.HTTP_RETRY_MAX == 1
        assert Constants.REQUEST_TIMEOUT == 5
        assert Constants.MIRROR_IMPORT_PREFIX == "/vendor/"

    def test_invalid_environment_integer(self, constants):
        constants.setenv(Constants.ENV_MAX_CONCURRENCY, "many")
        with pytest.raises(ConfigurationError):
            apply_runtime_overrides(cli_args())


class TestSchema:
    def test_error_names_the_offending_path(self):
        with pytest.raises(ConfigurationError) as excinfo:
            validate_cdn_mappings({"packages": {"react": "https://esm.sh/react"}})
        assert "packages/react" in str(excinfo.value)

    def test_valid_document_passes(self):
        validate_cdn_mappings(MAPPINGS)
