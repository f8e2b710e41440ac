"""Tests for CDN URL interpretation and peer-context queries."""

import pytest

from lookup.urls import (
    CdnUrls,
    clean_constraint,
    context_from_query,
    context_query,
    contextual_url,
    is_package_import,
    split_query,
)


@pytest.fixture
def urls():
    return CdnUrls("https://esm.sh")


class TestContextQueries:
    """Peer-context qualified URLs."""

    def test_context_query_is_sorted(self):
        assert context_query({"react-dom": "19.2.0", "@emotion/react": "11.14.0"}) == (
            "@emotion/react=11.14.0&react-dom=19.2.0"
        )
        assert context_query({}) == ""
        assert context_query(None) == ""

    def test_contextual_url_replaces_existing_query(self):
        assert contextual_url("https://esm.sh/a@1.0.0?target=es2022", {"b": "1.0.0"}) == (
            "https://esm.sh/a@1.0.0?b=1.0.0"
        )
        assert contextual_url("https://esm.sh/a@1.0.0?b=1.0.0", {}) == "https://esm.sh/a@1.0.0"

    def test_context_round_trip(self):
        ctx = {"react": "19.2.0", "@emotion/react": "11.14.0"}
        _, query = split_query(contextual_url("https://esm.sh/x@1.0.0", ctx))
        assert context_from_query(query) == ctx
        assert context_from_query("") == {}


class TestRootRelative:
    """Root-relative package imports."""

    def test_is_package_import(self):
        assert is_package_import("/react@^19.1.1/jsx-runtime")
        assert is_package_import("/@mui/material@7.3.4/es2022/Button.mjs")
        assert not is_package_import("/node/process.mjs")
        assert not is_package_import("./local.js")

    def test_clean_constraint(self):
        assert clean_constraint("/react@^19.1.1/jsx-runtime") == "/react@19.1.1/jsx-runtime"
        assert clean_constraint("/react@~19.1.1") == "/react@19.1.1"
        assert clean_constraint("/react@19.1.1") == "/react@19.1.1"


class TestCdnUrls:
    """Package identity and resolution."""

    def test_package_name(self, urls):
        assert urls.package_name("https://esm.sh/react@19.2.0") == "react"
        assert urls.package_name("https://esm.sh/@mui/material@7.3.4/es2022/index.mjs") == "@mui/material"
        assert urls.package_name("https://esm.sh/react-dom@19.2.0/client?react=19.2.0") == "react-dom"

    def test_package_name_rejects_foreign_urls(self, urls):
        with pytest.raises(ValueError):
            urls.package_name("https://unpkg.com/react@19.2.0")

    def test_version(self):
        assert CdnUrls.version("https://esm.sh/react@19.2.0/es2022/react.mjs") == "19.2.0"
        assert CdnUrls.version("https://esm.sh/@mui/material@7.3.4?react=19.2.0") == "7.3.4"
        assert CdnUrls.version("https://esm.sh/react") == "latest"

    def test_package_path_strips_build_target(self, urls):
        assert urls.package_path("https://esm.sh/pkg@1.0.0/es2022/sub/mod.mjs", "pkg") == "sub/mod.mjs"
        assert urls.package_path("https://esm.sh/pkg@1.0.0/sub/mod?x=1", "pkg") == "sub/mod"
        assert urls.package_path("https://esm.sh/@s/p@1.0.0/denonext/a.mjs", "@s/p") == "a.mjs"
        assert urls.package_path("https://esm.sh/pkg@1.0.0", "pkg") == ""

    def test_package_path_mismatch(self, urls):
        assert urls.package_path("https://esm.sh/other@1.0.0/x.mjs", "pkg") is None
        assert urls.package_path("https://unpkg.com/pkg@1.0.0/x.mjs", "pkg") is None

    def test_resolve(self, urls):
        base = "https://esm.sh/pkg@1.0.0/es2022/index.mjs"
        assert urls.resolve("./sub/mod.mjs", base) == "https://esm.sh/pkg@1.0.0/es2022/sub/mod.mjs"
        assert urls.resolve("../x.mjs", base) == "https://esm.sh/pkg@1.0.0/x.mjs"
        assert urls.resolve("/react@^19.1.1/jsx-runtime", base) == "https://esm.sh/react@19.1.1/jsx-runtime"
        assert urls.resolve("/node/process.mjs", base) == "https://esm.sh/node/process.mjs"
        assert urls.resolve("https://cdn.example/x.js", base) == "https://cdn.example/x.js"
        assert urls.resolve("react", base) == "react"

    def test_resolve_never_escapes_origin(self, urls):
        assert urls.resolve("../../../x.mjs", "https://esm.sh/pkg@1.0.0/a.mjs") == "https://esm.sh/x.mjs"

    def test_managed_subpath(self, urls):
        managed = {"react", "@mui/material"}
        assert urls.managed_subpath("https://esm.sh/react@19.2.0/jsx-runtime", managed) == (
            "react", "19.2.0", "/jsx-runtime"
        )
        assert urls.managed_subpath("https://esm.sh/react@19.2.0/es2022/react.mjs", managed) is None
        assert urls.managed_subpath("https://esm.sh/react@19.2.0", managed) is None
        assert urls.managed_subpath("https://esm.sh/lodash@4.17.21/get", managed) is None
