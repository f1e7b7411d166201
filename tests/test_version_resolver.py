"""
Tests for the version resolver — pins, Node.js index, npm dist-tags.
"""

import pytest

from offkit.adapters.mock import FakeHttpClient
from offkit.core.config.loader import validate_config
from offkit.core.config.settings import Settings
from offkit.core.errors import DownloadError
from offkit.core.services.version_resolver import (
    latest_node_tag,
    latest_pnpm_version,
    normalize_node_tag,
    resolve_versions,
)


def _config(**versions):
    return validate_config({
        "schema_version": 1,
        "platforms": {"linux_x64": True},
        "packages": ["typescript"],
        "versions": versions,
    })


class TestNormalize:

    def test_adds_prefix(self):
        assert normalize_node_tag("22.10.0") == "v22.10.0"

    def test_keeps_prefix(self):
        assert normalize_node_tag("v22.10.0") == "v22.10.0"


class TestLatest:
    """Looking up unpinned versions upstream."""

    def test_latest_node_skips_prereleases(self, upstream: FakeHttpClient, settings: Settings):
        assert latest_node_tag(upstream, settings) == "v22.10.0"

    def test_latest_node_no_stable(self, settings: Settings):
        http = FakeHttpClient({f"{settings.node_dist_url}/index.json": [{"version": "v23.0.0-rc.1"}]})
        with pytest.raises(DownloadError, match="No stable Node.js release"):
            latest_node_tag(http, settings)

    def test_latest_node_bad_index(self, settings: Settings):
        http = FakeHttpClient({f"{settings.node_dist_url}/index.json": {"oops": True}})
        with pytest.raises(DownloadError, match="Unexpected Node.js release index"):
            latest_node_tag(http, settings)

    def test_latest_pnpm(self, upstream: FakeHttpClient, settings: Settings):
        assert latest_pnpm_version(upstream, settings) == "9.1.0"

    def test_latest_pnpm_unusable(self, settings: Settings):
        http = FakeHttpClient({f"{settings.npm_registry_url}/pnpm/latest": {"version": "next"}})
        with pytest.raises(DownloadError, match="no usable pnpm version"):
            latest_pnpm_version(http, settings)

    def test_network_failure_propagates(self, settings: Settings):
        with pytest.raises(DownloadError, match="404"):
            latest_pnpm_version(FakeHttpClient(), settings)


class TestResolveVersions:

    def test_pinned_versions_make_no_requests(self, settings: Settings):
        http = FakeHttpClient()
        resolved = resolve_versions(_config(node="22.10.0", pnpm="9.1.0"), http, settings)
        assert resolved.node_version_tag == "v22.10.0"
        assert resolved.pnpm_version == "9.1.0"
        assert http.requests == []

    def test_unpinned_versions_resolved_once(self, upstream: FakeHttpClient, settings: Settings):
        resolved = resolve_versions(_config(), upstream, settings)
        assert resolved.node_version_tag == "v22.10.0"
        assert resolved.pnpm_version == "9.1.0"
        assert upstream.count(f"{settings.node_dist_url}/index.json") == 1
        assert upstream.count(f"{settings.npm_registry_url}/pnpm/latest") == 1

    def test_config_not_mutated(self, upstream: FakeHttpClient, settings: Settings):
        config = _config()
        resolve_versions(config, upstream, settings)
        assert config.versions.node is None
        assert config.versions.pnpm is None
