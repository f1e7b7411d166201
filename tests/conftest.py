"""
Shared test fixtures and configuration.

Upstream services (Node.js dist, npm registry, GitHub releases) are
served from a FakeHttpClient populated with real tar.xz/zip archives and
matching SHASUMS256.txt / GitHub digests, so the fetch and install code
paths run end to end without a network.
"""

import hashlib
import io
import tarfile
import textwrap
import zipfile
from pathlib import Path

import pytest

from offkit.adapters.mock import FakeHttpClient, MockPackageManager
from offkit.core.config.settings import Settings
from offkit.core.models.platform import ALL_PLATFORMS, PlatformId, spec_for
from offkit.core.services.kit_build import build_kit

NODE_TAG = "v22.10.0"
PNPM_VERSION = "9.1.0"


def _sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_node_tarball(top: str) -> bytes:
    """A small Node-shaped tar.xz: bin/node, npm under lib, bin/npm symlink."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:xz") as tar:
        top_info = tarfile.TarInfo(top)
        top_info.type = tarfile.DIRTYPE
        top_info.mode = 0o755
        tar.addfile(top_info)
        files = {
            "bin/node": (b"#!/bin/sh\necho v22.10.0\n", 0o755),
            "lib/node_modules/npm/bin/npm-cli.js": (b"// npm\n", 0o644),
            "README.md": (b"Node.js\n", 0o644),
        }
        for rel, (data, mode) in files.items():
            info = tarfile.TarInfo(f"{top}/{rel}")
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
        link = tarfile.TarInfo(f"{top}/bin/npm")
        link.type = tarfile.SYMTYPE
        link.linkname = "../lib/node_modules/npm/bin/npm-cli.js"
        tar.addfile(link)
    return buf.getvalue()


def make_node_zip(top: str) -> bytes:
    """A small Node-shaped Windows zip."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{top}/node.exe", b"MZ fake node\n")
        zf.writestr(f"{top}/npm.cmd", b"@echo off\n")
        zf.writestr(f"{top}/node_modules/npm/package.json", b'{"name": "npm"}\n')
    return buf.getvalue()


def populate_upstream(
    http: FakeHttpClient,
    settings: Settings,
    node_tag: str = NODE_TAG,
    pnpm_version: str = PNPM_VERSION,
    with_digests: bool = True,
) -> None:
    """Register every upstream URL a build can request."""
    node_files: dict[str, bytes] = {}
    for platform in ALL_PLATFORMS:
        spec = spec_for(platform)
        dist_name = spec.node_dist_name(node_tag)
        top = dist_name.removesuffix(spec.node_portable_suffix)
        node_files[dist_name] = make_node_zip(top) if spec.is_windows else make_node_tarball(top)
        installer = spec.installer_dist_name(node_tag)
        if installer:
            node_files[installer] = f"installer {installer}\n".encode()

    shasums = "".join(f"{_sha(data)}  {name}\n" for name, data in sorted(node_files.items()))
    base = f"{settings.node_dist_url}/{node_tag}"
    http.add(f"{base}/SHASUMS256.txt", shasums)
    for name, data in node_files.items():
        http.add(f"{base}/{name}", data)

    http.add(f"{settings.node_dist_url}/index.json", [
        {"version": "v24.0.0-nightly20241001abcdef"},
        {"version": node_tag},
        {"version": "v22.9.0"},
    ])
    http.add(f"{settings.npm_registry_url}/pnpm/latest", {"name": "pnpm", "version": pnpm_version})

    assets = []
    for platform in ALL_PLATFORMS:
        asset_name = spec_for(platform).pnpm_asset
        data = f"#!/bin/sh\necho pnpm {pnpm_version} {asset_name}\n".encode()
        url = f"https://github.test/pnpm/pnpm/releases/download/v{pnpm_version}/{asset_name}"
        http.add(url, data)
        asset = {"name": asset_name, "browser_download_url": url}
        if with_digests:
            asset["digest"] = f"sha256:{_sha(data)}"
        assets.append(asset)
    http.add(
        f"{settings.github_api_url}/repos/pnpm/pnpm/releases/tags/v{pnpm_version}",
        {"tag_name": f"v{pnpm_version}", "assets": assets},
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at fake upstream hosts and a per-test cache."""
    return Settings(
        cache_dir=tmp_path / "cache",
        node_dist_url="https://nodejs.test/dist",
        npm_registry_url="https://registry.test",
        github_api_url="https://api.github.test",
    )


@pytest.fixture
def upstream(settings: Settings) -> FakeHttpClient:
    """FakeHttpClient serving Node.js v22.10.0 and pnpm 9.1.0."""
    http = FakeHttpClient()
    populate_upstream(http, settings)
    return http


@pytest.fixture
def tool_registry() -> dict[str, list[str]]:
    """Frozen registry state for the mock package manager."""
    return {
        "typescript": ["5.5.4", "5.6.2", "5.6.3"],
        "prettier": ["3.3.2", "3.3.3"],
        "@biomejs/biome": ["1.9.3", "1.9.4"],
    }


@pytest.fixture
def pm(tool_registry: dict[str, list[str]]) -> MockPackageManager:
    return MockPackageManager(tool_registry)


@pytest.fixture
def write_config(tmp_path: Path):
    """Factory: write dedented config text and return its path."""

    def _write(text: str, name: str = "config.toml") -> Path:
        path = tmp_path / "cfg" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def minimal_config(write_config) -> Path:
    """linux_x64 only, pinned node 22.10.0 / pnpm 9.1.0, one package."""
    return write_config("""\
        schema_version = 1
        packages = ["typescript@5.6.2"]

        [platforms]
        linux_x64 = true
        win32_x64 = false

        [versions]
        node = "22.10.0"
        pnpm = "9.1.0"
    """)


@pytest.fixture
def build(settings: Settings, upstream: FakeHttpClient, pm: MockPackageManager):
    """Factory: run build_kit against the fake upstream and mock pnpm."""

    def _build(config_path: Path, output_dir: Path, **kwargs):
        return build_kit(
            config_path,
            output_dir,
            http=upstream,
            pm_factory=lambda _binary: pm,
            settings=settings,
            host=PlatformId.LINUX_X64,
            **kwargs,
        )

    return _build


@pytest.fixture
def built_kit(build, minimal_config: Path, tmp_path: Path) -> Path:
    """A complete linux_x64 kit on disk."""
    out = tmp_path / "kit"
    build(minimal_config, out)
    return out


@pytest.fixture
def install_pm(pm: MockPackageManager):
    """pm_factory for the installer that always hands back the mock."""
    return lambda _pnpm, _node_bin: pm
