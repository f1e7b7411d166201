"""
Tests for the end-to-end build pipeline (fake upstream, mock pnpm).
"""

import json
from pathlib import Path

import pytest

from offkit.adapters.mock import FakeHttpClient, MockPackageManager
from offkit.core.config.settings import Settings
from offkit.core.errors import AlreadyExistsError, ConfigError, DownloadError, ResolutionError
from offkit.core.models.platform import PlatformId
from offkit.core.services.kit_build import build_kit


class TestMinimalKit:
    """linux_x64 only, pinned versions, typescript@5.6.2."""

    def test_layout(self, built_kit: Path):
        assert (built_kit / "payloads" / "linux_x64" / "node" / "node-portable.tar.xz").is_file()
        assert (built_kit / "payloads" / "linux_x64" / "node" / "SHASUMS256.txt").is_file()
        assert (built_kit / "payloads" / "linux_x64" / "pnpm" / "pnpm").is_file()
        assert (built_kit / "payloads" / "common" / "tools" / "package.json").is_file()
        assert (built_kit / "payloads" / "common" / "pnpm-store").is_dir()
        assert (built_kit / "config.toml").is_file()
        for script in ("activate.sh", "install-portable.sh", "install-global.sh", "verify.sh"):
            assert (built_kit / "scripts" / "linux_x64" / script).is_file()

    def test_lockfile_pins_typescript(self, built_kit: Path):
        lock = (built_kit / "payloads" / "common" / "tools" / "pnpm-lock.yaml").read_text()
        assert "typescript@5.6.2:" in lock

    def test_no_other_platforms(self, built_kit: Path):
        payloads = {p.name for p in (built_kit / "payloads").iterdir()}
        assert payloads == {"linux_x64", "common"}
        scripts = {p.name for p in (built_kit / "scripts").iterdir()}
        assert scripts == {"linux_x64", "_shared"}

    def test_no_staging_left(self, built_kit: Path):
        leftovers = [p.name for p in built_kit.parent.iterdir() if ".partial-" in p.name]
        assert leftovers == []

    def test_build_result(self, build, minimal_config: Path, tmp_path: Path):
        result = build(minimal_config, tmp_path / "out")
        assert result.output_dir == str((tmp_path / "out").resolve())
        assert result.node_version_tag == "v22.10.0"
        assert result.platforms == [PlatformId.LINUX_X64]
        assert result.file_count > 0
        assert result.to_dict()["platforms"] == ["linux_x64"]


class TestRerunSafety:
    """A second build into the same directory needs --force."""

    def test_second_run_refused_first_untouched(self, build, minimal_config: Path, built_kit: Path):
        before = (built_kit / "checksums.sha256").read_bytes()
        marker = built_kit / "local-note.txt"
        marker.write_text("keep me")
        with pytest.raises(AlreadyExistsError):
            build(minimal_config, built_kit)
        assert (built_kit / "checksums.sha256").read_bytes() == before
        assert marker.read_text() == "keep me"

    def test_force_replaces(self, build, minimal_config: Path, built_kit: Path):
        (built_kit / "local-note.txt").write_text("stale")
        build(minimal_config, built_kit, force=True)
        assert not (built_kit / "local-note.txt").exists()
        assert (built_kit / "manifest.json").is_file()


class TestBuildFailures:
    """Any stage failure aborts the build and leaves nothing behind."""

    def test_checksum_failure_leaves_no_kit(self, build, minimal_config: Path, settings: Settings,
                                            upstream: FakeHttpClient, tmp_path: Path):
        upstream.add(f"{settings.node_dist_url}/v22.10.0/node-v22.10.0-linux-x64.tar.xz", b"corrupt")
        out = tmp_path / "kit"
        with pytest.raises(Exception, match="SHA256 mismatch"):
            build(minimal_config, out)
        assert not out.exists()
        assert not [p for p in tmp_path.iterdir() if ".partial-" in p.name]

    def test_resolution_failure(self, build, write_config, tmp_path: Path):
        config = write_config("""\
            schema_version = 1
            packages = ["does-not-exist"]

            [platforms]
            linux_x64 = true

            [versions]
            node = "22.10.0"
            pnpm = "9.1.0"
        """)
        with pytest.raises(ResolutionError):
            build(config, tmp_path / "kit")
        assert not (tmp_path / "kit").exists()

    def test_missing_pnpm_release(self, build, write_config, tmp_path: Path):
        config = write_config("""\
            schema_version = 1
            packages = ["typescript"]

            [platforms]
            linux_x64 = true

            [versions]
            node = "22.10.0"
            pnpm = "8.0.0"
        """)
        with pytest.raises(DownloadError):
            build(config, tmp_path / "kit")

    def test_no_output_dir(self, build, minimal_config: Path):
        with pytest.raises(ConfigError, match="No output directory"):
            build(minimal_config, None)

    def test_invalid_config_touches_nothing(self, build, write_config, tmp_path: Path):
        config = write_config("schema_version = 2\npackages = [\"x\"]\n[platforms]\nlinux_x64 = true\n")
        with pytest.raises(ConfigError):
            build(config, tmp_path / "kit")
        assert not (tmp_path / "kit").exists()


class TestBuildOptions:

    def test_output_dir_from_config(self, build, write_config):
        config = write_config("""\
            schema_version = 1
            output_dir = "dist/kit"
            packages = ["prettier"]

            [platforms]
            linux_x64 = true
        """)
        result = build(config, None)
        assert Path(result.output_dir) == (config.parent / "dist" / "kit").resolve()
        assert result.node_version_tag == "v22.10.0"
        assert result.pnpm_version == "9.1.0"

    def test_no_pnpm_store(self, build, minimal_config: Path, tmp_path: Path, pm: MockPackageManager):
        out = tmp_path / "kit"
        build(minimal_config, out, no_pnpm_store=True)
        store = out / "payloads" / "common" / "pnpm-store"
        assert store.is_dir()
        assert list(store.iterdir()) == []
        assert (out / "payloads" / "common" / "tools" / "pnpm-lock.yaml").is_file()
        assert "fetch_store" not in pm.operations()

    def test_all_platforms(self, build, write_config, tmp_path: Path):
        config = write_config("""\
            schema_version = 1
            packages = ["typescript@5.6.2", "@biomejs/biome@1.9.4"]

            [platforms]
            win32_x64 = true
            linux_x64 = true
            linux_arm64 = true
            mac_arm64 = true
            mac_x64 = true

            [versions]
            node = "v22.10.0"
            pnpm = "9.1.0"
        """)
        out = tmp_path / "kit"
        build(config, out)
        manifest = json.loads((out / "manifest.json").read_text())
        assert manifest["platforms"] == ["win32_x64", "linux_x64", "linux_arm64", "mac_arm64", "mac_x64"]
        assert (out / "payloads" / "mac_arm64" / "node" / "node-installer.pkg").is_file()
        assert (out / "payloads" / "win32_x64" / "node" / "node-installer.msi").is_file()
        assert (out / "scripts" / "win32_x64" / "install-portable.bat").is_file()

    def test_unavailable_host_pnpm(self, minimal_config: Path, settings: Settings,
                                   upstream: FakeHttpClient, tmp_path: Path):
        with pytest.raises(ResolutionError, match="not runnable"):
            build_kit(
                minimal_config,
                tmp_path / "kit",
                http=upstream,
                pm_factory=lambda _binary: MockPackageManager(available=False),
                settings=settings,
                host=PlatformId.LINUX_X64,
            )
        assert not (tmp_path / "kit").exists()
