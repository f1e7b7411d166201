"""
Tests for kit verification and the portable/global install flows.
"""

import os
from pathlib import Path

import pytest

from offkit.adapters.mock import MockPackageManager
from offkit.core.errors import ChecksumError, ElevationRequiredError, InstallError, KitError
from offkit.core.models.activation import InstallState
from offkit.core.models.platform import PlatformId, spec_for
from offkit.core.services import installer

from conftest import make_node_tarball, make_node_zip


def _tamper(path: Path) -> None:
    data = bytearray(path.read_bytes())
    data[len(data) // 2] ^= 0xFF
    path.write_bytes(bytes(data))


@pytest.fixture
def targets(tmp_path: Path) -> installer.GlobalTargets:
    root = tmp_path / "system"
    return installer.GlobalTargets(
        node_dir=root / "usr-local",
        bin_dir=root / "usr-local" / "bin",
        tools_root=root / "opt" / "npm-offline-kit",
    )


@pytest.fixture
def elevated(monkeypatch):
    monkeypatch.setattr(installer, "is_elevated", lambda: True)


class TestVerify:
    """The checksum gate."""

    def test_verify_ok(self, built_kit: Path):
        report = installer.verify_kit(built_kit, PlatformId.LINUX_X64)
        assert report.state == InstallState.VERIFIED
        assert report.platform == "linux_x64"
        assert report.files_checked == len(installer.read_checksums(built_kit))

    def test_platform_string_accepted(self, built_kit: Path):
        assert installer.verify_kit(built_kit, "linux_x64").platform == "linux_x64"

    def test_tampered_archive(self, built_kit: Path):
        _tamper(built_kit / "payloads" / "linux_x64" / "node" / "node-portable.tar.xz")
        with pytest.raises(ChecksumError, match="node-portable.tar.xz"):
            installer.verify_kit(built_kit, PlatformId.LINUX_X64)

    def test_deleted_listed_file(self, built_kit: Path):
        (built_kit / "config.toml").unlink()
        with pytest.raises(ChecksumError, match="Missing file listed"):
            installer.verify_kit(built_kit, PlatformId.LINUX_X64)

    def test_platform_not_in_kit(self, built_kit: Path):
        with pytest.raises(InstallError, match="platform payload: mac_arm64"):
            installer.verify_kit(built_kit, PlatformId.MAC_ARM64)

    def test_unknown_platform(self, built_kit: Path):
        with pytest.raises(KitError):
            installer.verify_kit(built_kit, "plan9_mips")


class TestPortableInstall:
    """installed/<platform>/ layout."""

    def test_install(self, built_kit: Path, install_pm, pm: MockPackageManager):
        result = installer.install_portable(built_kit, PlatformId.LINUX_X64, pm_factory=install_pm)
        prefix = built_kit / "installed" / "linux_x64"
        assert result.state == InstallState.PORTABLE_INSTALLED
        assert result.prefix == str(prefix)

        node = prefix / "node" / "bin" / "node"
        assert node.is_file()
        assert os.access(node, os.X_OK)
        npm = prefix / "node" / "bin" / "npm"
        assert npm.is_symlink()
        assert os.readlink(npm) == "../lib/node_modules/npm/bin/npm-cli.js"
        assert (prefix / "node" / "README.md").is_file()

        pnpm = prefix / "pnpm-bin" / "pnpm"
        assert pnpm.is_file()
        assert os.access(pnpm, os.X_OK)
        assert (prefix / "npm-prefix").is_dir()
        assert (prefix / "tools" / "pnpm-lock.yaml").is_file()
        assert (prefix / "tools" / "node_modules" / "typescript" / "package.json").is_file()

        call = pm.call_log[-1]
        assert call["operation"] == "install_offline"
        assert call["store_dir"] == built_kit.resolve() / "payloads" / "common" / "pnpm-store"
        assert call["run_scripts"] is False

    def test_run_scripts_passed(self, built_kit: Path, install_pm, pm: MockPackageManager):
        installer.install_portable(built_kit, PlatformId.LINUX_X64, run_scripts=True, pm_factory=install_pm)
        assert pm.call_log[-1]["run_scripts"] is True

    def test_tampered_kit_installs_nothing(self, built_kit: Path, install_pm, pm: MockPackageManager):
        _tamper(built_kit / "payloads" / "linux_x64" / "node" / "node-portable.tar.xz")
        with pytest.raises(ChecksumError):
            installer.install_portable(built_kit, PlatformId.LINUX_X64, pm_factory=install_pm)
        assert not (built_kit / "installed").exists()
        assert "install_offline" not in pm.operations()

    def test_verify_only(self, built_kit: Path, install_pm):
        result = installer.install_portable(
            built_kit, PlatformId.LINUX_X64, verify_only=True, pm_factory=install_pm,
        )
        assert result.state == InstallState.VERIFIED
        assert result.verify_only is True
        assert not (built_kit / "installed").exists()

    def test_force_reinstalls(self, built_kit: Path, install_pm):
        installer.install_portable(built_kit, PlatformId.LINUX_X64, pm_factory=install_pm)
        stray = built_kit / "installed" / "linux_x64" / "stray.txt"
        stray.write_text("x")
        installer.install_portable(built_kit, PlatformId.LINUX_X64, force=True, pm_factory=install_pm)
        assert not stray.exists()
        assert (built_kit / "installed" / "linux_x64" / "node" / "bin" / "node").is_file()

    def test_offline_install_failure(self, built_kit: Path, install_pm, pm: MockPackageManager):
        pm.set_failure("install_offline", "ERR_PNPM_NO_OFFLINE_TARBALL")
        with pytest.raises(InstallError, match="ERR_PNPM_NO_OFFLINE_TARBALL"):
            installer.install_portable(built_kit, PlatformId.LINUX_X64, pm_factory=install_pm)

    def test_windows_kit(self, build, write_config, tmp_path: Path, install_pm):
        config = write_config("""\
            schema_version = 1
            packages = ["prettier@3.3.3"]

            [platforms]
            win32_x64 = true

            [versions]
            node = "22.10.0"
            pnpm = "9.1.0"
        """)
        kit = tmp_path / "winkit"
        build(config, kit)
        result = installer.install_portable(kit, PlatformId.WIN32_X64, pm_factory=install_pm)
        prefix = kit / "installed" / "win32_x64"
        assert (prefix / "node" / "node.exe").read_bytes() == b"MZ fake node\n"
        assert (prefix / "node" / "node_modules" / "npm" / "package.json").is_file()
        assert Path(result.pnpm_path) == prefix / "pnpm-bin" / "pnpm.exe"


class TestGlobalInstall:
    """System-wide installs (targets redirected into tmp_path)."""

    def test_requires_elevation_before_anything(self, built_kit: Path, monkeypatch, targets, install_pm,
                                                pm: MockPackageManager):
        monkeypatch.setattr(installer, "is_elevated", lambda: False)
        monkeypatch.setattr(installer, "verify_kit", lambda *a, **k: pytest.fail("verified"))
        with pytest.raises(ElevationRequiredError):
            installer.install_global(built_kit, PlatformId.LINUX_X64, targets=targets, pm_factory=install_pm)
        assert not targets.node_dir.exists()
        assert pm.operations() == ["resolve_lockfile", "fetch_store"]

    def test_elevation_error_is_permission_error(self):
        assert issubclass(ElevationRequiredError, PermissionError)

    def test_install(self, built_kit: Path, elevated, targets, install_pm):
        result = installer.install_global(
            built_kit, PlatformId.LINUX_X64, targets=targets, pm_factory=install_pm,
        )
        assert result.state == InstallState.GLOBALLY_INSTALLED
        assert (targets.node_dir / "bin" / "node").is_file()
        assert (targets.bin_dir / "pnpm").is_file()
        assert (targets.tools_dir / "node_modules" / "typescript").is_dir()
        assert result.linked == ["typescript"]
        link = targets.bin_dir / "typescript"
        assert link.is_symlink()
        assert link.resolve() == (targets.tools_dir / "node_modules" / ".bin" / "typescript").resolve()

    def test_existing_entrypoint_kept(self, built_kit: Path, elevated, targets, install_pm):
        targets.bin_dir.mkdir(parents=True)
        (targets.bin_dir / "typescript").write_text("mine")
        result = installer.install_global(
            built_kit, PlatformId.LINUX_X64, targets=targets, pm_factory=install_pm,
        )
        assert result.linked == []
        assert (targets.bin_dir / "typescript").read_text() == "mine"

    def test_tampered_kit(self, built_kit: Path, elevated, targets, install_pm):
        _tamper(built_kit / "payloads" / "linux_x64" / "pnpm" / "pnpm")
        with pytest.raises(ChecksumError):
            installer.install_global(built_kit, PlatformId.LINUX_X64, targets=targets, pm_factory=install_pm)
        assert not targets.node_dir.exists()


class TestLinkEntrypoints:

    def test_force_replaces(self, tmp_path: Path):
        tools = tmp_path / "tools"
        (tools / "node_modules" / ".bin").mkdir(parents=True)
        (tools / "node_modules" / ".bin" / "tsc").write_text("#!/bin/sh\n")
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        (bin_dir / "tsc").write_text("old")
        assert installer.link_tool_entrypoints(tools, bin_dir, force=True) == ["tsc"]
        assert (bin_dir / "tsc").is_symlink()

    def test_no_bin_dir(self, tmp_path: Path):
        assert installer.link_tool_entrypoints(tmp_path / "tools", tmp_path / "bin") == []


class TestExtraction:
    """Top-level directory stripping."""

    def test_tarball(self, tmp_path: Path):
        archive = tmp_path / "node.tar.xz"
        archive.write_bytes(make_node_tarball("node-v22.10.0-linux-x64"))
        installer.extract_node_archive(archive, tmp_path / "out")
        assert (tmp_path / "out" / "bin" / "node").is_file()
        assert not (tmp_path / "out" / "node-v22.10.0-linux-x64").exists()

    def test_zip(self, tmp_path: Path):
        archive = tmp_path / "node.zip"
        archive.write_bytes(make_node_zip("node-v22.10.0-win-x64"))
        installer.extract_node_archive(archive, tmp_path / "out")
        assert (tmp_path / "out" / "npm.cmd").is_file()

    def test_corrupt_archive(self, tmp_path: Path):
        archive = tmp_path / "node.tar.xz"
        archive.write_bytes(b"not an archive")
        with pytest.raises(InstallError, match="Cannot extract"):
            installer.extract_node_archive(archive, tmp_path / "out")


class TestDiscovery:

    def test_find_kit_root_from_subdir(self, built_kit: Path):
        start = built_kit / "scripts" / "linux_x64"
        assert installer.find_kit_root(start) == built_kit.resolve()

    def test_find_kit_root_none(self, tmp_path: Path):
        with pytest.raises(InstallError, match="Could not find a kit root"):
            installer.find_kit_root(tmp_path / "nowhere")

    def test_default_targets_unix(self):
        targets = installer.default_global_targets(spec_for(PlatformId.LINUX_X64))
        assert targets.node_dir == Path("/usr/local")
        assert targets.bin_dir == Path("/usr/local/bin")
        assert targets.tools_dir == Path("/opt/npm-offline-kit/tools")

    def test_default_targets_windows(self):
        targets = installer.default_global_targets(
            spec_for(PlatformId.WIN32_X64),
            {"ProgramFiles": "C:/PF", "ProgramData": "C:/PD"},
        )
        assert targets.node_dir == Path("C:/PF") / "nodejs"
        assert targets.bin_dir == targets.node_dir
        assert targets.tools_root == Path("C:/PD") / "npm-offline-kit"

    def test_node_bin_dir(self, tmp_path: Path):
        assert installer.node_bin_dir(tmp_path, spec_for(PlatformId.LINUX_X64)) == tmp_path / "bin"
        assert installer.node_bin_dir(tmp_path, spec_for(PlatformId.WIN32_X64)) == tmp_path
