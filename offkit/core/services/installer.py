"""
Installer — verify a kit and install it on the target machine.

State flow::

    Unverified → Verified → PortableInstalled | GloballyInstalled

Verification is a hard gate: if any file listed in checksums.sha256 is
missing or differs, nothing is extracted, copied or created.

Portable installs go under ``<kit>/installed/<platform>/``:

    node/          extracted Node.js runtime (top-level dir stripped)
    pnpm-bin/      pnpm executable (PNPM_HOME)
    npm-prefix/    NPM_CONFIG_PREFIX
    tools/         package.json + lockfile + node_modules from the kit store

Global installs target system directories and require root/Administrator.
"""

from __future__ import annotations

import logging
import os
import platform as host_platform
import shutil
import stat
import tarfile
import zipfile
from collections.abc import Callable, Mapping
from pathlib import Path, PurePosixPath

from pydantic import BaseModel

from offkit.adapters.base import PackageManager
from offkit.adapters.languages.pnpm import PnpmAdapter
from offkit.adapters.shell.command import run_command
from offkit.core.errors import ElevationRequiredError, InstallError
from offkit.core.models.activation import InstallResult, InstallState, VerifyReport
from offkit.core.models.platform import PlatformId, PlatformSpec, detect_host_platform, parse_platform, spec_for
from offkit.core.services.checksums import verify_tree
from offkit.core.services.kit_assembler import read_checksums

logger = logging.getLogger(__name__)

# Files/dirs whose presence marks a directory as a kit root
KIT_ROOT_MARKERS = ("config.toml", "config.yaml", "payloads", "installed")

PackageManagerFactory = Callable[[Path, Path], PackageManager]


class GlobalTargets(BaseModel):
    """System locations used by a global install."""

    node_dir: Path
    bin_dir: Path
    tools_root: Path

    @property
    def tools_dir(self) -> Path:
        return self.tools_root / "tools"


def default_global_targets(spec: PlatformSpec, environ: Mapping[str, str] | None = None) -> GlobalTargets:
    """OS-standard global install locations for ``spec``."""
    env = os.environ if environ is None else environ
    if spec.is_windows:
        program_files = Path(env.get("ProgramFiles", r"C:\Program Files"))
        program_data = Path(env.get("ProgramData", r"C:\ProgramData"))
        node_dir = program_files / "nodejs"
        return GlobalTargets(
            node_dir=node_dir,
            bin_dir=node_dir,
            tools_root=program_data / "npm-offline-kit",
        )
    return GlobalTargets(
        node_dir=Path("/usr/local"),
        bin_dir=Path("/usr/local/bin"),
        tools_root=Path("/opt/npm-offline-kit"),
    )


def default_pm_factory(pnpm_path: Path, node_bin: Path) -> PackageManager:
    return PnpmAdapter(pnpm_path, node_bin=node_bin)


# ── Kit discovery ───────────────────────────────────────────────


def find_kit_root(start: Path | None = None) -> Path:
    """Walk upward from ``start`` (default: cwd) to the nearest kit root.

    Raises:
        InstallError: If no parent directory looks like a kit.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in KIT_ROOT_MARKERS):
            logger.debug("Kit root: %s", candidate)
            return candidate
    raise InstallError(f"Could not find a kit root above {current}; pass --kit-root")


def resolve_platform(platform: PlatformId | str | None) -> PlatformId:
    """Use the given platform id, or the host's when none is given."""
    if platform is None or platform == "":
        return detect_host_platform(host_platform.system(), host_platform.machine())
    if isinstance(platform, PlatformId):
        return platform
    return parse_platform(platform)


def is_elevated() -> bool:
    """True when running as root (POSIX) or Administrator (Windows)."""
    if os.name == "nt":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


# ── Verification ────────────────────────────────────────────────


def require_payloads(kit_root: Path, platform: PlatformId) -> None:
    """Check that every payload an install needs is present.

    Raises:
        InstallError: Naming the first missing payload.
    """
    spec = spec_for(platform)
    node_dir = kit_root / "payloads" / platform.value / "node"
    required = [
        (node_dir, f"platform payload: {platform.value}"),
        (node_dir / "SHASUMS256.txt", "SHASUMS256.txt"),
        (node_dir / spec.node_portable_name, spec.node_portable_name),
        (kit_root / "payloads" / platform.value / "pnpm" / spec.pnpm_binary, "pnpm payload"),
        (kit_root / "payloads" / "common" / "tools" / "package.json", "tools package.json"),
        (kit_root / "payloads" / "common" / "tools" / "pnpm-lock.yaml", "tools lockfile"),
        (kit_root / "payloads" / "common" / "pnpm-store", "pnpm-store"),
    ]
    for path, what in required:
        if not path.exists():
            raise InstallError(f"Kit is missing {what} ({path})")


def verify_kit(kit_root: Path, platform: PlatformId | str | None = None) -> VerifyReport:
    """Verify the kit payloads and every checksum. Read-only.

    Raises:
        InstallError: If a required payload is missing.
        ChecksumError: If a listed file is missing or its digest differs.
    """
    kit_root = Path(kit_root).resolve()
    plat = resolve_platform(platform)
    require_payloads(kit_root, plat)
    count = verify_tree(kit_root, read_checksums(kit_root))
    logger.info("Verified %d file(s) in %s", count, kit_root)
    return VerifyReport(kit_root=str(kit_root), platform=plat.value, files_checked=count)


# ── Extraction ──────────────────────────────────────────────────


def extract_node_archive(archive: Path, dest: Path) -> None:
    """Extract a Node.js ``.tar.xz`` or ``.zip`` into ``dest``, dropping
    the top-level ``node-vX.Y.Z-<os>-<arch>/`` directory.

    Raises:
        InstallError: If the archive is unreadable or has unsafe entries.
    """
    dest.mkdir(parents=True, exist_ok=True)
    logger.info("Extracting %s -> %s", archive.name, dest)
    try:
        if archive.name.endswith(".zip"):
            _extract_zip(archive, dest)
        else:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(dest, filter=_strip_top_dir_filter)
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise InstallError(f"Cannot extract {archive}: {e}") from e


def _strip_first(name: str) -> str:
    parts = PurePosixPath(name).parts
    return "/".join(parts[1:])


def _strip_top_dir_filter(member: tarfile.TarInfo, path: str) -> tarfile.TarInfo | None:
    stripped = _strip_first(member.name)
    if not stripped:
        return None
    changes: dict = {"name": stripped}
    if member.islnk():
        changes["linkname"] = _strip_first(member.linkname)
    return tarfile.data_filter(member.replace(**changes, deep=False), path)


def _extract_zip(archive: Path, dest: Path) -> None:
    root = dest.resolve()
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            stripped = _strip_first(info.filename.replace("\\", "/"))
            if not stripped:
                continue
            target = (root / stripped).resolve()
            if not target.is_relative_to(root):
                raise InstallError(f"Unsafe path in {archive.name}: {info.filename}")
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info) as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            mode = (info.external_attr >> 16) & 0o777
            if mode:
                os.chmod(target, mode)


# ── Install flows ───────────────────────────────────────────────


def install_portable(
    kit_root: Path,
    platform: PlatformId | str | None = None,
    *,
    force: bool = False,
    run_scripts: bool = False,
    verify_only: bool = False,
    pm_factory: PackageManagerFactory | None = None,
) -> InstallResult:
    """Install the kit into ``<kit>/installed/<platform>/``.

    Needs no elevated privileges and touches nothing outside the kit.

    Raises:
        ChecksumError: Verification failed; nothing was installed.
        InstallError: A payload is missing or a later step failed.
    """
    report = verify_kit(kit_root, platform)
    kit_root = Path(report.kit_root)
    plat = PlatformId(report.platform)
    spec = spec_for(plat)

    if verify_only:
        return InstallResult(
            kit_root=str(kit_root), platform=plat.value,
            state=InstallState.VERIFIED, verify_only=True,
        )

    prefix = kit_root / "installed" / plat.value
    if force and prefix.exists():
        logger.info("Removing existing install at %s", prefix)
        shutil.rmtree(prefix)

    node_dir = prefix / "node"
    pnpm_home = prefix / "pnpm-bin"
    npm_prefix = prefix / "npm-prefix"
    tools_dir = prefix / "tools"
    for d in (node_dir, pnpm_home, npm_prefix, tools_dir):
        d.mkdir(parents=True, exist_ok=True)

    extract_node_archive(kit_root / "payloads" / plat.value / "node" / spec.node_portable_name, node_dir)
    pnpm_path = _install_pnpm(kit_root, plat, pnpm_home / spec.pnpm_binary)
    _copy_tools_project(kit_root, tools_dir)
    _install_tools(kit_root, tools_dir, pnpm_path, node_bin_dir(node_dir, spec), run_scripts, pm_factory)

    logger.info("Portable install complete: %s", prefix)
    return InstallResult(
        kit_root=str(kit_root),
        platform=plat.value,
        state=InstallState.PORTABLE_INSTALLED,
        prefix=str(prefix),
        node_dir=str(node_dir),
        pnpm_path=str(pnpm_path),
        tools_dir=str(tools_dir),
    )


def install_global(
    kit_root: Path,
    platform: PlatformId | str | None = None,
    *,
    force: bool = False,
    run_scripts: bool = False,
    verify_only: bool = False,
    pm_factory: PackageManagerFactory | None = None,
    targets: GlobalTargets | None = None,
    use_pkg_installer: bool = True,
) -> InstallResult:
    """Install the kit into OS-standard system locations.

    The privilege check runs before verification, so an unprivileged
    run never reads or writes anything.

    Raises:
        ElevationRequiredError: Not running as root/Administrator.
        ChecksumError: Verification failed; nothing was installed.
        InstallError: A payload is missing or a later step failed.
    """
    if not is_elevated():
        raise ElevationRequiredError(
            "Global install requires root/Administrator (re-run with sudo or an elevated shell)"
        )

    report = verify_kit(kit_root, platform)
    kit_root = Path(report.kit_root)
    plat = PlatformId(report.platform)
    spec = spec_for(plat)

    if verify_only:
        return InstallResult(
            kit_root=str(kit_root), platform=plat.value,
            state=InstallState.VERIFIED, verify_only=True,
        )

    targets = targets or default_global_targets(spec)
    node_payload = kit_root / "payloads" / plat.value / "node"
    pkg = node_payload / "node-installer.pkg"

    if spec.os == "darwin" and use_pkg_installer and pkg.is_file():
        logger.info("Installing Node.js via %s", pkg.name)
        receipt = run_command(
            ["installer", "-pkg", str(pkg), "-target", "/"],
            adapter="installer",
            operation="install_pkg",
        )
        if receipt.failed:
            raise InstallError(f"Node.js pkg installer failed: {receipt.error}")
    else:
        extract_node_archive(node_payload / spec.node_portable_name, targets.node_dir)

    targets.bin_dir.mkdir(parents=True, exist_ok=True)
    pnpm_path = _install_pnpm(kit_root, plat, targets.bin_dir / spec.pnpm_binary)

    if force and targets.tools_root.exists():
        logger.info("Removing existing tools at %s", targets.tools_root)
        shutil.rmtree(targets.tools_root)
    targets.tools_dir.mkdir(parents=True, exist_ok=True)
    _copy_tools_project(kit_root, targets.tools_dir)
    _install_tools(
        kit_root, targets.tools_dir, pnpm_path,
        node_bin_dir(targets.node_dir, spec), run_scripts, pm_factory,
    )

    linked: list[str] = []
    if not spec.is_windows:
        linked = link_tool_entrypoints(targets.tools_dir, targets.bin_dir, force=force)

    logger.info("Global install complete (node in %s)", targets.node_dir)
    return InstallResult(
        kit_root=str(kit_root),
        platform=plat.value,
        state=InstallState.GLOBALLY_INSTALLED,
        prefix=str(targets.node_dir),
        node_dir=str(targets.node_dir),
        pnpm_path=str(pnpm_path),
        tools_dir=str(targets.tools_dir),
        linked=linked,
    )


def link_tool_entrypoints(tools_dir: Path, bin_dir: Path, force: bool = False) -> list[str]:
    """Symlink each ``node_modules/.bin`` entry into ``bin_dir``.

    Existing targets are left alone unless ``force``.

    Returns:
        Names that were linked.
    """
    source_dir = tools_dir / "node_modules" / ".bin"
    if not source_dir.is_dir():
        return []
    linked: list[str] = []
    for entry in sorted(source_dir.iterdir()):
        target = bin_dir / entry.name
        if target.exists() or target.is_symlink():
            if not force:
                logger.debug("Skipping existing %s", target)
                continue
            target.unlink()
        target.symlink_to(entry)
        linked.append(entry.name)
    logger.info("Linked %d tool entrypoint(s) into %s", len(linked), bin_dir)
    return linked


def node_bin_dir(node_dir: Path, spec: PlatformSpec) -> Path:
    """Directory holding the node executable inside an extracted runtime."""
    return node_dir if spec.is_windows else node_dir / "bin"


# ── Private helpers ───────────────────────────────────────


def _install_pnpm(kit_root: Path, platform: PlatformId, dest: Path) -> Path:
    src = kit_root / "payloads" / platform.value / "pnpm" / spec_for(platform).pnpm_binary
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    os.chmod(dest, os.stat(dest).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info("Installed pnpm to %s", dest)
    return dest


def _copy_tools_project(kit_root: Path, tools_dir: Path) -> None:
    payload = kit_root / "payloads" / "common" / "tools"
    for name in ("package.json", "pnpm-lock.yaml"):
        shutil.copyfile(payload / name, tools_dir / name)


def _install_tools(
    kit_root: Path,
    tools_dir: Path,
    pnpm_path: Path,
    node_bin: Path,
    run_scripts: bool,
    pm_factory: PackageManagerFactory | None,
) -> None:
    pm = (pm_factory or default_pm_factory)(pnpm_path, node_bin)
    store_dir = kit_root / "payloads" / "common" / "pnpm-store"
    logger.info("Installing tools offline into %s", tools_dir)
    receipt = pm.install_offline(tools_dir, store_dir, run_scripts=run_scripts)
    if receipt.failed:
        raise InstallError(f"Offline tools install failed: {receipt.error}")
