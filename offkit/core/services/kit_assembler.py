"""
Kit assembler — lay out the kit tree, write scripts, hash everything.

Layout produced under the kit root::

    config.toml
    manifest.json
    checksums.sha256
    payloads/<platform>/node/{node-portable.*, node-installer.*, SHASUMS256.txt}
    payloads/<platform>/pnpm/{pnpm|pnpm.exe}
    payloads/common/tools/{package.json, pnpm-lock.yaml}
    payloads/common/pnpm-store/...
    scripts/<platform>/{activate.*, install-portable.*, install-global.*, verify.*}
    scripts/_shared/...

manifest.json and checksums.sha256 are written from the same hash map,
so the two can never disagree.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from offkit import __version__
from offkit.core.data import render_template, shared_script_paths
from offkit.core.errors import AlreadyExistsError, ChecksumError
from offkit.core.models.kit import KitConfig, KitManifest, PlatformArtifact, ResolvedVersions
from offkit.core.models.platform import PlatformId, spec_for
from offkit.core.persistence.atomic import atomic_write_text
from offkit.core.services.checksums import (
    compute_tree_hashes,
    format_checksum_list,
    parse_checksum_list,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
CHECKSUMS_NAME = "checksums.sha256"
_UNHASHED = frozenset({MANIFEST_NAME, CHECKSUMS_NAME})

# Per-platform dispatchers into scripts/_shared
WRAPPER_SCRIPTS = ("install-portable", "install-global", "verify")


# ── Output directory lifecycle ─────────────────────────────────


def prepare_output_dir(output_dir: Path, force: bool = False) -> Path:
    """Check the output path and create a staging directory beside it.

    Returns:
        The staging directory the build should write into.

    Raises:
        AlreadyExistsError: If ``output_dir`` exists and ``force`` is False.
    """
    if output_dir.exists() and not force:
        raise AlreadyExistsError(
            f"Output directory already exists: {output_dir} (use --force to replace it)"
        )
    output_dir.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}.partial-", dir=output_dir.parent))
    os.chmod(staging, 0o755)
    logger.debug("Staging kit in %s", staging)
    return staging


def publish_kit(staging: Path, output_dir: Path, force: bool = False) -> Path:
    """Move a finished staging directory to ``output_dir``.

    Raises:
        AlreadyExistsError: If ``output_dir`` appeared meanwhile and
            ``force`` is False.
    """
    if output_dir.exists():
        if not force:
            raise AlreadyExistsError(f"Output directory already exists: {output_dir}")
        logger.info("Replacing existing kit at %s", output_dir)
        if output_dir.is_dir() and not output_dir.is_symlink():
            shutil.rmtree(output_dir)
        else:
            output_dir.unlink()
    os.replace(staging, output_dir)
    logger.info("Kit published to %s", output_dir)
    return output_dir


def discard_staging(staging: Path) -> None:
    """Remove a half-built staging directory."""
    if staging.exists():
        logger.debug("Discarding partial kit %s", staging)
        shutil.rmtree(staging, ignore_errors=True)


# ── Payloads ────────────────────────────────────────────────────


def copy_config(kit_root: Path, config_path: Path) -> Path:
    """Copy the build config into the kit root (config.toml / config.yaml)."""
    name = "config.yaml" if config_path.suffix.lower() in (".yaml", ".yml") else "config.toml"
    dest = kit_root / name
    shutil.copyfile(config_path, dest)
    return dest


def write_tools_payload(kit_root: Path, package_json: Path, lockfile: Path) -> Path:
    """Copy the tools manifest and lockfile into ``payloads/common/tools``."""
    tools_dir = kit_root / "payloads" / "common" / "tools"
    tools_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(package_json, tools_dir / "package.json")
    shutil.copyfile(lockfile, tools_dir / "pnpm-lock.yaml")
    return tools_dir


def copy_store(kit_root: Path, store_dir: Path) -> Path:
    """Copy the prefetched store into ``payloads/common/pnpm-store``."""
    dest = kit_root / "payloads" / "common" / "pnpm-store"
    if store_dir.is_dir():
        shutil.copytree(store_dir, dest, symlinks=False, dirs_exist_ok=True)
    else:
        dest.mkdir(parents=True, exist_ok=True)
    return dest


# ── Scripts ─────────────────────────────────────────────────────


def write_platform_scripts(kit_root: Path, platforms: list[PlatformId]) -> list[Path]:
    """Write ``scripts/_shared`` and one wrapper set per platform.

    Returns:
        Every script file written.
    """
    written: list[Path] = []

    shared_dir = kit_root / "scripts" / "_shared"
    shared_dir.mkdir(parents=True, exist_ok=True)
    for src in shared_script_paths():
        dest = shared_dir / src.name
        shutil.copyfile(src, dest)
        written.append(_finish_script(dest))

    for platform in platforms:
        spec = spec_for(platform)
        plat_dir = kit_root / "scripts" / platform.value
        plat_dir.mkdir(parents=True, exist_ok=True)

        if spec.script_kind == "windows":
            for script in WRAPPER_SCRIPTS:
                dest = plat_dir / f"{script}.bat"
                text = render_template("wrappers/dispatch.bat", PLATFORM=platform.value, SCRIPT=script)
                # cmd.exe wants CRLF line endings
                dest.write_bytes(text.replace("\r\n", "\n").replace("\n", "\r\n").encode("utf-8"))
                written.append(dest)
            dest = plat_dir / "activate.ps1"
            dest.write_text(render_template("activate.ps1", PLATFORM=platform.value), encoding="utf-8")
            written.append(dest)
        else:
            for script in WRAPPER_SCRIPTS:
                dest = plat_dir / f"{script}.sh"
                dest.write_text(
                    render_template("wrappers/dispatch.sh", PLATFORM=platform.value, SCRIPT=script),
                    encoding="utf-8",
                )
                written.append(_finish_script(dest))
            dest = plat_dir / "activate.sh"
            dest.write_text(render_template("activate.sh", PLATFORM=platform.value), encoding="utf-8")
            written.append(_finish_script(dest))

    logger.info("Wrote %d script(s) for %d platform(s)", len(written), len(platforms))
    return written


# ── Manifests ───────────────────────────────────────────────────


def compute_file_hashes(kit_root: Path) -> dict[str, str]:
    """SHA-256 of every file in the kit except the manifests themselves."""
    return compute_tree_hashes(kit_root, exclude=_UNHASHED)


def build_manifest(
    kit_root: Path,
    config: KitConfig,
    versions: ResolvedVersions,
    created_utc: str | None = None,
) -> KitManifest:
    """Hash the kit tree and build its manifest."""
    return KitManifest(
        kit_version=__version__,
        created_utc=created_utc or datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        node_version_tag=versions.node_version_tag,
        pnpm_version=versions.pnpm_version,
        platforms=config.enabled_platforms,
        packages=list(config.packages),
        files=compute_file_hashes(kit_root),
    )


def write_manifests(kit_root: Path, manifest: KitManifest) -> None:
    """Write manifest.json and checksums.sha256 from the same ``files`` map."""
    atomic_write_text(kit_root / MANIFEST_NAME, manifest.to_json())
    atomic_write_text(kit_root / CHECKSUMS_NAME, format_checksum_list(manifest.files))
    logger.info("Recorded %d file checksum(s)", len(manifest.files))


def read_manifest(kit_root: Path) -> KitManifest:
    """Load manifest.json from a kit.

    Raises:
        ChecksumError: If the manifest is missing or unreadable.
    """
    path = kit_root / MANIFEST_NAME
    try:
        return KitManifest.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        raise ChecksumError(f"Missing {MANIFEST_NAME} in {kit_root}", path=str(path)) from None
    except (OSError, ValueError) as e:
        raise ChecksumError(f"Unreadable {MANIFEST_NAME} in {kit_root}: {e}", path=str(path)) from e


def read_checksums(kit_root: Path) -> dict[str, str]:
    """Load checksums.sha256 from a kit.

    Raises:
        ChecksumError: If the file is missing or lists nothing.
    """
    path = kit_root / CHECKSUMS_NAME
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ChecksumError(f"Missing {CHECKSUMS_NAME} in {kit_root}", path=str(path)) from None
    sums = parse_checksum_list(text)
    if not sums:
        raise ChecksumError(f"{CHECKSUMS_NAME} in {kit_root} lists no files", path=str(path))
    return sums


def assemble(
    kit_root: Path,
    config: KitConfig,
    config_path: Path,
    versions: ResolvedVersions,
    artifacts: list[PlatformArtifact],
    package_json: Path,
    lockfile: Path,
    store_dir: Path,
) -> KitManifest:
    """Lay out tools, store, config and scripts, then write the manifests.

    Platform payloads are expected to be in place already (written by
    the artifact fetcher).
    """
    missing = [a.platform.value for a in artifacts if not a.node_portable_path.is_file()]
    if missing:
        raise ChecksumError(f"Platform payloads missing for: {', '.join(missing)}")

    copy_config(kit_root, config_path)
    write_tools_payload(kit_root, package_json, lockfile)
    copy_store(kit_root, store_dir)
    write_platform_scripts(kit_root, [a.platform for a in artifacts])

    manifest = build_manifest(kit_root, config, versions)
    write_manifests(kit_root, manifest)
    return manifest


# ── Private helpers ───────────────────────────────────────


def _finish_script(path: Path) -> Path:
    if path.suffix == ".sh":
        os.chmod(path, 0o755)
    return path
