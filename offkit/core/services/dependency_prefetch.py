"""
Dependency resolver/prefetcher — lockfile and offline store for the tools.

Builds a synthetic package.json from the configured packages, has the
host's pnpm resolve it in lockfile-only mode, then prefetches the
resulting closure into a content-addressed store. No package
install-time scripts run on the build host at any point.
"""

from __future__ import annotations

import logging
from pathlib import Path

from offkit.adapters.base import PackageManager
from offkit.core.errors import ResolutionError
from offkit.core.models.kit import PackageSpec, ToolsManifest
from offkit.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

LOCKFILE_NAME = "pnpm-lock.yaml"
PACKAGE_JSON_NAME = "package.json"


def build_tools_manifest(packages: list[PackageSpec]) -> ToolsManifest:
    """Synthesize the tools package.json model (pure)."""
    return ToolsManifest.from_packages(packages)


def write_tools_project(manifest: ToolsManifest, project_dir: Path) -> Path:
    """Write ``package.json`` into ``project_dir`` and return its path."""
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / PACKAGE_JSON_NAME
    path.write_text(manifest.to_package_json(), encoding="utf-8")
    return path


def resolve_dependencies(
    packages: list[PackageSpec],
    work_dir: Path,
    pm: PackageManager,
    prefetch: bool = True,
) -> tuple[Path, Path]:
    """Resolve ``packages`` into a lockfile and prefetch them into a store.

    Args:
        packages: Tool package specs from the config.
        work_dir: Scratch directory; ``tools/`` and ``pnpm-store/`` are
            created inside it.
        pm: Host-native package manager.
        prefetch: When False only the lockfile is produced; the store
            directory is created empty.

    Returns:
        ``(lockfile_path, store_dir)``.

    Raises:
        ResolutionError: If resolution or prefetch fails.
    """
    project_dir = work_dir / "tools"
    store_dir = work_dir / "pnpm-store"
    store_dir.mkdir(parents=True, exist_ok=True)

    manifest = build_tools_manifest(packages)
    write_tools_project(manifest, project_dir)
    logger.info("Resolving %d tool package(s) with %s", len(manifest.dependencies), pm.name)

    _require_ok(pm.resolve_lockfile(project_dir, store_dir), "Dependency resolution failed")

    lockfile = project_dir / LOCKFILE_NAME
    if not lockfile.is_file():
        raise ResolutionError(f"{pm.name} did not produce {LOCKFILE_NAME} in {project_dir}")

    if prefetch:
        logger.info("Prefetching dependency closure into %s", store_dir)
        _require_ok(pm.fetch_store(project_dir, store_dir), "Store prefetch failed")
    else:
        logger.info("Skipping store prefetch (no-pnpm-store)")

    return lockfile, store_dir


def _require_ok(receipt: Receipt, what: str) -> None:
    if receipt.failed:
        raise ResolutionError(f"{what}: {receipt.error}")
