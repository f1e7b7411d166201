"""
Kit build — the end-to-end build pipeline.

parse config → resolve versions → fetch platform payloads → resolve and
prefetch tool dependencies → assemble → write manifests → publish.

Every stage runs to completion before the next one starts, and any
failure aborts the whole build. The kit is built in a staging directory
next to the output path and only renamed into place once complete, so
a failed build never leaves a usable-looking kit behind.
"""

from __future__ import annotations

import logging
import platform as host_platform
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field

from offkit.adapters.base import PackageManager
from offkit.adapters.http import HttpClient, UrllibHttpClient
from offkit.adapters.languages.pnpm import PnpmAdapter
from offkit.core.config.loader import load_config, resolve_output_dir
from offkit.core.config.settings import Settings
from offkit.core.errors import ConfigError, ResolutionError
from offkit.core.models.kit import KitManifest
from offkit.core.models.platform import PlatformId, detect_host_platform
from offkit.core.services import artifact_fetch, kit_assembler
from offkit.core.services.dependency_prefetch import PACKAGE_JSON_NAME, resolve_dependencies
from offkit.core.services.version_resolver import resolve_versions

logger = logging.getLogger(__name__)

PackageManagerFactory = Callable[[Path], PackageManager]


class BuildResult(BaseModel):
    """Outcome of a successful kit build."""

    output_dir: str
    node_version_tag: str
    pnpm_version: str
    platforms: list[PlatformId] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)
    file_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


def default_pm_factory(settings: Settings) -> PackageManagerFactory:
    """Factory that runs the downloaded host pnpm as a subprocess."""

    def factory(binary: Path) -> PackageManager:
        return PnpmAdapter(binary, registry=settings.npm_registry_url)

    return factory


def host_platform_id() -> PlatformId:
    """The PlatformId of the machine running the build."""
    return detect_host_platform(host_platform.system(), host_platform.machine())


def build_kit(
    config_path: Path,
    output_dir: Path | None = None,
    *,
    force: bool = False,
    no_pnpm_store: bool = False,
    http: HttpClient | None = None,
    pm_factory: PackageManagerFactory | None = None,
    settings: Settings | None = None,
    host: PlatformId | None = None,
) -> BuildResult:
    """Build an offline kit from ``config_path``.

    Args:
        config_path: Kit config (config.toml or config.yaml).
        output_dir: Kit output directory. Overrides ``output_dir`` in
            the config.
        force: Replace an existing output directory.
        no_pnpm_store: Produce the lockfile but skip store prefetch.
        http: HTTP client (default: urllib with the settings timeout).
        pm_factory: Builds the host package manager from the host pnpm
            binary path.
        settings: Runtime settings (default: from the environment).
        host: Build host platform (default: detected).

    Returns:
        BuildResult describing the published kit.

    Raises:
        KitError: Any stage failure; nothing is published.
    """
    start = time.monotonic()
    settings = settings or Settings.from_env()
    http = http or UrllibHttpClient(timeout=settings.http_timeout)
    pm_factory = pm_factory or default_pm_factory(settings)

    config_path = Path(config_path)
    config = load_config(config_path)

    target = Path(output_dir) if output_dir else resolve_output_dir(config, config_path)
    if target is None:
        raise ConfigError("No output directory: pass --output-dir or set output_dir in the config")
    target = target.expanduser().resolve()

    staging = kit_assembler.prepare_output_dir(target, force=force)
    try:
        versions = resolve_versions(config, http, settings)
        release = artifact_fetch.fetch_pnpm_release(versions.pnpm_version, http, settings)

        artifacts = artifact_fetch.fetch_all_platforms(
            config.enabled_platforms, versions, staging, http, settings, release,
        )

        host = host or host_platform_id()
        host_pnpm = artifact_fetch.fetch_host_pnpm(host, versions, release, http, settings)
        pm = pm_factory(host_pnpm)
        if not pm.is_available():
            raise ResolutionError(f"Host package manager is not runnable: {host_pnpm}")

        with tempfile.TemporaryDirectory(prefix="offkit-deps-") as work:
            work_dir = Path(work)
            lockfile, store_dir = resolve_dependencies(
                config.package_specs, work_dir, pm, prefetch=not no_pnpm_store,
            )
            manifest: KitManifest = kit_assembler.assemble(
                staging,
                config,
                config_path,
                versions,
                artifacts,
                package_json=lockfile.parent / PACKAGE_JSON_NAME,
                lockfile=lockfile,
                store_dir=store_dir,
            )

        kit_assembler.publish_kit(staging, target, force=force)
    except BaseException:
        kit_assembler.discard_staging(staging)
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("Kit built in %dms: %s", duration_ms, target)
    return BuildResult(
        output_dir=str(target),
        node_version_tag=manifest.node_version_tag,
        pnpm_version=manifest.pnpm_version,
        platforms=manifest.platforms,
        packages=manifest.packages,
        file_count=len(manifest.files),
        duration_ms=duration_ms,
    )
