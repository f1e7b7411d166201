"""
Artifact fetcher — download and verify per-platform Node.js and pnpm payloads.

Downloads land in a local cache (``OFFKIT_CACHE_DIR``) keyed by kind,
version and upstream filename; a file already in the cache is never
downloaded again. Nothing leaves the cache for the kit without passing
its checksum:

- Node.js archives and installers against the release's SHASUMS256.txt
- pnpm binaries against the ``digest`` GitHub publishes for the asset
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any

from offkit.adapters.http import HttpClient
from offkit.core.config.settings import Settings
from offkit.core.errors import ChecksumError, DownloadError
from offkit.core.models.kit import PlatformArtifact, ResolvedVersions
from offkit.core.models.platform import PlatformId, PlatformSpec, spec_for
from offkit.core.services.checksums import (
    parse_checksum_list,
    sha256_file,
    verify_digest,
    verify_file,
)

logger = logging.getLogger(__name__)

PNPM_REPO = "pnpm/pnpm"
SHASUMS_NAME = "SHASUMS256.txt"


def get_cache_dir(settings: Settings) -> Path:
    """Return (and create if needed) the download cache directory."""
    cache = settings.cache_dir
    cache.mkdir(parents=True, exist_ok=True)
    return cache


def fetch_cached(
    http: HttpClient,
    url: str,
    dest: Path,
    headers: dict[str, str] | None = None,
) -> Path:
    """Download ``url`` to ``dest`` unless it is already there."""
    if dest.is_file():
        logger.debug("Cache hit: %s", dest)
        return dest
    dest.parent.mkdir(parents=True, exist_ok=True)
    http.download(url, dest, headers)
    return dest


# ── Node.js ─────────────────────────────────────────────────────


def node_release_url(settings: Settings, tag: str, filename: str) -> str:
    return f"{settings.node_dist_url}/{tag}/{filename}"


def fetch_node_shasums(
    tag: str,
    http: HttpClient,
    settings: Settings,
) -> tuple[Path, dict[str, str]]:
    """Fetch SHASUMS256.txt for a Node.js release and parse it."""
    dest = get_cache_dir(settings) / "node" / tag / SHASUMS_NAME
    fetch_cached(http, node_release_url(settings, tag, SHASUMS_NAME), dest)
    sums = parse_checksum_list(dest.read_text(encoding="utf-8"))
    if not sums:
        dest.unlink(missing_ok=True)
        raise DownloadError(f"{SHASUMS_NAME} for Node.js {tag} is empty or malformed")
    return dest, sums


def fetch_verified_node_file(
    tag: str,
    filename: str,
    sums: dict[str, str],
    http: HttpClient,
    settings: Settings,
) -> Path:
    """Download one Node.js release file and verify it against ``sums``.

    A cached file that fails verification is deleted so the next build
    downloads it again.

    Raises:
        DownloadError: If the download fails.
        ChecksumError: If the file has no published checksum or it differs.
    """
    if filename not in sums:
        raise ChecksumError(
            f"No published checksum for {filename} in Node.js {tag} {SHASUMS_NAME}",
            path=filename,
        )
    dest = get_cache_dir(settings) / "node" / tag / filename
    fetch_cached(http, node_release_url(settings, tag, filename), dest)
    try:
        verify_file(dest, filename, sums)
    except ChecksumError:
        dest.unlink(missing_ok=True)
        raise
    logger.info("Verified %s", filename)
    return dest


# ── pnpm ────────────────────────────────────────────────────────


def github_headers(settings: Settings) -> dict[str, str]:
    headers = {"Accept": "application/vnd.github+json"}
    if settings.github_token:
        headers["Authorization"] = f"Bearer {settings.github_token}"
    return headers


def fetch_pnpm_release(version: str, http: HttpClient, settings: Settings) -> dict[str, Any]:
    """Fetch the GitHub release metadata for pnpm ``version``.

    Raises:
        DownloadError: If the release does not exist or cannot be read.
    """
    url = f"{settings.github_api_url}/repos/{PNPM_REPO}/releases/tags/v{version}"
    release = http.get_json(url, github_headers(settings))
    if not isinstance(release, dict) or not isinstance(release.get("assets"), list):
        raise DownloadError(f"Unexpected GitHub release payload for pnpm v{version}")
    return release


def find_release_asset(release: dict[str, Any], asset_name: str, version: str) -> dict[str, Any]:
    """Find a named asset in a GitHub release.

    Raises:
        DownloadError: If the release has no asset with that name.
    """
    for asset in release.get("assets", []):
        if asset.get("name") == asset_name:
            return asset
    published = sorted(a.get("name", "") for a in release.get("assets", []))
    raise DownloadError(
        f"pnpm v{version} has no release asset '{asset_name}' "
        f"(published: {', '.join(published) or 'none'})"
    )


def fetch_pnpm_binary(
    spec: PlatformSpec,
    version: str,
    release: dict[str, Any],
    http: HttpClient,
    settings: Settings,
) -> Path:
    """Download the pnpm executable for one platform into the cache."""
    asset = find_release_asset(release, spec.pnpm_asset, version)
    url = asset.get("browser_download_url")
    if not url:
        raise DownloadError(f"Release asset '{spec.pnpm_asset}' has no download URL")

    dest = get_cache_dir(settings) / "pnpm" / version / spec.pnpm_asset
    fetch_cached(http, url, dest)

    digest = asset.get("digest")
    if digest:
        try:
            verify_digest(dest, digest, label=spec.pnpm_asset)
        except ChecksumError:
            dest.unlink(missing_ok=True)
            raise
        logger.info("Verified %s", spec.pnpm_asset)
    elif settings.require_pnpm_digest:
        actual = sha256_file(dest)
        dest.unlink(missing_ok=True)
        raise ChecksumError(
            f"GitHub publishes no digest for {spec.pnpm_asset} v{version} "
            "and OFFKIT_REQUIRE_PNPM_DIGEST is set",
            path=spec.pnpm_asset,
            actual=actual,
        )
    else:
        logger.warning(
            "GitHub publishes no digest for %s v%s; recorded sha256 %s",
            spec.pnpm_asset, version, sha256_file(dest),
        )
    return dest


def fetch_host_pnpm(
    host: PlatformId,
    versions: ResolvedVersions,
    release: dict[str, Any],
    http: HttpClient,
    settings: Settings,
) -> Path:
    """Fetch the pnpm binary that runs on the build host itself.

    It stays in the cache; it is only used to resolve and prefetch
    dependencies during the build.
    """
    if settings.pnpm_override:
        logger.info("Using host pnpm from OFFKIT_PNPM: %s", settings.pnpm_override)
        return settings.pnpm_override
    path = fetch_pnpm_binary(spec_for(host), versions.pnpm_version, release, http, settings)
    _make_executable(path)
    return path


# ── Per-platform payload ───────────────────────────────────────


def fetch_platform(
    platform: PlatformId,
    versions: ResolvedVersions,
    kit_root: Path,
    http: HttpClient,
    settings: Settings,
    pnpm_release: dict[str, Any],
) -> PlatformArtifact:
    """Fetch, verify and place every payload file for ``platform``.

    Writes ``payloads/<platform>/node/`` and ``payloads/<platform>/pnpm/``
    under ``kit_root``.
    """
    spec = spec_for(platform)
    tag = versions.node_version_tag
    logger.info("Fetching artifacts for %s (node %s, pnpm %s)", platform, tag, versions.pnpm_version)

    shasums_src, sums = fetch_node_shasums(tag, http, settings)
    portable_src = fetch_verified_node_file(tag, spec.node_dist_name(tag), sums, http, settings)

    installer_src: Path | None = None
    installer_dist = spec.installer_dist_name(tag)
    if installer_dist:
        installer_src = fetch_verified_node_file(tag, installer_dist, sums, http, settings)

    pnpm_src = fetch_pnpm_binary(spec, versions.pnpm_version, pnpm_release, http, settings)

    node_dir = kit_root / "payloads" / platform.value / "node"
    pnpm_dir = kit_root / "payloads" / platform.value / "pnpm"
    node_dir.mkdir(parents=True, exist_ok=True)
    pnpm_dir.mkdir(parents=True, exist_ok=True)

    shasums_path = _place(shasums_src, node_dir / SHASUMS_NAME)
    portable_path = _place(portable_src, node_dir / spec.node_portable_name)
    installer_path = None
    if installer_src is not None and spec.node_installer_name:
        installer_path = _place(installer_src, node_dir / spec.node_installer_name)
    pnpm_path = _place(pnpm_src, pnpm_dir / spec.pnpm_binary)
    _make_executable(pnpm_path)

    hashes = {
        p.name: sha256_file(p)
        for p in (shasums_path, portable_path, installer_path, pnpm_path)
        if p is not None
    }
    return PlatformArtifact(
        platform=platform,
        node_portable_path=portable_path,
        node_installer_path=installer_path,
        shasums_path=shasums_path,
        pnpm_binary_path=pnpm_path,
        sha256=hashes,
    )


def fetch_all_platforms(
    platforms: list[PlatformId],
    versions: ResolvedVersions,
    kit_root: Path,
    http: HttpClient,
    settings: Settings,
    pnpm_release: dict[str, Any],
) -> list[PlatformArtifact]:
    """Fetch every enabled platform, one after another."""
    return [
        fetch_platform(p, versions, kit_root, http, settings, pnpm_release)
        for p in platforms
    ]


# ── Private helpers ───────────────────────────────────────


def _place(src: Path, dest: Path) -> Path:
    shutil.copy2(src, dest)
    return dest


def _make_executable(path: Path) -> None:
    mode = os.stat(path).st_mode
    os.chmod(path, mode | 0o755)
