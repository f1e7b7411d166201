"""
Version resolver — pick the exact Node.js and pnpm versions for a kit.

Pinned versions are used as given (Node is normalized to a ``v`` tag).
Anything unpinned is looked up once per build from the Node.js release
index and the npm registry; every platform in the kit then shares the
result. There is no offline fallback: resolution runs on a connected
build host.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from offkit.adapters.http import HttpClient
from offkit.core.config.settings import Settings
from offkit.core.errors import DownloadError
from offkit.core.models.kit import KitConfig, ResolvedVersions

logger = logging.getLogger(__name__)

_STABLE_TAG_RE = re.compile(r"^v\d+\.\d+\.\d+$")
_PNPM_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


def normalize_node_tag(version: str) -> str:
    """``22.10.0`` → ``v22.10.0``; already-prefixed tags pass through."""
    version = version.strip()
    return version if version.startswith("v") else f"v{version}"


def latest_node_tag(http: HttpClient, settings: Settings) -> str:
    """Return the newest stable ``vX.Y.Z`` tag from the Node.js release index.

    The index is ordered newest first; pre-release and nightly entries
    are skipped.

    Raises:
        DownloadError: If the index cannot be fetched or has no stable entry.
    """
    url = f"{settings.node_dist_url}/index.json"
    index = http.get_json(url)
    if not isinstance(index, list):
        raise DownloadError(f"Unexpected Node.js release index format from {url}")

    for entry in index:
        tag = entry.get("version", "") if isinstance(entry, dict) else ""
        if _STABLE_TAG_RE.match(tag):
            return tag
    raise DownloadError(f"No stable Node.js release found in {url}")


def latest_pnpm_version(http: HttpClient, settings: Settings) -> str:
    """Return the version behind pnpm's ``latest`` dist-tag.

    Raises:
        DownloadError: If the registry cannot be queried or the answer is unusable.
    """
    url = f"{settings.npm_registry_url}/pnpm/latest"
    data: Any = http.get_json(url)
    version = data.get("version") if isinstance(data, dict) else None
    if not isinstance(version, str) or not _PNPM_VERSION_RE.match(version):
        raise DownloadError(f"Registry returned no usable pnpm version from {url}")
    return version


def resolve_versions(config: KitConfig, http: HttpClient, settings: Settings) -> ResolvedVersions:
    """Resolve the Node.js tag and pnpm version for this build.

    Never mutates ``config``.
    """
    if config.versions.node:
        node_tag = normalize_node_tag(config.versions.node)
        logger.info("Node.js pinned: %s", node_tag)
    else:
        node_tag = latest_node_tag(http, settings)
        logger.info("Node.js latest: %s", node_tag)

    if config.versions.pnpm:
        pnpm_version = config.versions.pnpm
        logger.info("pnpm pinned: %s", pnpm_version)
    else:
        pnpm_version = latest_pnpm_version(http, settings)
        logger.info("pnpm latest: %s", pnpm_version)

    return ResolvedVersions(node_version_tag=node_tag, pnpm_version=pnpm_version)
