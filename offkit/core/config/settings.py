"""
Runtime settings — upstream endpoints, cache location, timeouts.

Read once from environment variables. Nothing here belongs in the
kit config: these describe the build host, not the kit.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from offkit.core.errors import ConfigError

_DEFAULT_CACHE_DIR = Path.home() / ".cache" / "npm-offline-kit" / "downloads"
_TRUTHY = ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Build-host settings for a kit build."""

    model_config = ConfigDict(frozen=True)

    cache_dir: Path = _DEFAULT_CACHE_DIR
    node_dist_url: str = "https://nodejs.org/dist"
    npm_registry_url: str = "https://registry.npmjs.org"
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None
    http_timeout: int = 60
    pnpm_override: Path | None = None
    require_pnpm_digest: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from OFFKIT_* environment variables."""
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("OFFKIT_CACHE_DIR"):
            values["cache_dir"] = Path(env["OFFKIT_CACHE_DIR"]).expanduser()
        if env.get("OFFKIT_NODE_DIST_URL"):
            values["node_dist_url"] = env["OFFKIT_NODE_DIST_URL"].rstrip("/")
        if env.get("OFFKIT_NPM_REGISTRY"):
            values["npm_registry_url"] = env["OFFKIT_NPM_REGISTRY"].rstrip("/")
        if env.get("OFFKIT_GITHUB_API"):
            values["github_api_url"] = env["OFFKIT_GITHUB_API"].rstrip("/")
        if env.get("GITHUB_TOKEN"):
            values["github_token"] = env["GITHUB_TOKEN"]
        if env.get("OFFKIT_HTTP_TIMEOUT"):
            try:
                values["http_timeout"] = int(env["OFFKIT_HTTP_TIMEOUT"])
            except ValueError:
                raise ConfigError(
                    f"OFFKIT_HTTP_TIMEOUT must be an integer, got {env['OFFKIT_HTTP_TIMEOUT']!r}"
                ) from None
        if env.get("OFFKIT_PNPM"):
            values["pnpm_override"] = Path(env["OFFKIT_PNPM"]).expanduser()
        if env.get("OFFKIT_REQUIRE_PNPM_DIGEST", "").strip().lower() in _TRUTHY:
            values["require_pnpm_digest"] = True
        return cls(**values)
