"""
Kit models — build inputs, resolved versions, and build outputs.

KitConfig is the validated build input and never changes after parsing.
Everything a build discovers (versions, artifacts, hashes) is carried in
separate values so a config can be resolved twice without side effects.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from offkit.core.models.platform import ALL_PLATFORMS, PlatformId

SUPPORTED_SCHEMA_VERSION = 1

NODE_VERSION_RE = re.compile(r"^v?\d+\.\d+\.\d+$")
PNPM_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")

# npm package names, optionally scoped, followed by an optional @version
_PACKAGE_SPEC_RE = re.compile(
    r"^(?P<name>(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*)"
    r"(?:@(?P<version>[^\s@]+))?$",
    re.IGNORECASE,
)

DEFAULT_VERSION_RANGE = "latest"


class PackageSpec(BaseModel):
    """One tool package from the config's ``packages`` list."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = DEFAULT_VERSION_RANGE

    @classmethod
    def parse(cls, spec: str) -> PackageSpec:
        """Parse ``name``, ``name@version`` or ``@scope/name@version``.

        Raises:
            ValueError: If the spec is not a valid npm package specifier.
        """
        m = _PACKAGE_SPEC_RE.match(spec.strip())
        if not m:
            raise ValueError(f"invalid package spec '{spec}'")
        return cls(name=m.group("name"), version=m.group("version") or DEFAULT_VERSION_RANGE)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class VersionPins(BaseModel):
    """Optional explicit Node.js / pnpm versions from ``[versions]``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    node: str | None = None
    pnpm: str | None = None

    @field_validator("node")
    @classmethod
    def _check_node(cls, v: str | None) -> str | None:
        if v is not None and not NODE_VERSION_RE.match(v):
            raise ValueError(f"malformed node version '{v}' (expected e.g. 22.10.0 or v22.10.0)")
        return v

    @field_validator("pnpm")
    @classmethod
    def _check_pnpm(cls, v: str | None) -> str | None:
        if v is not None and not PNPM_VERSION_RE.match(v):
            raise ValueError(f"malformed pnpm version '{v}' (expected e.g. 10.29.3)")
        return v


class KitConfig(BaseModel):
    """Validated build input — loaded from config.toml (or config.yaml)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: int
    output_dir: str | None = None
    platforms: dict[PlatformId, bool] = Field(default_factory=dict)
    packages: tuple[str, ...] = ()
    versions: VersionPins = Field(default_factory=VersionPins)

    @field_validator("schema_version", mode="before")
    @classmethod
    def _check_schema(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError(f"schema_version must be an integer, got {v!r}")
        if v != SUPPORTED_SCHEMA_VERSION:
            raise ValueError(
                f"unsupported schema_version {v} (supported: {SUPPORTED_SCHEMA_VERSION})"
            )
        return v

    @field_validator("platforms", mode="before")
    @classmethod
    def _check_platforms(cls, v: Any) -> dict[PlatformId, bool]:
        if not isinstance(v, dict):
            raise ValueError("[platforms] must be a table of booleans")
        known = {p.value: p for p in ALL_PLATFORMS}
        result: dict[PlatformId, bool] = {}
        for key, enabled in v.items():
            key = str(key)
            if key not in known:
                raise ValueError(
                    f"unknown platform '{key}' (supported: {', '.join(known)})"
                )
            if not isinstance(enabled, bool):
                raise ValueError(f"platform '{key}' must be true or false, got {enabled!r}")
            result[known[key]] = enabled
        return result

    @field_validator("packages", mode="before")
    @classmethod
    def _check_packages(cls, v: Any) -> tuple[str, ...]:
        if not isinstance(v, (list, tuple)) or not all(isinstance(p, str) for p in v):
            raise ValueError("packages must be an array of strings")
        specs = tuple(p.strip() for p in v)
        seen: set[str] = set()
        for spec in specs:
            if spec in seen:
                raise ValueError(f"duplicate package spec '{spec}'")
            seen.add(spec)
            PackageSpec.parse(spec)
        return specs

    @model_validator(mode="after")
    def _check_non_empty(self) -> KitConfig:
        if not self.enabled_platforms:
            raise ValueError("at least one platform must be enabled in [platforms]")
        if not self.packages:
            raise ValueError("packages must list at least one tool package")
        return self

    @property
    def enabled_platforms(self) -> list[PlatformId]:
        """Enabled platform ids in canonical order."""
        return [p for p in ALL_PLATFORMS if self.platforms.get(p, False)]

    @property
    def package_specs(self) -> list[PackageSpec]:
        """Parsed package specs, in config order."""
        return [PackageSpec.parse(p) for p in self.packages]


class ResolvedVersions(BaseModel):
    """The exact Node.js and pnpm versions every platform in a kit shares."""

    model_config = ConfigDict(frozen=True)

    node_version_tag: str    # e.g. "v22.10.0"
    pnpm_version: str        # e.g. "10.29.3"


class PlatformArtifact(BaseModel):
    """Verified per-platform payload files, as written into the kit."""

    model_config = ConfigDict(frozen=True)

    platform: PlatformId
    node_portable_path: Path
    node_installer_path: Path | None = None
    shasums_path: Path
    pnpm_binary_path: Path
    sha256: dict[str, str] = Field(default_factory=dict)   # kit-local filename → hex


class ToolsManifest(BaseModel):
    """Synthetic package.json that pulls every configured tool."""

    model_config = ConfigDict(frozen=True)

    name: str = "npm-offline-kit-tools"
    version: str = "0.0.0"
    private: bool = True
    dependencies: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_packages(cls, packages: list[PackageSpec]) -> ToolsManifest:
        """Build the manifest with dependencies sorted by name."""
        deps = {p.name: p.version for p in sorted(packages, key=lambda p: p.name)}
        return cls(dependencies=deps)

    def to_package_json(self) -> str:
        """Serialize deterministically (same packages → same bytes)."""
        return json.dumps(self.model_dump(), indent=2) + "\n"


class KitManifest(BaseModel):
    """manifest.json — the kit's single source of truth for verification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kit_version: str
    created_utc: str
    node_version_tag: str
    pnpm_version: str
    platforms: list[PlatformId] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)
    files: dict[str, str] = Field(default_factory=dict)   # relative POSIX path → sha256 hex

    def to_json(self) -> str:
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
