"""
Domain models — Pydantic types for the offline kit.

All models are re-exported here for convenient access:

    from offkit.core.models import KitConfig, ResolvedVersions, KitManifest, PlatformId
"""

from offkit.core.models.activation import (
    ActivationResult,
    EnvironmentPatch,
    EnvOp,
    InstallResult,
    InstallState,
    VerifyReport,
)
from offkit.core.models.kit import (
    KitConfig,
    KitManifest,
    PackageSpec,
    PlatformArtifact,
    ResolvedVersions,
    ToolsManifest,
    VersionPins,
)
from offkit.core.models.platform import (
    ALL_PLATFORMS,
    PLATFORM_SPECS,
    PlatformId,
    PlatformSpec,
)

__all__ = [
    "ALL_PLATFORMS",
    # activation.py
    "ActivationResult",
    "EnvOp",
    "EnvironmentPatch",
    "InstallResult",
    "InstallState",
    # kit.py
    "KitConfig",
    "KitManifest",
    "PLATFORM_SPECS",
    "PackageSpec",
    "PlatformArtifact",
    # platform.py
    "PlatformId",
    "PlatformSpec",
    "ResolvedVersions",
    "ToolsManifest",
    "VerifyReport",
    "VersionPins",
]
