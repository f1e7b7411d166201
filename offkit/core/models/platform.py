"""
Platform model — the closed set of kit target platforms.

One table maps each platform to its upstream artifact naming so that
no other module needs to branch on platform strings.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from offkit.core.errors import ConfigError


class PlatformId(str, Enum):
    """Supported kit target platforms."""

    WIN32_X64 = "win32_x64"
    LINUX_X64 = "linux_x64"
    LINUX_ARM64 = "linux_arm64"
    MAC_ARM64 = "mac_arm64"
    MAC_X64 = "mac_x64"

    def __str__(self) -> str:
        return self.value


class PlatformSpec(BaseModel):
    """Artifact naming conventions for one platform."""

    model_config = ConfigDict(frozen=True)

    os: str                          # win32 | linux | darwin
    arch: str                        # x64 | arm64
    node_dist_os: str                # os token in nodejs.org filenames
    node_portable_suffix: str        # .tar.xz | .zip
    installer_suffix: str | None     # .msi | .pkg | None
    pnpm_asset: str                  # GitHub release asset name
    pnpm_binary: str                 # kit-local binary name

    @property
    def is_windows(self) -> bool:
        return self.os == "win32"

    @property
    def script_kind(self) -> str:
        return "windows" if self.is_windows else "posix"

    @property
    def node_portable_name(self) -> str:
        """Kit-local filename of the portable Node archive."""
        return f"node-portable{self.node_portable_suffix}"

    @property
    def node_installer_name(self) -> str | None:
        """Kit-local filename of the Node installer, if the platform has one."""
        if self.installer_suffix is None:
            return None
        return f"node-installer{self.installer_suffix}"

    def node_dist_name(self, tag: str) -> str:
        """Upstream filename of the portable archive, e.g. node-v22.10.0-linux-x64.tar.xz."""
        return f"node-{tag}-{self.node_dist_os}-{self.arch}{self.node_portable_suffix}"

    def installer_dist_name(self, tag: str) -> str | None:
        """Upstream filename of the installer package, or None."""
        if self.installer_suffix == ".msi":
            return f"node-{tag}-{self.arch}.msi"
        if self.installer_suffix == ".pkg":
            # macOS ships one universal pkg for both architectures
            return f"node-{tag}.pkg"
        return None


PLATFORM_SPECS: dict[PlatformId, PlatformSpec] = {
    PlatformId.WIN32_X64: PlatformSpec(
        os="win32",
        arch="x64",
        node_dist_os="win",
        node_portable_suffix=".zip",
        installer_suffix=".msi",
        pnpm_asset="pnpm-win-x64.exe",
        pnpm_binary="pnpm.exe",
    ),
    PlatformId.LINUX_X64: PlatformSpec(
        os="linux",
        arch="x64",
        node_dist_os="linux",
        node_portable_suffix=".tar.xz",
        installer_suffix=None,
        pnpm_asset="pnpm-linux-x64",
        pnpm_binary="pnpm",
    ),
    PlatformId.LINUX_ARM64: PlatformSpec(
        os="linux",
        arch="arm64",
        node_dist_os="linux",
        node_portable_suffix=".tar.xz",
        installer_suffix=None,
        pnpm_asset="pnpm-linux-arm64",
        pnpm_binary="pnpm",
    ),
    PlatformId.MAC_ARM64: PlatformSpec(
        os="darwin",
        arch="arm64",
        node_dist_os="darwin",
        node_portable_suffix=".tar.xz",
        installer_suffix=".pkg",
        pnpm_asset="pnpm-macos-arm64",
        pnpm_binary="pnpm",
    ),
    PlatformId.MAC_X64: PlatformSpec(
        os="darwin",
        arch="x64",
        node_dist_os="darwin",
        node_portable_suffix=".tar.xz",
        installer_suffix=".pkg",
        pnpm_asset="pnpm-macos-x64",
        pnpm_binary="pnpm",
    ),
}

# Canonical ordering used for manifests and listings
ALL_PLATFORMS: tuple[PlatformId, ...] = tuple(PlatformId)

_OS_ALIASES = {
    "linux": "linux",
    "darwin": "mac",
    "windows": "win32",
    "win32": "win32",
}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def spec_for(platform: PlatformId) -> PlatformSpec:
    """Look up the naming conventions for a platform."""
    return PLATFORM_SPECS[platform]


def parse_platform(value: str) -> PlatformId:
    """Convert a platform id string to a PlatformId.

    Raises:
        ConfigError: If the id is not one of the supported platforms.
    """
    try:
        return PlatformId(value)
    except ValueError:
        supported = ", ".join(p.value for p in ALL_PLATFORMS)
        raise ConfigError(
            f"Unknown platform '{value}' (supported: {supported})"
        ) from None


def detect_host_platform(system: str, machine: str) -> PlatformId:
    """Map ``platform.system()`` / ``platform.machine()`` output to a PlatformId.

    Raises:
        ConfigError: If the host OS/arch combination is not supported.
    """
    os_token = _OS_ALIASES.get(system.lower())
    arch = _ARCH_ALIASES.get(machine.lower())
    if os_token is None or arch is None:
        raise ConfigError(f"Unsupported host platform: {system}/{machine}")
    return parse_platform(f"{os_token}_{arch}")
