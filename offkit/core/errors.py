"""
Kit errors — the failure taxonomy shared by build and install.

Every stage fails fast: services raise one of these and the CLI turns
it into a red message and exit code 1. Nothing here is retried.
"""

from __future__ import annotations


class KitError(Exception):
    """Base class for every expected offline-kit failure."""


class ConfigError(KitError):
    """Raised when the kit configuration is invalid or missing."""


class DownloadError(KitError):
    """Raised when a registry query or artifact download fails."""


class ChecksumError(KitError):
    """Raised when a file is missing from a checksum list or its digest differs."""

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        expected: str | None = None,
        actual: str | None = None,
    ):
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class AlreadyExistsError(KitError):
    """Raised when the build output directory exists and force was not given."""


class ElevationRequiredError(KitError, PermissionError):
    """Raised when a global install runs without root/Administrator."""


class ResolutionError(KitError):
    """Raised when the tool dependency graph cannot be resolved or prefetched."""


class InstallError(KitError):
    """Raised for install-time failures other than integrity or privilege."""
