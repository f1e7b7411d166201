"""
Adapter base — the contract between kit services and external tools.

Services never call pnpm (or any other package manager) directly;
they go through this interface, which keeps the build and install
pipelines testable without a network or a real pnpm binary.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from offkit.core.models.receipt import Receipt


class PackageManager(ABC):
    """Abstract package manager used to resolve, prefetch and install tools.

    Implementations run an external binary and return receipts.
    They NEVER raise exceptions: failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'pnpm', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying binary exists and can be executed."""

    @abstractmethod
    def resolve_lockfile(self, project_dir: Path, store_dir: Path) -> Receipt:
        """Resolve ``project_dir/package.json`` into a lockfile, installing nothing."""

    @abstractmethod
    def fetch_store(self, project_dir: Path, store_dir: Path) -> Receipt:
        """Download every package in the lockfile into ``store_dir``.

        Must not run package lifecycle scripts.
        """

    @abstractmethod
    def install_offline(
        self,
        project_dir: Path,
        store_dir: Path,
        run_scripts: bool = False,
    ) -> Receipt:
        """Install from ``store_dir`` only, with a frozen lockfile."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
