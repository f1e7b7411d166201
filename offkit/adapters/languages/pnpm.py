"""
pnpm adapter — lockfile resolution, store prefetch and offline install.

Wraps a standalone pnpm executable (the single-file release binaries
published on GitHub), so no Node.js installation is needed on the
build host.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from offkit.adapters.base import PackageManager
from offkit.adapters.shell.command import DEFAULT_TIMEOUT, run_command
from offkit.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class PnpmAdapter(PackageManager):
    """Run a pnpm binary as a subprocess.

    Args:
        binary: Path to the pnpm executable.
        timeout: Per-invocation timeout in seconds.
        registry: Optional registry URL passed as ``--registry``.
        node_bin: Directory put first on PATH so lifecycle scripts find
            the kit's own node.
    """

    def __init__(
        self,
        binary: Path,
        timeout: int = DEFAULT_TIMEOUT,
        registry: str | None = None,
        node_bin: Path | None = None,
    ):
        self._binary = Path(binary)
        self._timeout = timeout
        self._registry = registry
        self._node_bin = node_bin

    @property
    def name(self) -> str:
        return "pnpm"

    @property
    def binary(self) -> Path:
        return self._binary

    def is_available(self) -> bool:
        return self._binary.is_file() and os.access(self._binary, os.X_OK)

    # ── Operations ──────────────────────────────────────────────

    def resolve_lockfile(self, project_dir: Path, store_dir: Path) -> Receipt:
        args = [
            "install",
            "--lockfile-only",
            "--ignore-scripts",
            "--store-dir", str(store_dir),
        ]
        return self._run("resolve_lockfile", args, project_dir)

    def fetch_store(self, project_dir: Path, store_dir: Path) -> Receipt:
        # `pnpm fetch` only downloads into the store; lifecycle scripts never run
        args = ["fetch", "--store-dir", str(store_dir)]
        return self._run("fetch_store", args, project_dir)

    def install_offline(
        self,
        project_dir: Path,
        store_dir: Path,
        run_scripts: bool = False,
    ) -> Receipt:
        args = [
            "install",
            "--offline",
            "--frozen-lockfile",
            "--store-dir", str(store_dir),
        ]
        if not run_scripts:
            args.append("--ignore-scripts")
        return self._run("install_offline", args, project_dir)

    # ── Helpers ─────────────────────────────────────────────────

    def _run(self, operation: str, args: list[str], cwd: Path) -> Receipt:
        if self._registry:
            args = [*args, "--registry", self._registry]
        env = dict(os.environ)
        # Keep pnpm from prompting or writing update notices into output
        env.setdefault("CI", "true")
        env["npm_config_update_notifier"] = "false"
        if self._node_bin is not None:
            env["PATH"] = f"{self._node_bin}{os.pathsep}{env.get('PATH', '')}"
        logger.info("pnpm %s (cwd=%s)", " ".join(args[:2]), cwd)
        return run_command(
            [str(self._binary), *args],
            adapter=self.name,
            operation=operation,
            cwd=cwd,
            env=env,
            timeout=self._timeout,
        )
