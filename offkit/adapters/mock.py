"""
Mock adapters — test doubles for the package manager and HTTP client.

Used in tests to exercise the whole pipeline without
touching the network or a real pnpm binary. The mock package manager
resolves against a frozen in-memory registry, so the same inputs
always yield the same lockfile bytes.
"""

from __future__ import annotations

import base64
import hashlib
import json
from pathlib import Path
from typing import Any

from offkit.adapters.base import PackageManager
from offkit.adapters.http import HttpClient
from offkit.core.errors import DownloadError
from offkit.core.models.receipt import Receipt

LOCKFILE_NAME = "pnpm-lock.yaml"


def fake_integrity(name: str, version: str) -> str:
    """Stable pseudo-integrity string for a package version."""
    digest = hashlib.sha512(f"{name}@{version}".encode()).digest()
    return "sha512-" + base64.b64encode(digest).decode("ascii")


class MockPackageManager(PackageManager):
    """Package manager double backed by a frozen registry.

    Args:
        registry: Package name → published versions (oldest first).
            ``latest`` resolves to the last entry.
    """

    def __init__(
        self,
        registry: dict[str, list[str]] | None = None,
        available: bool = True,
    ):
        self._registry = registry or {}
        self._available = available
        self._failures: dict[str, str] = {}
        self._call_log: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[dict[str, Any]]:
        """Every operation this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def operations(self) -> list[str]:
        return [c["operation"] for c in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, operation: str, error: str = "Mock failure") -> None:
        """Configure an operation to fail."""
        self._failures[operation] = error

    def reset(self) -> None:
        self._call_log.clear()
        self._failures.clear()

    # ── Operations ──────────────────────────────────────────────

    def resolve_lockfile(self, project_dir: Path, store_dir: Path) -> Receipt:
        self._log("resolve_lockfile", project_dir, store_dir)
        if "resolve_lockfile" in self._failures:
            return self._fail("resolve_lockfile")

        deps = self._read_dependencies(project_dir)
        resolved: dict[str, str] = {}
        for name, spec in deps.items():
            versions = self._registry.get(name)
            if not versions:
                return Receipt.failure(
                    adapter=self.name,
                    operation="resolve_lockfile",
                    error=f"ERR_PNPM_FETCH_404  GET /{name}: Not Found - 404",
                )
            if spec == "latest":
                resolved[name] = versions[-1]
            elif spec in versions:
                resolved[name] = spec
            else:
                return Receipt.failure(
                    adapter=self.name,
                    operation="resolve_lockfile",
                    error=f"ERR_PNPM_NO_MATCHING_VERSION  No matching version found for {name}@{spec}",
                )

        (project_dir / LOCKFILE_NAME).write_text(
            self._render_lockfile(deps, resolved), encoding="utf-8",
        )
        return Receipt.success(adapter=self.name, operation="resolve_lockfile")

    def fetch_store(self, project_dir: Path, store_dir: Path) -> Receipt:
        self._log("fetch_store", project_dir, store_dir)
        if "fetch_store" in self._failures:
            return self._fail("fetch_store")
        if not (project_dir / LOCKFILE_NAME).is_file():
            return Receipt.failure(
                adapter=self.name,
                operation="fetch_store",
                error="ERR_PNPM_NO_LOCKFILE  Cannot fetch without a lockfile",
            )

        index_dir = store_dir / "v10" / "index"
        index_dir.mkdir(parents=True, exist_ok=True)
        for name, version in self._read_locked(project_dir).items():
            safe = name.replace("/", "+")
            entry = {"name": name, "version": version, "integrity": fake_integrity(name, version)}
            (index_dir / f"{safe}@{version}.json").write_text(
                json.dumps(entry, sort_keys=True) + "\n", encoding="utf-8",
            )
        return Receipt.success(adapter=self.name, operation="fetch_store")

    def install_offline(
        self,
        project_dir: Path,
        store_dir: Path,
        run_scripts: bool = False,
    ) -> Receipt:
        self._log("install_offline", project_dir, store_dir, run_scripts=run_scripts)
        if "install_offline" in self._failures:
            return self._fail("install_offline")

        bin_dir = project_dir / "node_modules" / ".bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        for name, version in self._read_locked(project_dir).items():
            pkg_dir = project_dir / "node_modules" / name
            pkg_dir.mkdir(parents=True, exist_ok=True)
            (pkg_dir / "package.json").write_text(
                json.dumps({"name": name, "version": version}) + "\n", encoding="utf-8",
            )
            shim = bin_dir / name.rsplit("/", 1)[-1]
            shim.write_text(f"#!/bin/sh\necho {name} {version}\n", encoding="utf-8")
            shim.chmod(0o755)
        return Receipt.success(adapter=self.name, operation="install_offline")

    # ── Helpers ─────────────────────────────────────────────────

    def _log(self, operation: str, project_dir: Path, store_dir: Path, **extra: Any) -> None:
        self._call_log.append({
            "operation": operation,
            "project_dir": project_dir,
            "store_dir": store_dir,
            **extra,
        })

    def _fail(self, operation: str) -> Receipt:
        return Receipt.failure(adapter=self.name, operation=operation, error=self._failures[operation])

    @staticmethod
    def _read_dependencies(project_dir: Path) -> dict[str, str]:
        data = json.loads((project_dir / "package.json").read_text(encoding="utf-8"))
        return dict(data.get("dependencies", {}))

    @staticmethod
    def _read_locked(project_dir: Path) -> dict[str, str]:
        """Read ``name@version`` keys back out of the packages section."""
        lockfile = project_dir / LOCKFILE_NAME
        if not lockfile.is_file():
            return {}
        locked: dict[str, str] = {}
        in_packages = False
        for line in lockfile.read_text(encoding="utf-8").splitlines():
            if line == "packages:":
                in_packages = True
                continue
            if in_packages and line.startswith("  ") and not line.startswith("    ") and line.endswith(":"):
                key = line.strip().rstrip(":").strip("'")
                name, _, version = key.rpartition("@")
                locked[name] = version
        return locked

    @staticmethod
    def _render_lockfile(deps: dict[str, str], resolved: dict[str, str]) -> str:
        lines = ["lockfileVersion: '9.0'", "", "importers:", "", "  .:", "    dependencies:"]
        for name in sorted(deps):
            lines += [
                f"      '{name}':" if name.startswith("@") else f"      {name}:",
                f"        specifier: {deps[name]}",
                f"        version: {resolved[name]}",
            ]
        lines += ["", "packages:", ""]
        for name in sorted(resolved):
            key = f"{name}@{resolved[name]}"
            lines += [
                f"  '{key}':" if key.startswith("@") else f"  {key}:",
                f"    resolution: {{integrity: {fake_integrity(name, resolved[name])}}}",
                "",
            ]
        return "\n".join(lines)


class FakeHttpClient(HttpClient):
    """In-memory HttpClient: URL → response body.

    Values may be bytes, str, or any JSON-serializable object.
    Unknown URLs raise DownloadError like a 404.
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes: dict[str, Any] = dict(routes or {})
        self.requests: list[str] = []

    def add(self, url: str, body: Any) -> None:
        self.routes[url] = body

    def get_bytes(self, url: str, headers: dict[str, str] | None = None) -> bytes:
        self.requests.append(url)
        if url not in self.routes:
            raise DownloadError(f"HTTP 404 for {url}")
        body = self.routes[url]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, bytes):
            return body
        if isinstance(body, str):
            return body.encode("utf-8")
        return json.dumps(body).encode("utf-8")

    def download(self, url: str, dest: Path, headers: dict[str, str] | None = None) -> None:
        dest.write_bytes(self.get_bytes(url, headers))

    def count(self, url: str) -> int:
        """How many times ``url`` was requested."""
        return self.requests.count(url)
