"""
Activation models — environment patches and install state.

An EnvironmentPatch is computed purely from (kit root, platform) and
applied at the boundary, so the mutation itself stays small.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class InstallState(str, Enum):
    """Install-time states, in order of progress."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    PORTABLE_INSTALLED = "portable_installed"
    GLOBALLY_INSTALLED = "globally_installed"
    ACTIVATED = "activated"


class EnvOp(BaseModel):
    """One environment mutation: set a variable or prepend to a path list."""

    model_config = ConfigDict(frozen=True)

    variable: str
    action: Literal["set", "prepend"]
    value: str


class EnvironmentPatch(BaseModel):
    """Ordered list of environment operations."""

    model_config = ConfigDict(frozen=True)

    ops: tuple[EnvOp, ...] = ()

    def variables(self) -> list[str]:
        """Distinct variables touched, in first-touch order."""
        seen: list[str] = []
        for op in self.ops:
            if op.variable not in seen:
                seen.append(op.variable)
        return seen


class VerifyReport(BaseModel):
    """Result of a successful kit verification."""

    kit_root: str
    platform: str
    files_checked: int = 0
    state: InstallState = InstallState.VERIFIED


class InstallResult(BaseModel):
    """Result of a portable or global install."""

    kit_root: str
    platform: str
    state: InstallState
    prefix: str = ""
    node_dir: str = ""
    pnpm_path: str = ""
    tools_dir: str = ""
    linked: list[str] = Field(default_factory=list)
    verify_only: bool = False

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class ActivationResult(BaseModel):
    """Result of persisting activation into a shell startup file."""

    kit_root: str
    platform: str
    rc_file: str
    state: InstallState = InstallState.ACTIVATED
    variables: list[str] = Field(default_factory=list)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
