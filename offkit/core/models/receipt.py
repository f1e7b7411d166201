"""
Receipt model — the result contract for external tool invocations.

Adapters run external binaries (pnpm, installer) and hand back a
Receipt. They never raise: failures are captured here, and the
calling service decides which KitError a failed receipt becomes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of one adapter operation."""

    adapter: str
    operation: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the operation failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        adapter: str,
        operation: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            operation=operation,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        operation: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            operation=operation,
            status="failed",
            error=error,
            **kwargs,
        )
