"""
Shell command runner — execute an external binary and capture output.

Every adapter that shells out goes through ``run_command`` so that
timing, logging and failure capture look the same everywhere.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from offkit.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800


def run_command(
    args: Sequence[str],
    *,
    adapter: str,
    operation: str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> Receipt:
    """Run ``args`` (no shell) and return a receipt. Never raises."""
    command = [str(a) for a in args]
    logger.debug("Executing: %s (cwd=%s)", " ".join(command), cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Command timed out after {timeout}s",
            metadata={"command": command, "timeout": timeout},
        )
    except OSError as e:
        return Receipt.failure(
            adapter=adapter,
            operation=operation,
            error=f"Command execution error: {e}",
            metadata={"command": command},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    output = result.stdout.strip()
    stderr = result.stderr.strip()

    if result.returncode == 0:
        return Receipt.success(
            adapter=adapter,
            operation=operation,
            output=output,
            duration_ms=elapsed_ms,
            metadata={
                "command": command,
                "return_code": result.returncode,
                "stderr": stderr,
            },
        )

    return Receipt.failure(
        adapter=adapter,
        operation=operation,
        error=stderr or output or f"Command exited with code {result.returncode}",
        duration_ms=elapsed_ms,
        metadata={
            "command": command,
            "return_code": result.returncode,
            "stdout": output,
        },
    )
