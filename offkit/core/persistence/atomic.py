"""
Atomic file writes — write to a temp file, then rename over the target.

Used for rc-file edits and kit manifests so a crash mid-write never
leaves a truncated file behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` atomically.

    Keeps the existing file's permission bits. Line endings are written
    exactly as given.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = path.stat().st_mode & 0o7777 if path.exists() else None

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
        logger.debug("Wrote %s", path)
    except Exception as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to write %s: %s", path, e)
        raise
