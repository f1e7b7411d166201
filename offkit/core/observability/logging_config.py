"""
Logging setup for the offkit CLI.

main.py calls setup_logging() once; modules log through
``logging.getLogger(__name__)``.

Console level precedence: CLI flag, then OFFKIT_LOG_LEVEL, then WARNING.
OFFKIT_LOG_FILE / OFFKIT_LOG_FILE_LEVEL add a file handler.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

_DEBUG_FMT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d: %(message)s"

# (upper bound level, format, datefmt) for the console; first match wins
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, _DEBUG_FMT, "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)

_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level from CLI flags, then OFFKIT_LOG_LEVEL."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = os.environ if environ is None else environ
    return env.get("OFFKIT_LOG_LEVEL", "WARNING")


def console_formatter(level: int) -> logging.Formatter:
    for bound, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= bound:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter("%(message)s")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler (stderr) and the optional file handler.

    The root logger level is the lower of the two handler levels so a
    DEBUG file log still receives records while the console stays at
    WARNING.
    """
    console_level = _parse_level(level)
    root = logging.getLogger()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(console_formatter(console_level))
    root.addHandler(console)

    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_DEBUG_FMT, datefmt=_FILE_DATEFMT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names fall back to WARNING."""
    numeric = getattr(logging, level.upper(), None) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
