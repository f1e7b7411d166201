"""
Checksums — SHA-256 hashing, checksum-list parsing and verification.

Two list formats share one parser: upstream ``SHASUMS256.txt`` files
and the kit's own ``checksums.sha256``. Both are sha256sum output
(``<hex>  <name>``, optionally ``<hex> *<name>`` for binary mode).
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Mapping
from pathlib import Path

from offkit.core.errors import ChecksumError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_LINE_RE = re.compile(r"^(?P<hex>[0-9a-fA-F]{64})\s+\*?(?P<name>.+)$")


def sha256_file(path: Path) -> str:
    """Compute the hex SHA-256 digest of a file."""
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def parse_checksum_list(text: str) -> dict[str, str]:
    """Parse sha256sum-style text into ``{name: hex}``.

    Blank lines and ``#`` comments are ignored; other malformed lines
    are skipped with a debug log. Digests are lower-cased.
    """
    sums: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            logger.debug("Skipping malformed checksum line: %r", raw)
            continue
        name = m.group("name").strip()
        if name.startswith("./"):
            name = name[2:]
        sums[name] = m.group("hex").lower()
    return sums


def format_checksum_list(files: Mapping[str, str]) -> str:
    """Render ``{path: hex}`` as sha256sum-compatible text, sorted by path."""
    return "".join(f"{files[path]}  {path}\n" for path in sorted(files))


def verify_file(path: Path, name: str, sums: Mapping[str, str]) -> str:
    """Check ``path`` against the entry ``name`` in ``sums``.

    Returns:
        The verified hex digest.

    Raises:
        ChecksumError: If ``name`` has no entry or the digest differs.
    """
    expected = sums.get(name)
    if expected is None:
        raise ChecksumError(
            f"No published checksum for {name}",
            path=str(path),
        )
    actual = sha256_file(path)
    if actual != expected.lower():
        raise ChecksumError(
            f"SHA256 mismatch for {name}\n"
            f"Expected: {expected}\n"
            f"Got:      {actual}",
            path=str(path),
            expected=expected,
            actual=actual,
        )
    logger.debug("Checksum OK: %s", name)
    return actual


def verify_digest(path: Path, expected: str, label: str | None = None) -> str:
    """Check ``path`` against a single expected digest (``sha256:`` prefix allowed)."""
    name = label or path.name
    return verify_file(path, name, {name: expected.removeprefix("sha256:")})


def compute_tree_hashes(root: Path, exclude: frozenset[str] = frozenset()) -> dict[str, str]:
    """Hash every regular file under ``root``.

    Args:
        root: Directory to walk.
        exclude: Relative POSIX paths to skip (e.g. the manifests themselves).

    Returns:
        ``{relative POSIX path: hex}`` sorted by path.
    """
    files: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        rel = path.relative_to(root).as_posix()
        if rel in exclude:
            continue
        files[rel] = sha256_file(path)
    return dict(sorted(files.items()))


def verify_tree(root: Path, sums: Mapping[str, str]) -> int:
    """Verify every entry of ``sums`` relative to ``root``.

    Returns:
        Number of files checked.

    Raises:
        ChecksumError: On the first missing file or mismatch.
    """
    for rel in sorted(sums):
        path = root / rel
        if not path.is_file():
            raise ChecksumError(f"Missing file listed in checksums: {rel}", path=str(path))
        verify_file(path, rel, sums)
    return len(sums)
