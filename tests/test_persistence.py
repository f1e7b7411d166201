"""
Tests for atomic file writes.
"""

import os
from pathlib import Path

import pytest

from offkit.core.persistence import atomic
from offkit.core.persistence.atomic import atomic_write_text


class TestAtomicWrite:

    def test_creates_file_and_parents(self, tmp_path: Path):
        path = tmp_path / "a" / "b.txt"
        atomic_write_text(path, "hello\n")
        assert path.read_text() == "hello\n"

    def test_line_endings_untouched(self, tmp_path: Path):
        path = tmp_path / "f.bat"
        atomic_write_text(path, "a\r\nb\r\n")
        assert path.read_bytes() == b"a\r\nb\r\n"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_keeps_mode(self, tmp_path: Path):
        path = tmp_path / ".profile"
        path.write_text("old")
        path.chmod(0o600)
        atomic_write_text(path, "new")
        assert path.read_text() == "new"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_failure_leaves_original(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "f"
        path.write_text("original")

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(atomic.os, "replace", boom)
        with pytest.raises(OSError, match="disk full"):
            atomic_write_text(path, "new")
        assert path.read_text() == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["f"]
