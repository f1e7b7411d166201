"""
Static kit data — the install/activate script templates shipped in every kit.

Templates live in ``offkit/core/data/kit_scripts/``:

    _shared/              copied verbatim to <kit>/scripts/_shared/
    activate.sh|.ps1      copied per platform with {{PLATFORM}} filled in
    wrappers/dispatch.*   thin per-platform dispatchers to _shared/

Usage::

    from offkit.core.data import render_template, shared_script_paths

    text = render_template("activate.sh", PLATFORM="linux_x64")
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent
KIT_SCRIPTS_DIR = _DATA_DIR / "kit_scripts"


def shared_script_paths() -> list[Path]:
    """All files that go into ``scripts/_shared`` of a kit, sorted by name."""
    return sorted(p for p in (KIT_SCRIPTS_DIR / "_shared").iterdir() if p.is_file())


def render_template(relative_path: str, **values: str) -> str:
    """Load a template and substitute ``{{KEY}}`` placeholders.

    Raises:
        FileNotFoundError: If the template does not exist.
        ValueError: If a placeholder is left unresolved.
    """
    text = (KIT_SCRIPTS_DIR / relative_path).read_text(encoding="utf-8")
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", value)
    if "{{" in text and "}}" in text[text.index("{{"):]:
        start = text.index("{{")
        raise ValueError(
            f"Unresolved placeholder in {relative_path}: {text[start:text.index('}}', start) + 2]}"
        )
    return text
