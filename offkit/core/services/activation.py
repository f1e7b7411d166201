"""
Activation — compute, apply, render and persist the kit environment.

The environment change is modelled as an EnvironmentPatch computed
purely from (kit root, platform). Applying it to a mapping, rendering it
as shell code, and writing it into an rc file are separate steps, so
only the last one touches anything outside the process.

A Python process cannot change its parent shell's environment, so
``offkit env activate`` prints shell code meant for ``eval``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from pathlib import Path, PurePosixPath, PureWindowsPath

from offkit.core.errors import InstallError
from offkit.core.models.activation import ActivationResult, EnvironmentPatch, EnvOp
from offkit.core.models.platform import PlatformId, spec_for
from offkit.core.persistence.atomic import atomic_write_text

logger = logging.getLogger(__name__)

BEGIN_MARKER = "# >>> npm-offline-kit >>>"
END_MARKER = "# <<< npm-offline-kit <<<"

SHELLS = ("sh", "powershell")


def compute_environment_patch(kit_root: Path | str, platform: PlatformId) -> EnvironmentPatch:
    """Environment operations that activate a portable install. Pure.

    PATH entries are listed in prepend order, so the last one ends up
    first: ``<prefix>/bin`` wins over the tools, npm prefix, pnpm and
    node directories.
    """
    spec = spec_for(platform)
    path_cls = PureWindowsPath if spec.is_windows else PurePosixPath
    root = path_cls(str(kit_root))
    prefix = root / "installed" / platform.value

    npm_prefix = prefix / "npm-prefix"
    pnpm_home = prefix / "pnpm-bin"
    if spec.is_windows:
        node_bin = prefix / "node"
        npm_bin = npm_prefix
    else:
        node_bin = prefix / "node" / "bin"
        npm_bin = npm_prefix / "bin"

    ops = [
        EnvOp(variable="NPM_OFFLINE_KIT_ROOT", action="set", value=str(root)),
        EnvOp(variable="NPM_OFFLINE_PLATFORM", action="set", value=platform.value),
        EnvOp(variable="NPM_CONFIG_PREFIX", action="set", value=str(npm_prefix)),
        EnvOp(variable="PNPM_HOME", action="set", value=str(pnpm_home)),
        EnvOp(variable="PATH", action="prepend", value=str(node_bin)),
        EnvOp(variable="PATH", action="prepend", value=str(pnpm_home)),
        EnvOp(variable="PATH", action="prepend", value=str(npm_bin)),
        EnvOp(variable="PATH", action="prepend", value=str(prefix / "tools" / "node_modules" / ".bin")),
        EnvOp(variable="PATH", action="prepend", value=str(prefix / "bin")),
    ]
    return EnvironmentPatch(ops=tuple(ops))


def require_installed(kit_root: Path | str, platform: PlatformId) -> Path:
    """Return the node executable of the portable install for ``platform``.

    Raises:
        InstallError: If ``installed/<platform>/node`` holds no node runtime.
    """
    node_dir = Path(kit_root) / "installed" / platform.value / "node"
    node = node_dir / "node.exe" if spec_for(platform).is_windows else node_dir / "bin" / "node"
    if not node.is_file():
        raise InstallError(f"Node not found under {node_dir} (run 'offkit install portable' first)")
    return node


def activation_patch(kit_root: Path | str, platform: PlatformId) -> EnvironmentPatch:
    """Environment patch for a kit that has been installed portably.

    Raises:
        InstallError: If the kit has not been installed for ``platform``.
    """
    require_installed(kit_root, platform)
    return compute_environment_patch(kit_root, platform)


def apply_patch(
    patch: EnvironmentPatch,
    environ: Mapping[str, str],
    pathsep: str = os.pathsep,
) -> dict[str, str]:
    """Return a copy of ``environ`` with ``patch`` applied.

    Prepending an entry already on the list leaves it where it is.
    """
    env = dict(environ)
    for op in patch.ops:
        if op.action == "set":
            env[op.variable] = op.value
            continue
        current = env.get(op.variable, "")
        entries = [e for e in current.split(pathsep) if e] if current else []
        if op.value not in entries:
            entries.insert(0, op.value)
        env[op.variable] = pathsep.join(entries)
    return env


def apply_to_process(patch: EnvironmentPatch, environ: MutableMapping[str, str] | None = None) -> None:
    """Apply ``patch`` in place to ``os.environ`` (or ``environ``)."""
    target = os.environ if environ is None else environ
    target.update(apply_patch(patch, target))


def render_patch(patch: EnvironmentPatch, shell: str = "sh") -> str:
    """Render ``patch`` as shell code for ``sh`` or ``powershell``.

    Raises:
        ValueError: For an unknown shell.
    """
    if shell not in SHELLS:
        raise ValueError(f"Unsupported shell '{shell}' (supported: {', '.join(SHELLS)})")
    lines: list[str] = []
    for op in patch.ops:
        if shell == "sh":
            value = _sh_quote(op.value)
            if op.action == "set":
                lines.append(f"export {op.variable}={value}")
            else:
                lines.append(
                    f'case ":${{{op.variable}}}:" in *:{value}:*) ;; '
                    f'*) export {op.variable}={value}"${{{op.variable}:+:${op.variable}}}" ;; esac'
                )
        else:
            value = _ps_quote(op.value)
            if op.action == "set":
                lines.append(f"$env:{op.variable} = {value}")
            else:
                lines.append(
                    f"if (-not (($env:{op.variable} -split ';') -contains {value})) "
                    f"{{ $env:{op.variable} = {value} + ';' + $env:{op.variable} }}"
                )
    return "\n".join(lines) + "\n"


# ── Persistence (marker block) ─────────────────────────────────


def upsert_block(text: str, begin: str, end: str, block: str) -> str:
    """Insert or replace the ``begin``…``end`` block in ``text``. Pure.

    An existing block is replaced where it stands; otherwise the block is
    appended. Everything outside the block is left byte-for-byte as is.

    Text without a trailing newline gets a separating newline and a block
    that closes the file without one, so :func:`remove_block` can tell the
    separator apart from the user's own text.
    """
    body = block if block.endswith("\n") else block + "\n"
    new_block = f"{begin}\n{body}{end}"

    span = _find_block(text, begin, end)
    if span is not None:
        start, stop = span
        terminator = "\n" if text[start:stop].endswith("\n") else ""
        return text[:start] + new_block + terminator + text[stop:]

    if text and not text.endswith("\n"):
        return text + "\n" + new_block
    return text + new_block + "\n"


def remove_block(text: str, begin: str, end: str) -> str:
    """Remove the ``begin``…``end`` block from ``text``. Pure.

    Exact inverse of :func:`upsert_block` on text that had no block.
    """
    span = _find_block(text, begin, end)
    if span is None:
        return text
    start, stop = span
    unterminated = stop == len(text) and not text.endswith("\n")
    if unterminated and start > 0 and text[start - 1] == "\n":
        start -= 1
    return text[:start] + text[stop:]


def activation_block(kit_root: Path, platform: PlatformId) -> str:
    """rc-file lines that source the kit's activate script."""
    activate = kit_root / "scripts" / platform.value / "activate.sh"
    return (
        "# Added by npm-offline-kit portable activation\n"
        f'. "{activate}" --kit-root "{kit_root}" --platform "{platform.value}" --quiet\n'
    )


def persist_activation(rc_file: Path, kit_root: Path, platform: PlatformId) -> ActivationResult:
    """Write (or refresh) the activation block in ``rc_file``.

    New shells that read ``rc_file`` start activated.
    """
    text = _read_rc(rc_file) if rc_file.exists() else ""
    updated = upsert_block(text, BEGIN_MARKER, END_MARKER, activation_block(kit_root, platform))
    if updated != text:
        atomic_write_text(rc_file, updated)
    logger.info("Persisted activation into %s", rc_file)
    return ActivationResult(
        kit_root=str(kit_root),
        platform=platform.value,
        rc_file=str(rc_file),
        variables=compute_environment_patch(kit_root, platform).variables(),
    )


def unpersist_activation(rc_file: Path) -> bool:
    """Remove the activation block from ``rc_file``.

    Returns:
        True if a block was removed.
    """
    if not rc_file.exists():
        return False
    text = _read_rc(rc_file)
    updated = remove_block(text, BEGIN_MARKER, END_MARKER)
    if updated == text:
        return False
    atomic_write_text(rc_file, updated)
    logger.info("Removed persisted activation from %s", rc_file)
    return True


def choose_rc_file(shell: str | None, home: Path) -> Path:
    """Pick the rc file for a login shell path like ``/bin/zsh``."""
    name = Path(shell or "sh").name
    if name == "zsh":
        return home / ".zshrc"
    if name == "bash":
        return home / ".bashrc"
    return home / ".profile"


# ── Private helpers ───────────────────────────────────────


def _find_block(text: str, begin: str, end: str) -> tuple[int, int] | None:
    """Span of the first marker block, including the end marker's newline."""
    lines = text.splitlines(keepends=True)
    offset = 0
    start = None
    for line in lines:
        stripped = line.rstrip("\r\n")
        if start is None and stripped == begin:
            start = offset
        elif start is not None and stripped == end:
            return start, offset + len(line)
        offset += len(line)
    return None


def _sh_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _read_rc(rc_file: Path) -> str:
    # newline="" keeps CRLF line endings intact
    with open(rc_file, encoding="utf-8", newline="") as f:
        return f.read()
