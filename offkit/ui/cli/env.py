"""
CLI commands for activating a portable install.

``activate`` prints shell code; run it through ``eval`` (sh) or
``Invoke-Expression`` (PowerShell) to change the current shell.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from offkit.core.errors import KitError


def _fail(error: Exception) -> None:
    click.secho(f"❌ {error}", fg="red", err=True)
    sys.exit(1)


def _kit_and_platform(kit_root: Path | None, platform: str | None):
    from offkit.core.services.installer import find_kit_root, resolve_platform

    try:
        root = kit_root.resolve() if kit_root is not None else find_kit_root()
        return root, resolve_platform(platform)
    except KitError as e:
        _fail(e)
        raise


def _rc_path(rc: Path | None) -> Path:
    from offkit.core.services.activation import choose_rc_file

    return rc if rc is not None else choose_rc_file(os.environ.get("SHELL"), Path.home())


_kit_root_option = click.option(
    "--kit-root", "-k", type=click.Path(path_type=Path), default=None,
    help="Kit directory (default: nearest kit above the current directory).",
)
_platform_option = click.option(
    "--platform", "-p", default=None, help="Platform id (default: this machine).",
)
_rc_option = click.option(
    "--rc", type=click.Path(path_type=Path), default=None,
    help="Shell startup file (default: by $SHELL: .zshrc, .bashrc or .profile).",
)


@click.group()
def env() -> None:
    """Environment — activate, persist, unpersist."""


@env.command()
@_kit_root_option
@_platform_option
@click.option(
    "--shell", "shell", type=click.Choice(["sh", "powershell"]), default="sh",
    show_default=True, help="Shell syntax to print.",
)
def activate(kit_root: Path | None, platform: str | None, shell: str) -> None:
    """Print shell code that activates the kit for this session."""
    from offkit.core.services.activation import activation_patch, render_patch

    root, plat = _kit_and_platform(kit_root, platform)
    try:
        patch = activation_patch(root, plat)
    except KitError as e:
        _fail(e)
    click.echo(render_patch(patch, shell), nl=False)


@env.command()
@_kit_root_option
@_platform_option
@_rc_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def persist(kit_root: Path | None, platform: str | None, rc: Path | None, as_json: bool) -> None:
    """Write the activation block into a shell startup file."""
    from offkit.core.services.activation import persist_activation

    root, plat = _kit_and_platform(kit_root, platform)
    rc_file = _rc_path(rc)
    try:
        result = persist_activation(rc_file, root, plat)
    except OSError as e:
        _fail(e)
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    click.secho(f"✅ Persisted activation into: {rc_file}", fg="green")
    click.echo("   Open a new shell to pick it up.")


@env.command()
@_rc_option
def unpersist(rc: Path | None) -> None:
    """Remove the activation block from a shell startup file."""
    from offkit.core.services.activation import unpersist_activation

    rc_file = _rc_path(rc)
    try:
        removed = unpersist_activation(rc_file)
    except OSError as e:
        _fail(e)
    if removed:
        click.secho(f"✅ Removed persisted activation from: {rc_file}", fg="green")
    else:
        click.echo(f"Nothing to remove in {rc_file}")
