"""
CLI commands for installing a kit on the target machine.

Thin wrappers over ``offkit.core.services.installer``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from offkit.core.errors import KitError


def _fail(error: Exception) -> None:
    click.secho(f"❌ {error}", fg="red", err=True)
    sys.exit(1)


def _resolve_kit_root(kit_root: Path | None) -> Path:
    """Use --kit-root, or walk up from the current directory."""
    if kit_root is not None:
        return kit_root.resolve()
    from offkit.core.services.installer import find_kit_root

    try:
        return find_kit_root()
    except KitError as e:
        _fail(e)
        raise


def _install_options(f):
    f = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")(f)
    f = click.option("--run-scripts", is_flag=True, help="Allow package install scripts to run.")(f)
    f = click.option("--force", is_flag=True, help="Replace an existing install.")(f)
    f = click.option("--verify-only", is_flag=True, help="Verify checksums and stop.")(f)
    f = click.option("--platform", "-p", default=None, help="Platform id (default: this machine).")(f)
    f = click.option(
        "--kit-root", "-k", type=click.Path(path_type=Path), default=None,
        help="Kit directory (default: nearest kit above the current directory).",
    )(f)
    return f


@click.group()
def install() -> None:
    """Install — verify, portable, global."""


@install.command()
@click.option(
    "--kit-root", "-k", type=click.Path(path_type=Path), default=None,
    help="Kit directory (default: nearest kit above the current directory).",
)
@click.option("--platform", "-p", default=None, help="Platform id (default: this machine).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def verify(kit_root: Path | None, platform: str | None, as_json: bool) -> None:
    """Verify every kit file against checksums.sha256."""
    from offkit.core.services.installer import verify_kit

    root = _resolve_kit_root(kit_root)
    try:
        report = verify_kit(root, platform)
    except KitError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return
    click.secho(f"✅ Kit verified ({report.files_checked} files, {report.platform})", fg="green")


@install.command()
@_install_options
def portable(
    kit_root: Path | None,
    platform: str | None,
    verify_only: bool,
    force: bool,
    run_scripts: bool,
    as_json: bool,
) -> None:
    """Install into <kit>/installed/<platform> (no privileges needed)."""
    from offkit.core.services.installer import install_portable

    root = _resolve_kit_root(kit_root)
    try:
        result = install_portable(
            root, platform, force=force, run_scripts=run_scripts, verify_only=verify_only,
        )
    except KitError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    if result.verify_only:
        click.secho("✅ OK", fg="green")
        return
    click.secho(f"✅ Portable install complete: {result.prefix}", fg="green", bold=True)
    click.echo("   Activate for the current shell:")
    click.echo(f'   eval "$(offkit env activate --kit-root "{result.kit_root}" --platform {result.platform})"')


@install.command("global")
@_install_options
def global_(
    kit_root: Path | None,
    platform: str | None,
    verify_only: bool,
    force: bool,
    run_scripts: bool,
    as_json: bool,
) -> None:
    """Install into system locations (requires root/Administrator)."""
    from offkit.core.services.installer import install_global

    root = _resolve_kit_root(kit_root)
    try:
        result = install_global(
            root, platform, force=force, run_scripts=run_scripts, verify_only=verify_only,
        )
    except KitError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    if result.verify_only:
        click.secho("✅ OK", fg="green")
        return
    click.secho("✅ Global install complete", fg="green", bold=True)
    click.echo(f"   Node.js: {result.node_dir}")
    click.echo(f"   pnpm:    {result.pnpm_path}")
    if result.linked:
        click.echo(f"   Linked:  {', '.join(result.linked)}")
