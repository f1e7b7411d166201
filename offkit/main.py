"""
npm-offline-kit — CLI entrypoint.

Usage:
    offkit --help
    offkit build --config config.toml --output-dir ./kit
    offkit config check --config config.toml
    offkit install portable --kit-root ./kit
    eval "$(offkit env activate --kit-root ./kit)"
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from offkit import __version__
from offkit.core.errors import KitError
from offkit.core.observability.logging_config import resolve_level, setup_logging


def fail(error: Exception) -> None:
    """Print a red error line and exit 1."""
    click.secho(f"❌ {error}", fg="red", err=True)
    sys.exit(1)


def _config_option(f):
    return click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(path_type=Path),
        default=None,
        help="Path to config.toml (default: auto-detect in the current directory).",
    )(f)


def _resolve_config_path(config_path: Path | None) -> Path:
    if config_path is not None:
        return config_path
    from offkit.core.config.loader import find_config_file

    found = find_config_file()
    if found is None:
        fail(KitError("No config.toml found in the current directory; pass --config"))
    return found


@click.group()
@click.version_option(version=__version__, prog_name="offkit")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """npm-offline-kit — build and install offline Node.js + pnpm kits."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("OFFKIT_LOG_FILE"),
        log_file_level=os.environ.get("OFFKIT_LOG_FILE_LEVEL"),
    )


@cli.command()
@_config_option
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Kit output directory (default: output_dir from the config).",
)
@click.option("--force", is_flag=True, help="Replace an existing output directory.")
@click.option("--no-pnpm-store", is_flag=True, help="Write the lockfile but skip store prefetch.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def build(
    ctx: click.Context,
    config_path: Path | None,
    output_dir: Path | None,
    force: bool,
    no_pnpm_store: bool,
    as_json: bool,
) -> None:
    """Build an offline kit from a config file."""
    from offkit.core.services.kit_build import build_kit

    config_path = _resolve_config_path(config_path)
    try:
        result = build_kit(config_path, output_dir, force=force, no_pnpm_store=no_pnpm_store)
    except KitError as e:
        fail(e)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho(f"✅ Kit built: {result.output_dir}", fg="green", bold=True)
    if not ctx.obj.get("quiet"):
        click.echo(f"   Node.js:   {result.node_version_tag}")
        click.echo(f"   pnpm:      {result.pnpm_version}")
        click.echo(f"   Platforms: {', '.join(p.value for p in result.platforms)}")
        click.echo(f"   Packages:  {', '.join(result.packages)}")
        click.echo(f"   Files:     {result.file_count}")


@cli.group()
def config() -> None:
    """Kit configuration commands."""


@config.command("check")
@_config_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def config_check(config_path: Path | None, as_json: bool) -> None:
    """Validate a kit config file."""
    from offkit.core.config.loader import load_config

    config_path = _resolve_config_path(config_path)
    try:
        kit_config = load_config(config_path)
    except KitError as e:
        if as_json:
            click.echo(json.dumps({"valid": False, "errors": [str(e)]}, indent=2))
            sys.exit(1)
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        click.echo(f"   • {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "valid": True,
            "platforms": [p.value for p in kit_config.enabled_platforms],
            "packages": list(kit_config.packages),
            "versions": kit_config.versions.model_dump(),
        }, indent=2))
        return

    click.secho("✅ Configuration is valid", fg="green", bold=True)
    click.echo(f"   Platforms: {', '.join(p.value for p in kit_config.enabled_platforms)}")
    click.echo(f"   Packages:  {len(kit_config.packages)}")
    click.echo(f"   Node.js:   {kit_config.versions.node or 'latest'}")
    click.echo(f"   pnpm:      {kit_config.versions.pnpm or 'latest'}")


# ── Sub-command groups ──────────────────────────────────────────

from offkit.ui.cli.env import env  # noqa: E402
from offkit.ui.cli.install import install  # noqa: E402

cli.add_command(install)
cli.add_command(env)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
