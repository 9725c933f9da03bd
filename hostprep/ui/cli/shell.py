"""
CLI commands for the shell function bootstrap.

Thin wrapper over ``hostprep.core.services.shell_init``.
"""

from __future__ import annotations

import json
import sys

import click

from hostprep.ui.cli import get_host


@click.group()
def shell() -> None:
    """Shell — install ~/.functions.d helpers (setproxy, reloadenv)."""


@shell.command("init")
@click.option(
    "--shell",
    "shell_name",
    type=click.Choice(["zsh", "bash", "sh"]),
    default=None,
    help="Shell to configure (default: auto-detect).",
)
@click.option("--no-reload", is_flag=True, help="Don't source the updated config files.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def init(ctx: click.Context, shell_name: str | None, no_reload: bool, as_json: bool) -> None:
    """Create ~/.functions.d and hook it into the shell config files."""
    from hostprep.core.errors import StepError
    from hostprep.core.services.shell_init import USAGE, init_shell

    try:
        result = init_shell(get_host(ctx), shell=shell_name, reload=not no_reload)
    except StepError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho(f"🐚 {result.os_name} / {result.shell}", fg="cyan", bold=True)
    for path in result.updated:
        click.echo(f"   ✅ {path}")
    for path in result.skipped:
        click.echo(f"   ⏭️  {path} (already set up)")
    for path in result.written:
        click.echo(f"   📝 {path}")
    click.echo()
    click.secho("✅ System initialization completed successfully!", fg="green", bold=True)
    click.echo("Available commands after restarting your shell or running 'reloadenv':")
    for command, description in USAGE:
        click.echo(f"  - {command:<20} : {description}")
