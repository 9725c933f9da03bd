"""
hostprep — CLI entrypoint.

Usage:
    hostprep --help
    hostprep ssh setup --add-pubkey="ssh-ed25519 AAAA... me@laptop"
    hostprep install mysql --dry-run
"""

from __future__ import annotations

import os
from pathlib import Path

import click

from hostprep import __version__
from hostprep.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="hostprep")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to hostprep.yml (default: auto-detect).",
)
@click.option("--mock", is_flag=True, help="Record commands and file edits instead of running them.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    mock: bool,
) -> None:
    """hostprep — provision Linux/macOS hosts: sshd, shell helpers, MySQL, PHP."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["mock"] = mock

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("HOSTPREP_LOG_LEVEL", "INFO")

    setup_logging(
        level=level,
        log_file=os.environ.get("HOSTPREP_LOG_FILE"),
        log_file_level=os.environ.get("HOSTPREP_LOG_FILE_LEVEL"),
    )


# ── Register sub-command groups from hostprep/ui/cli/ ─────────────

from hostprep.ui.cli.install import install  # noqa: E402
from hostprep.ui.cli.shell import shell  # noqa: E402
from hostprep.ui.cli.ssh import ssh  # noqa: E402

cli.add_command(ssh)
cli.add_command(shell)
cli.add_command(install)


if __name__ == "__main__":
    cli()
