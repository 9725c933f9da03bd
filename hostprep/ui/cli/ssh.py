"""
CLI commands for sshd hardening and the one-line setup command.

Thin wrappers over ``hostprep.core.services.ssh_setup`` and
``hostprep.core.services.ssh_command``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostprep.ui.cli import echo_report, get_host, get_settings, run_history


@click.group()
def ssh() -> None:
    """SSH — harden sshd, generate the remote setup command."""


@ssh.command("setup")
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="sshd port (default: 29).")
@click.option(
    "--config-file",
    type=click.Path(path_type=Path),
    default=None,
    help="sshd_config path (default: /etc/ssh/sshd_config).",
)
@click.option("--add-pubkey", "pubkey", default=None, help="Public key line to authorize.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def setup(
    ctx: click.Context,
    port: int | None,
    config_file: Path | None,
    pubkey: str | None,
    as_json: bool,
) -> None:
    """Set port, allow root login, require key authentication, restart sshd."""
    from hostprep.core.services.ssh_keys import InvalidKeyError
    from hostprep.core.services.ssh_setup import setup_ssh

    settings = get_settings(ctx).ssh
    updates = {}
    if port is not None:
        updates["port"] = port
    if config_file is not None:
        updates["config_file"] = config_file
    if updates:
        settings = settings.model_copy(update=updates)

    try:
        report = setup_ssh(settings, get_host(ctx), pubkey=pubkey, history=run_history(ctx))
    except InvalidKeyError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)
    echo_report(report, as_json)


@ssh.command("gen-cmd")
@click.option(
    "--pubkey",
    "pubkey_file",
    type=click.Path(path_type=Path),
    default=None,
    help="Public key file (default: ~/.ssh/id_ed25519.pub, then id_rsa.pub).",
)
@click.option("--host", "remote_host", default=None, help="Host serving setup-ssh.sh.")
@click.option(
    "--shell",
    type=click.Choice(["bash", "sh"]),
    default="bash",
    show_default=True,
    help="Remote shell that runs the script.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def gen_cmd(
    ctx: click.Context,
    pubkey_file: Path | None,
    remote_host: str | None,
    shell: str,
    as_json: bool,
) -> None:
    """Print the one-line command that sets up sshd with your key."""
    from hostprep.core.errors import StepError
    from hostprep.core.services.ssh_command import TIP, generate_setup_command

    settings = get_settings(ctx).keys
    if remote_host:
        settings = settings.model_copy(update={"remote_host": remote_host})

    try:
        result = generate_setup_command(settings, pubkey_file=pubkey_file, shell=shell)
    except StepError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho("=== Generated One-Line Command ===", fg="blue", err=True)
    click.echo(err=True)
    click.echo(result.command)
    click.echo(err=True)
    click.secho(f"💡 {TIP}", fg="blue", err=True)
