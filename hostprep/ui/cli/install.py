"""
CLI commands for the MySQL and PHP/Nginx installers.

Thin wrappers over ``hostprep.core.services.mysql_install`` and
``hostprep.core.services.php_install``, plus ledger inspection.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostprep.ui.cli import echo_report, get_history, get_host, get_settings, run_history

TASKS = ("mysql", "php")


def _ledger_path(ctx: click.Context, task: str) -> Path:
    settings = get_settings(ctx)
    return settings.mysql.ledger_file if task == "mysql" else settings.php.ledger_file


def _task_steps(task: str):
    if task == "mysql":
        from hostprep.core.services.mysql_install import build_steps
    else:
        from hostprep.core.services.php_install import build_steps
    return build_steps()


def _task_log(prefix: str, directory: Path) -> Path | None:
    from hostprep.core.observability.logging_config import attach_task_log

    return attach_task_log(prefix, directory)


@click.group()
def install() -> None:
    """Install — MySQL 8.0 and PHP 7.3 + Nginx on CentOS 7."""


# ── Installers ──────────────────────────────────────────────────


@install.command("mysql")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Continue on non-CentOS 7 hosts without asking.")
@click.option("--dry-run", is_flag=True, help="Show which steps would run.")
@click.option("--diagnose", "-d", is_flag=True, help="Print the diagnostic report and exit.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def mysql(ctx: click.Context, assume_yes: bool, dry_run: bool, diagnose: bool, as_json: bool) -> None:
    """Install MySQL from the generic binary tarball (resumable)."""
    from hostprep.core.services import mysql_install

    settings = get_settings(ctx).mysql
    host = get_host(ctx)

    if diagnose:
        click.echo("Running MySQL diagnostic mode...")
        click.echo(mysql_install.diagnose(settings, host))
        return

    def confirm(question: str) -> bool:
        if assume_yes:
            return True
        try:
            return click.confirm(question, default=False)
        except click.Abort:
            # EOF on stdin (piped install) or Ctrl-C: treat as "no"
            click.echo()
            return False

    log_file = None if dry_run else _task_log("mysql_install", settings.report_dir)
    report = mysql_install.install_mysql(
        settings,
        host,
        confirm=confirm,
        history=run_history(ctx),
        dry_run=dry_run,
        log_file=log_file,
    )

    if report.ok and not dry_run and not as_json:
        click.echo()
        click.echo("MySQL installation and configuration completed.")
        click.echo(f"Root password: {settings.root_password}")
        click.echo("To connect: mysql -uroot -p")
        if log_file:
            click.echo(f"Log file: {log_file}")
    echo_report(report, as_json)


@install.command("php")
@click.option("--dry-run", is_flag=True, help="Show which steps would run.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def php(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Install PHP (Remi) + Nginx (resumable)."""
    from hostprep.core.errors import PrivilegeError
    from hostprep.core.services import php_install

    settings = get_settings(ctx).php
    log_file = None if dry_run else _task_log("php_install", settings.log_dir)

    try:
        report = php_install.install_php(
            settings, get_host(ctx), history=run_history(ctx), dry_run=dry_run
        )
    except PrivilegeError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if report.ok and not dry_run and not as_json:
        click.echo()
        for line in php_install.completion_notes(settings):
            click.echo(line)
        if log_file:
            click.echo(f"\nLog file: {log_file}")
    echo_report(report, as_json)


# ── Ledger ──────────────────────────────────────────────────────


@install.command("steps")
@click.argument("task", type=click.Choice(TASKS))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def steps(ctx: click.Context, task: str, as_json: bool) -> None:
    """Show a task's steps and which are recorded as done."""
    from hostprep.core.persistence.step_ledger import StepLedger

    ledger = StepLedger(_ledger_path(ctx, task))
    rows = [
        {"name": s.name, "label": s.label, "done": ledger.is_done(s.name)}
        for s in _task_steps(task)
    ]

    if as_json:
        click.echo(json.dumps({"task": task, "ledger": str(ledger.path), "steps": rows}, indent=2))
        return

    click.secho(f"📋 {task} ({ledger.path})", fg="cyan", bold=True)
    for row in rows:
        icon = "✅" if row["done"] else "⬜"
        click.echo(f"   {icon} {row['name']:<18} {row['label']}")
    click.echo()


@install.command("reset")
@click.argument("task", type=click.Choice(TASKS))
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Don't ask for confirmation.")
@click.pass_context
def reset(ctx: click.Context, task: str, assume_yes: bool) -> None:
    """Forget a task's completed steps so the next run starts over."""
    from hostprep.core.persistence.step_ledger import StepLedger

    ledger = StepLedger(_ledger_path(ctx, task))
    if not ledger.completed():
        click.secho(f"⚠️  Nothing recorded for {task}", fg="yellow")
        return
    if not assume_yes:
        click.confirm(f"Forget {len(ledger.completed())} completed step(s) of {task}?", abort=True)
    try:
        ledger.reset()
    except OSError as e:
        click.secho(f"❌ Cannot reset {ledger.path}: {e}", fg="red")
        sys.exit(1)
    click.secho(f"✅ Ledger reset: {ledger.path}", fg="green")


@install.command("history")
@click.option("--task", type=click.Choice(["ssh", *TASKS]), default=None, help="Only this task.")
@click.option("-n", "count", type=int, default=20, show_default=True, help="Number of runs.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, task: str | None, count: int, as_json: bool) -> None:
    """Show recent task runs."""
    records = get_history(ctx).read_recent(count, task=task)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.secho("No runs recorded yet", fg="yellow")
        return

    colors = {"ok": "green", "failed": "red", "cancelled": "yellow"}
    for record in records:
        click.echo(f"   {record.timestamp}  {record.task:<6} ", nl=False)
        click.secho(f"{record.status:<10}", fg=colors.get(record.status, "white"), nl=False)
        detail = f" {record.failed_step}: {record.error}" if record.failed_step else ""
        click.echo(f" {record.duration_ms}ms{detail}")
