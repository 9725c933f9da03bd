"""
Helpers shared by the command groups.

Settings are loaded on first use, so ``--help`` works even when
hostprep.yml is broken.
"""

from __future__ import annotations

import json
import sys

import click

from hostprep.core.config.loader import ConfigError, default_state_dir, load_settings
from hostprep.core.engine.runner import RunReport
from hostprep.core.models.settings import Settings
from hostprep.core.persistence.history import RunHistory
from hostprep.core.services.host import Host


def get_settings(ctx: click.Context) -> Settings:
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        try:
            obj["settings"] = load_settings(obj.get("config_path"))
        except ConfigError as e:
            click.secho(f"❌ {e}", fg="red")
            sys.exit(1)
    return obj["settings"]


def get_host(ctx: click.Context) -> Host:
    obj = ctx.ensure_object(dict)
    if "host" not in obj:
        obj["host"] = Host.local(mock=obj.get("mock", False))
    return obj["host"]


def get_history(ctx: click.Context) -> RunHistory:
    return RunHistory.in_dir(default_state_dir(get_settings(ctx)))


def run_history(ctx: click.Context) -> RunHistory | None:
    """History to record a task run in. Mock runs are not recorded."""
    if ctx.ensure_object(dict).get("mock"):
        return None
    return get_history(ctx)


def echo_report(report: RunReport, as_json: bool = False) -> None:
    """Print a run report and exit with its status."""
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        sys.exit(report.exit_code)

    icons = {
        "ok": "✅", "skipped": "⏭️ ", "failed": "❌",
        "cancelled": "⏹️ ", "dry-run": "📝", "pending": "  ",
    }
    click.echo()
    for outcome in report.outcomes:
        line = f"   {icons.get(outcome.status, '  ')} {outcome.name:<18} {outcome.status}"
        if outcome.error:
            line += f"  ({outcome.error})"
        click.echo(line)
    click.echo()

    if report.dry_run:
        click.secho("📝 Dry run: nothing was changed", fg="cyan")
        return
    if report.cancelled:
        click.secho("⏹️  Installation cancelled by user", fg="yellow")
        return
    if report.ok:
        click.secho(f"✅ {report.task} completed", fg="green", bold=True)
        return

    click.secho(f"❌ Step '{report.failed_step}' failed: {report.error}", fg="red")
    if report.rolled_back:
        click.echo(f"   Rolled back: {', '.join(report.rolled_back)}")
    for err in report.rollback_errors:
        click.secho(f"   ⚠️  Rollback error: {err}", fg="yellow")
    sys.exit(report.exit_code or 1)
