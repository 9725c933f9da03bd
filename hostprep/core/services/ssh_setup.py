"""
sshd hardening — port, root login, key-only authentication.

Steps, in order:

    check_privileges → backup_config → configure_sshd
        → socket_override → install_pubkey → restart_sshd

The task runs through the step runner with an in-memory ledger: a
failed restart restores ``sshd_config`` from its ``.bak`` copy and
undoes the ssh.socket override.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from hostprep.core.engine.runner import RunReport, Step, StepContext, StepRunner
from hostprep.core.errors import PrivilegeError, StepError
from hostprep.core.models.settings import SshSettings
from hostprep.core.persistence.history import RunHistory
from hostprep.core.persistence.step_ledger import StepLedger
from hostprep.core.services.backup import copy_aside, restore_aside
from hostprep.core.services.host import Host
from hostprep.core.services.ssh_keys import (
    PublicKey,
    install_authorized_key,
    remove_authorized_key,
    resolve_key_home,
)

logger = logging.getLogger(__name__)

TASK_NAME = "ssh"
BACKUP_SUFFIX = ".bak"
OVERRIDE_FILE = "override.conf"
SOCKET_UNIT_PROBE = "systemctl list-unit-files ssh.socket | grep -q ssh.socket"


# ── Directive rewriting ─────────────────────────────────────────


def update_directive(text: str, key: str, value: str) -> str:
    """Drop every line starting with ``key`` or ``#key``, append ``key value``.

    Matching is by prefix, as sshd_config editing has always been done
    here: ``Port`` also removes a ``PortForwarding...`` line.
    """
    pattern = re.compile(rf"^#?{re.escape(key)}")
    lines = [line for line in text.splitlines() if not pattern.match(line)]
    lines.append(f"{key} {value}")
    return "\n".join(lines) + "\n"


def apply_directives(text: str, directives: list[tuple[str, str]]) -> str:
    for key, value in directives:
        text = update_directive(text, key, value)
    return text


def socket_override_content(port: int) -> str:
    return f"[Socket]\nListenStream=\nListenStream={port}\n"


# ── Steps ───────────────────────────────────────────────────────


def _settings(ctx: StepContext) -> SshSettings:
    return ctx.settings


def _check_privileges(ctx: StepContext) -> None:
    host: Host = ctx.host
    if not host.is_darwin and not host.is_root:
        raise PrivilegeError("Must run as root or use sudo.")


def _backup_config(ctx: StepContext) -> None:
    config = _settings(ctx).config_file
    if not config.is_file():
        raise StepError(f"sshd config not found: {config}")
    if ctx.host.simulated:
        logger.info("[mock] cp %s %s%s", config, config, BACKUP_SUFFIX)
        return
    try:
        copy_aside(config, BACKUP_SUFFIX)
    except OSError as e:
        raise StepError(f"Cannot back up {config}: {e}") from e


def _configure_sshd(ctx: StepContext) -> None:
    settings = _settings(ctx)
    logger.info("Configuring %s...", settings.config_file)
    text = settings.config_file.read_text(encoding="utf-8")
    ctx.host.write_text(settings.config_file, apply_directives(text, settings.directives()))


def _restore_config(ctx: StepContext) -> None:
    config = _settings(ctx).config_file
    if ctx.host.simulated:
        logger.info("[mock] restore %s from %s%s", config, config, BACKUP_SUFFIX)
        return
    if not restore_aside(config, BACKUP_SUFFIX):
        raise StepError(f"No backup to restore for {config}")


def _socket_override(ctx: StepContext) -> None:
    host: Host = ctx.host
    settings = _settings(ctx)
    if not host.command_exists("systemctl"):
        logger.debug("No systemctl, skipping socket override")
        return
    if not host.succeeds(SOCKET_UNIT_PROBE):
        return

    logger.info("Detected ssh.socket, overriding listen port...")
    override = settings.socket_override_dir / OVERRIDE_FILE
    if override.is_file() and not host.simulated:
        try:
            ctx.note("socket_override_backup", copy_aside(override, BACKUP_SUFFIX))
        except OSError as e:
            raise StepError(f"Cannot back up {override}: {e}") from e
    host.write_text(override, socket_override_content(settings.port))
    ctx.note("socket_override", override)
    host.systemctl("daemon-reload")


def _remove_socket_override(ctx: StepContext) -> None:
    override: Path | None = ctx.noted("socket_override")
    if override is None:
        return
    if ctx.noted("socket_override_backup"):
        restore_aside(override, BACKUP_SUFFIX)
    else:
        ctx.host.remove(override)
    ctx.host.systemctl("daemon-reload", check=False)


def _install_pubkey(ctx: StepContext) -> None:
    key: PublicKey | None = ctx.noted("pubkey")
    if key is None:
        return
    host: Host = ctx.host
    home = _settings(ctx).home_dir or resolve_key_home(host.system, host.euid)
    if host.simulated:
        logger.info("[mock] authorize key for %s", home)
        return
    try:
        added = install_authorized_key(home, key)
    except OSError as e:
        raise StepError(f"Cannot install public key under {home}: {e}") from e
    if added:
        ctx.note("pubkey_home", home)


def _remove_pubkey(ctx: StepContext) -> None:
    home: Path | None = ctx.noted("pubkey_home")
    key: PublicKey | None = ctx.noted("pubkey")
    if home is not None and key is not None:
        remove_authorized_key(home, key)


def _restart_sshd(ctx: StepContext) -> None:
    host: Host = ctx.host
    logger.info("Restarting services...")
    if host.is_darwin:
        plist = str(_settings(ctx).launchd_plist)
        host.run(f"launchctl unload {plist}", check=False)
        host.run(f"launchctl load -w {plist}")
        return

    host.systemctl("stop", "ssh.socket", check=False)
    if not host.systemctl("restart", "ssh", check=False).ok:
        host.systemctl("restart", "sshd")
    host.systemctl("start", "ssh.socket", check=False)


def build_steps() -> list[Step]:
    return [
        Step("check_privileges", "Checking privileges", _check_privileges),
        Step("backup_config", "Backing up sshd_config", _backup_config),
        Step("configure_sshd", "Configuring sshd_config", _configure_sshd, _restore_config),
        Step(
            "socket_override",
            "Fixing ssh.socket activation",
            _socket_override,
            _remove_socket_override,
        ),
        Step("install_pubkey", "Installing public key", _install_pubkey, _remove_pubkey),
        Step("restart_sshd", "Restarting sshd", _restart_sshd),
    ]


def setup_ssh(
    settings: SshSettings,
    host: Host,
    *,
    pubkey: str | None = None,
    history: RunHistory | None = None,
) -> RunReport:
    """Harden sshd on ``host`` and optionally authorize ``pubkey``.

    Raises:
        InvalidKeyError: if ``pubkey`` is not an OpenSSH public key.
            Checked before anything is touched.
    """
    context = StepContext(host=host, settings=settings)
    if pubkey:
        context.note("pubkey", PublicKey.parse(pubkey))

    runner = StepRunner(TASK_NAME, build_steps(), StepLedger(), context, history=history)
    report = runner.run()
    if report.ok:
        logger.info("SSH is now listening on port %d", settings.port)
    return report
