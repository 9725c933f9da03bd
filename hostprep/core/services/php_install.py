"""
PHP (Remi) + Nginx installer for CentOS 7.

Steps (ledger ``/opt/lnmp73/.lock``):

    remove_old → remi → php → php_fpm_conf → nginx → verify

Re-running resumes at the first step not in the ledger.
"""

from __future__ import annotations

import glob
import logging
import re
import time
from pathlib import Path

from hostprep.core.engine.runner import RunReport, Step, StepContext, StepRunner
from hostprep.core.errors import PrivilegeError, StepError
from hostprep.core.models.settings import PhpSettings
from hostprep.core.persistence.history import RunHistory
from hostprep.core.persistence.step_ledger import StepLedger
from hostprep.core.services.backup import copy_aside, restore_aside
from hostprep.core.services.host import Host

logger = logging.getLogger(__name__)

TASK_NAME = "php"
FPM_SERVICE = "php-fpm"
OLD_SERVICES = ("nginx", "php-fpm", "php73-php-fpm")
EXTENSION_PATTERN = "zip|snmp|gd|json|xml|mysql|pdo_mysql|bcmath|mbstring|opcache"

NGINX_REPO = """[nginx]
name=nginx repo
baseurl=http://nginx.org/packages/centos/7/$basearch/
gpgcheck=0
enabled=1
"""

INFO_PAGE = """<?php
phpinfo();
?>
"""

TEST_PAGE = """<?php
echo "PHP is working!\\n";
echo "Current time: " . date('Y-m-d H:i:s') . "\\n";
echo "PHP version: " . PHP_VERSION . "\\n";
?>
"""

TEST_PAGES = {"info.php": INFO_PAGE, "test.php": TEST_PAGE}


def _settings(ctx: StepContext) -> PhpSettings:
    return ctx.settings


# ── www.conf ────────────────────────────────────────────────────


def configure_pool(text: str, user: str, listen: str) -> str:
    """Point the www pool at ``user``/``user`` and ``listen``."""
    text = re.sub(r"^user = .*$", f"user = {user}", text, flags=re.M)
    text = re.sub(r"^group = .*$", f"group = {user}", text, flags=re.M)
    return re.sub(r"^listen =.*$", f"listen = {listen}", text, flags=re.M)


# ── Checks ──────────────────────────────────────────────────────


def check_service(host: Host, service: str) -> bool:
    if host.service_active(service):
        logger.info("%s service is running", service)
        return True
    logger.error("%s service is not running", service)
    logger.info("Inspect with: systemctl status %s", service)
    logger.info("Service log: journalctl -u %s --since '10 minutes ago'", service)
    return False


def diagnose_php_fpm(host: Host, s: PhpSettings) -> str:
    """PHP-FPM troubleshooting report; also written to the log."""
    out = ["=== PHP-FPM service status ==="]
    out.append(host.output(f"systemctl status {FPM_SERVICE} --no-pager -l"))

    out.append("=== PHP-FPM configuration files ===")
    for label, path in (("Main config", s.fpm_conf), ("www pool config", s.www_conf)):
        out.append(f"{label} {'exists' if path.is_file() else 'missing'}: {path}")
    if s.www_conf.is_file():
        out.append("=== www.conf key settings ===")
        out.extend(
            line for line in s.www_conf.read_text().splitlines()
            if re.match(r"^(user|group|listen)", line)
        )

    out.append("=== PHP-FPM recent log ===")
    out.append(
        host.output(f"journalctl -u {FPM_SERVICE} --since '10 minutes ago' --no-pager")
    )

    out.append(f"=== {s.fpm_user} user ===")
    ident = host.output(f"id {s.fpm_user}")
    out.append(
        f"{s.fpm_user} user exists: {ident}" if ident
        else f"{s.fpm_user} user missing; install nginx or create the user first"
    )

    report = "\n".join(out)
    for line in report.splitlines():
        logger.error("%s", line)
    return report


def _fpm_failure(ctx: StepContext, message: str) -> StepError:
    diagnose_php_fpm(ctx.host, _settings(ctx))
    return StepError(message)


# ── Steps ───────────────────────────────────────────────────────


def _remove_old(ctx: StepContext) -> None:
    host: Host = ctx.host
    logger.info("Removing old Nginx / PHP ...")
    host.systemctl("stop", *OLD_SERVICES, check=False)
    host.yum("remove", "-y", "nginx*", "php*", "*-php*", check=False)
    for pattern in _settings(ctx).purge_paths:
        for match in sorted(glob.glob(pattern)):
            try:
                host.remove(Path(match))
            except OSError as e:
                logger.warning("Failed to remove %s: %s", match, e)


def _remi(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    logger.info("Installing EPEL & Remi repositories ...")
    host.yum("install", "-y", "epel-release")
    host.yum("install", "-y", s.remi_release_url)
    host.run("yum-config-manager --disable 'remi-php*'")
    host.run(f"yum-config-manager --enable remi-php{s.repo_version}")
    host.yum("makecache", "fast")


def _php(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    logger.info("Installing PHP %s and extensions ...", s.runtime_version)
    host.yum("install", "-y", *s.packages)
    if not host.yum("versionlock", "add", "'php-*'", check=False).ok:
        logger.warning("Could not lock PHP package versions")
    version = _first_line(host.output("php -v")) or "PHP version check failed"
    logger.info("PHP installed: %s", version)


def _php_fpm_conf(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    logger.info("Configuring PHP-FPM ...")

    if not s.www_conf.is_file():
        logger.error("PHP-FPM pool config missing: %s", s.www_conf)
        logger.info("Reinstalling php-fpm...")
        host.yum("reinstall", "-y", "php-fpm")
        if not s.www_conf.is_file() and not host.simulated:
            raise StepError(f"PHP-FPM pool config missing: {s.www_conf}")

    if not host.simulated:
        copy_aside(s.www_conf, ".backup")

    try:
        _configure_fpm(ctx)
    except StepError:
        logger.info("Reverting PHP-FPM changes...")
        _undo_php_fpm_conf(ctx)
        raise


def _configure_fpm(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    if not host.user_exists(s.fpm_user):
        logger.info("Creating %s user...", s.fpm_user)
        host.run(f"useradd -r -s /sbin/nologin {s.fpm_user}")
        ctx.note("created_user")

    logger.info("Updating PHP-FPM pool settings...")
    text = s.www_conf.read_text() if s.www_conf.is_file() else ""
    host.write_text(s.www_conf, configure_pool(text, s.fpm_user, s.listen))

    logger.info("Checking PHP-FPM configuration syntax...")
    if not host.succeeds("php-fpm -t"):
        raise _fpm_failure(ctx, "PHP-FPM configuration syntax error")

    host.systemctl("enable", FPM_SERVICE)
    logger.info("Starting PHP-FPM service...")
    if not host.systemctl("start", FPM_SERVICE, check=False).ok:
        raise _fpm_failure(ctx, "PHP-FPM failed to start")

    time.sleep(s.settle_seconds)
    if not check_service(host, FPM_SERVICE):
        raise _fpm_failure(ctx, "PHP-FPM is not running after start")


def _undo_php_fpm_conf(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    host.systemctl("stop", FPM_SERVICE, check=False)
    host.systemctl("disable", FPM_SERVICE, check=False)
    if not host.simulated and s.www_conf_backup.is_file():
        restore_aside(s.www_conf, ".backup")
    if ctx.noted("created_user"):
        host.run(f"userdel {s.fpm_user}", check=False)


def _nginx(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    logger.info("Installing official Nginx ...")
    host.write_text(s.nginx_repo, NGINX_REPO)
    host.yum("install", "-y", "nginx")
    host.systemctl("enable", "nginx")

    logger.info("Starting Nginx service...")
    started = host.systemctl("start", "nginx", check=False).ok
    if not started or not check_service(host, "nginx"):
        logger.error("%s", host.output("systemctl status nginx --no-pager -l"))
        raise StepError("Nginx failed to start" if not started else "Nginx is not running")


def _undo_nginx(ctx: StepContext) -> None:
    host: Host = ctx.host
    host.systemctl("stop", "nginx", check=False)
    host.systemctl("disable", "nginx", check=False)
    host.remove(_settings(ctx).nginx_repo)


def summary(host: Host) -> list[str]:
    """Versions, service states, extensions, ports, processes."""
    lines = [
        f"PHP version: {_first_line(host.output('php -v'))}",
        f"PHP-FPM state: {host.output(f'systemctl is-active {FPM_SERVICE}').strip() or 'unknown'}",
        f"Nginx state: {host.output('systemctl is-active nginx').strip() or 'unknown'}",
        "Loaded extensions:",
        host.output(f"php -m | grep -E '{EXTENSION_PATTERN}'"),
        "Listening ports:",
        host.output("ss -tlnp | grep -E ':80|:9000'") or "No listening ports detected",
        "Processes:",
        host.output("ps aux | grep -E 'nginx|php-fpm' | grep -v grep")
        or "No related processes detected",
    ]
    return lines


def _verify(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    logger.info("Verifying installation...")
    logger.info("=" * 38)
    for line in summary(host):
        logger.info("%s", line)

    logger.info("Creating PHP test files...")
    for name, content in TEST_PAGES.items():
        host.write_text(s.web_root / name, content)
    logger.info("=" * 38)


def build_steps() -> list[Step]:
    return [
        Step("remove_old", "Removing old Nginx / PHP", _remove_old),
        Step("remi", "Installing EPEL & Remi repositories", _remi),
        Step("php", "Installing PHP and extensions", _php),
        Step("php_fpm_conf", "Configuring PHP-FPM", _php_fpm_conf, _undo_php_fpm_conf),
        Step("nginx", "Installing Nginx", _nginx, _undo_nginx),
        Step("verify", "Verifying installation", _verify),
    ]


def build_runner(
    settings: PhpSettings, host: Host, *, history: RunHistory | None = None
) -> StepRunner:
    context = StepContext(host=host, settings=settings)
    ledger = StepLedger(settings.ledger_file)
    if host.simulated:
        ledger = ledger.detached()
    return StepRunner(TASK_NAME, build_steps(), ledger, context, history=history)


def install_php(
    settings: PhpSettings,
    host: Host,
    *,
    history: RunHistory | None = None,
    dry_run: bool = False,
) -> RunReport:
    """Install PHP + Nginx, resuming after the last recorded step.

    Raises:
        PrivilegeError: when not running as root.
    """
    if not host.is_root:
        raise PrivilegeError("Must run as root")
    logger.info("PHP %s + Nginx installation started", settings.runtime_version)
    report = build_runner(settings, host, history=history).run(dry_run=dry_run)
    if report.ok and not dry_run:
        logger.info("PHP %s + Nginx installation completed!", settings.runtime_version)
    return report


def completion_notes(settings: PhpSettings) -> list[str]:
    return [
        f"All done! Web root: {settings.web_root}",
        "",
        "Test URLs:",
        "  - PHP info page: http://YOUR_SERVER_IP/info.php",
        "  - PHP test page: http://YOUR_SERVER_IP/test.php",
        "",
        "Service management:",
        "  - Restart PHP-FPM: systemctl restart php-fpm",
        "  - Restart Nginx:   systemctl restart nginx",
        "  - Status:          systemctl status php-fpm nginx",
        "",
        "Configuration files:",
        "  - PHP:     /etc/php.ini",
        f"  - PHP-FPM: {settings.www_conf}",
        "  - Nginx:   /etc/nginx/",
    ]


def _first_line(text: str) -> str:
    return text.splitlines()[0] if text.strip() else ""

