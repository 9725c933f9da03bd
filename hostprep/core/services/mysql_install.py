"""
MySQL binary installer — generic glibc tarball on CentOS 7.

Steps (ledger ``/opt/mysql80/.lock``):

    prerequisites → stop_services → remove_existing → user_and_dirs
        → dependencies → download → configure → initialize
        → validate → report

A failure rolls back through the steps already recorded: restore
the my.cnf and unit file that were backed up, stop and disable the
service, delete the installation tree, remove the mysql account.
``diagnose`` collects the troubleshooting report without changing
anything.
"""

from __future__ import annotations

import logging
import re
import shlex
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from hostprep.core.engine.runner import RunReport, Step, StepContext, StepRunner
from hostprep.core.errors import InstallCancelled, PrivilegeError, StepError
from hostprep.core.models.settings import MysqlSettings
from hostprep.core.persistence.history import RunHistory
from hostprep.core.persistence.step_ledger import StepLedger
from hostprep.core.services.backup import BackupStore
from hostprep.core.services.host import Host

logger = logging.getLogger(__name__)

TASK_NAME = "mysql"
SUPPORTED_RELEASE = "CentOS Linux release 7"
DOWNLOAD_SITE = "https://dev.mysql.com"
COMPETING_SERVICES = ("mysqld", "mariadb", "mysql")

# BackupStore names
CNF_BEFORE_REMOVAL = "my.cnf_backup"
UNIT_BEFORE_REMOVAL = "mysqld.service_backup"
DATA_BEFORE_REMOVAL = "var_lib_mysql_backup"
CNF_BEFORE_WRITE = "my.cnf_existing"
UNIT_BEFORE_WRITE = "mysqld.service_existing"


# ── Templates ───────────────────────────────────────────────────


def render_my_cnf(s: MysqlSettings) -> str:
    return f"""[mysqld]
# Basic settings
basedir={s.base_dir}
datadir={s.data_dir}
socket={s.socket}
port={s.port}
user={s.user}

# Logging
log-error={s.log_dir}/mysql.err
pid-file={s.pid_file}
slow_query_log=1
slow_query_log_file={s.log_dir}/mysql-slow.log
long_query_time=2

# Binary logging
log-bin={s.binlog_dir}/mysql-bin
binlog_format=ROW
server-id=1
binlog_expire_logs_seconds=604800  # 7 days in seconds

# Character set and collation
character-set-server=utf8mb4
collation-server=utf8mb4_unicode_ci

# Case sensitivity
lower_case_table_names=1

# InnoDB settings
innodb_buffer_pool_size=256M
innodb_log_file_size=64M
innodb_flush_log_at_trx_commit=1
innodb_lock_wait_timeout=50

# Network settings
max_connections=200
max_connect_errors=100
bind-address=0.0.0.0

# Temporary directory
tmpdir={s.tmp_dir}

[client]
socket={s.socket}
default-character-set=utf8mb4

[mysql]
default-character-set=utf8mb4
"""


def render_unit(s: MysqlSettings, use_safe: bool) -> str:
    """systemd unit: forking ``mysqld_safe`` or, without it, plain ``mysqld``."""
    if use_safe:
        return f"""[Unit]
Description=MySQL Community Server
Documentation=man:mysqld(8)
Documentation=http://dev.mysql.com/doc/refman/en/using-systemd.html
After=network.target
After=syslog.target

[Install]
WantedBy=multi-user.target

[Service]
User={s.user}
Group={s.group}
Type=forking
PIDFile={s.pid_file}
TimeoutSec=0
PermissionsStartOnly=true
ExecStart={s.bin_dir}/mysqld_safe --defaults-file={s.config_file} --pid-file={s.pid_file}
ExecReload=/bin/kill -HUP $MAINPID
KillMode=process
Restart=on-failure
RestartPreventExitStatus=1
LimitNOFILE=65535
LimitNPROC=65535
PrivateTmp=false
"""
    return f"""[Unit]
Description=MySQL Community Server
Documentation=man:mysqld(8)
After=network.target
After=syslog.target

[Install]
WantedBy=multi-user.target

[Service]
User={s.user}
Group={s.group}
Type=simple
ExecStart={s.bin_dir}/mysqld --defaults-file={s.config_file} --user={s.user}
Restart=on-failure
RestartPreventExitStatus=1
LimitNOFILE=65535
LimitNPROC=65535
PrivateTmp=false
StandardOutput=syslog
StandardError=syslog
SyslogIdentifier=mysqld
"""


def _sql_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def security_sql(root_password: str) -> str:
    pw = _sql_string(root_password)
    return f"""ALTER USER 'root'@'localhost' IDENTIFIED WITH mysql_native_password BY {pw};
CREATE USER IF NOT EXISTS 'root'@'%' IDENTIFIED WITH mysql_native_password BY {pw};
GRANT ALL PRIVILEGES ON *.* TO 'root'@'%' WITH GRANT OPTION;
DELETE FROM mysql.user WHERE User='';
DROP DATABASE IF EXISTS test;
DELETE FROM mysql.db WHERE Db='test' OR Db='test\\_%';
FLUSH PRIVILEGES;
"""


def path_export_line(s: MysqlSettings) -> str:
    return f"export PATH=$PATH:{s.bin_dir}"


# ── Helpers ─────────────────────────────────────────────────────


def _settings(ctx: StepContext) -> MysqlSettings:
    return ctx.settings


def free_bytes(path: Path) -> int:
    """Free space on the filesystem holding ``path`` (or its nearest existing parent)."""
    while not path.exists() and path != path.parent:
        path = path.parent
    return shutil.disk_usage(path).free


def archive_ok(path: Path, min_bytes: int) -> bool:
    if not path.is_file():
        logger.error("Downloaded file not found: %s", path)
        return False
    size = path.stat().st_size
    if size > min_bytes:
        logger.info("Downloaded file appears to be valid (size: %d bytes)", size)
        return True
    logger.error("Downloaded file appears to be corrupted (size: %d bytes)", size)
    return False


def parse_version(output: str) -> str | None:
    """``mysqld  Ver 8.0.36 for Linux ...`` → ``8.0.36``."""
    match = re.search(r"Ver\s+([\d.]+)", output)
    return match.group(1) if match else None


def _chown(host: Host, s: MysqlSettings, path: Path) -> None:
    host.run(f"chown -R {s.user}:{s.group} {shlex.quote(str(path))}")


def _stop_and_disable(host: Host) -> None:
    if host.service_active("mysqld"):
        host.systemctl("stop", "mysqld", check=False)
    host.systemctl("disable", "mysqld", check=False)


def _drop_account(host: Host, s: MysqlSettings) -> None:
    if host.user_exists(s.user):
        host.run(f"userdel {shlex.quote(s.user)}", check=False)
    if host.group_exists(s.group):
        host.run(f"groupdel {shlex.quote(s.group)}", check=False)


def _restore_backup(ctx: StepContext, name: str, target: Path) -> None:
    if ctx.host.simulated:
        logger.info("[mock] restore %s from backup %s", target, name)
        return
    ctx.backups.restore(name, target)


# ── Steps ───────────────────────────────────────────────────────


def _prerequisites(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    if not host.is_root:
        raise PrivilegeError("This task must be run as root")

    release = s.release_file.read_text().strip() if s.release_file.is_file() else ""
    if SUPPORTED_RELEASE not in release:
        logger.warning(
            "This installer is designed for CentOS 7.9. Current OS: %s", release or "Unknown"
        )
        if ctx.confirm is None or not ctx.confirm("Do you want to continue anyway?"):
            raise InstallCancelled("Installation cancelled by user")

    available = free_bytes(s.base_dir.parent)
    gib = 1024**3
    if available < s.min_free_bytes:
        raise StepError(
            f"Insufficient disk space. Required: {s.min_free_bytes // gib}GB, "
            f"Available: {available // gib}GB"
        )
    logger.info("Disk space check passed. Available: %dGB", available // gib)

    logger.info("Checking network connectivity...")
    if not host.url_reachable(DOWNLOAD_SITE, timeout=10):
        raise StepError(
            "Cannot reach MySQL download server. Please check your internet connection."
        )

    missing = [cmd for cmd in s.required_commands if not host.command_exists(cmd)]
    if missing:
        raise StepError(f"Required command not found: {', '.join(missing)}")
    logger.info("All required commands are available")

    for service in ("mysqld", "mariadb"):
        if host.service_active(service):
            logger.warning("%s service is currently running", service)


def _stop_services(ctx: StepContext) -> None:
    host: Host = ctx.host
    for service in COMPETING_SERVICES:
        if not host.service_active(service):
            logger.info("%s service is not running", service)
            continue
        logger.info("Stopping %s service...", service)
        if not host.systemctl("stop", service, check=False).ok:
            logger.warning("Failed to stop %s service", service)


def _remove_existing(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    backups: BackupStore = ctx.backups

    backups.backup_if_exists(s.config_file, CNF_BEFORE_REMOVAL)
    backups.backup_if_exists(s.service_file, UNIT_BEFORE_REMOVAL)
    backups.backup_if_exists(s.legacy_data_dir, DATA_BEFORE_REMOVAL)

    logger.info("Removing MySQL/MariaDB packages...")
    if not host.yum("remove", "-y", "mariadb*", "mysql*", check=False).ok:
        logger.warning("Some packages could not be removed (may not be installed)")

    for path in s.cleanup_paths:
        try:
            if host.remove(path):
                logger.info("Removed %s", path)
        except OSError as e:
            logger.warning("Failed to remove %s: %s", path, e)

    if host.user_exists(s.user):
        logger.info("Removing existing MySQL user...")
        if not host.run(f"userdel {shlex.quote(s.user)}", check=False).ok:
            logger.warning("Failed to remove MySQL user")
    if host.group_exists(s.group):
        logger.info("Removing existing MySQL group...")
        if not host.run(f"groupdel {shlex.quote(s.group)}", check=False).ok:
            logger.warning("Failed to remove MySQL group")


def _restore_removed(ctx: StepContext) -> None:
    s = _settings(ctx)
    _restore_backup(ctx, CNF_BEFORE_REMOVAL, s.config_file)
    _restore_backup(ctx, UNIT_BEFORE_REMOVAL, s.service_file)
    ctx.host.systemctl("daemon-reload")


def _user_and_dirs(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    if not host.group_exists(s.group):
        host.run(f"groupadd {shlex.quote(s.group)}")
        logger.info("MySQL group created successfully")
    else:
        logger.info("MySQL group already exists")

    if not host.user_exists(s.user):
        host.run(f"useradd -r -g {shlex.quote(s.group)} -s /bin/false {shlex.quote(s.user)}")
        logger.info("MySQL user created successfully")
    else:
        logger.info("MySQL user already exists")

    for directory in s.all_dirs():
        host.make_dirs(directory)
        logger.info("Created directory: %s", directory)
    _chown(host, s, s.base_dir)


def _undo_user_and_dirs(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    host.remove(s.base_dir)
    _drop_account(host, s)


def _dependencies(ctx: StepContext) -> None:
    host: Host = ctx.host
    for dep in _settings(ctx).dependencies:
        logger.info("Installing %s...", dep)
        host.yum("install", "-y", shlex.quote(dep))
    logger.info("All dependencies installed successfully")


def fetch_archive(host: Host, s: MysqlSettings, sleep: Callable[[float], None] = time.sleep) -> Path:
    """Download the tarball into the work dir unless already there."""
    archive = s.work_dir / s.archive_name
    if archive.is_file():
        logger.info("MySQL archive already exists, skipping download")
        return archive

    logger.info("Downloading MySQL %s from %s", s.version, s.download_url)
    host.make_dirs(s.work_dir)
    for attempt in range(1, s.download_attempts + 1):
        logger.info("Download attempt %d/%d", attempt, s.download_attempts)
        try:
            host.download(s.download_url, archive)
        except OSError as e:
            logger.warning("Download attempt %d failed: %s", attempt, e)
            if attempt == s.download_attempts:
                raise StepError("All download attempts failed") from e
            sleep(s.download_retry_delay)
            continue
        logger.info("MySQL download completed")
        break
    return archive


def _download(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    archive = fetch_archive(host, s)
    if not host.simulated and not archive_ok(archive, s.min_archive_bytes):
        raise StepError("Downloaded file verification failed")

    install_root = s.base_dir.parent
    logger.info("Extracting MySQL archive...")
    host.run(f"tar -xf {shlex.quote(str(archive))} -C {shlex.quote(str(install_root))}")

    extracted = install_root / s.dist_name
    if not host.simulated and not extracted.is_dir():
        raise StepError(f"Extracted directory not found: {extracted}")

    if host.remove(s.base_dir):
        logger.info("Removed existing %s", s.base_dir)
    host.move(extracted, s.base_dir)

    for directory in s.data_dirs():
        host.make_dirs(directory)
    _chown(host, s, s.base_dir)

    line = path_export_line(s)
    profile = s.profile_file.read_text() if s.profile_file.is_file() else ""
    if str(s.bin_dir) not in profile:
        host.write_text(s.profile_file, line + "\n", append=True)
        logger.info("MySQL added to system PATH")
    else:
        logger.info("MySQL already in system PATH")

    if host.remove(archive):
        logger.info("Removed downloaded archive %s", archive)


def _undo_download(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    host.remove(s.base_dir)
    if not s.profile_file.is_file():
        return
    lines = s.profile_file.read_text().splitlines(keepends=True)
    kept = [line for line in lines if line.strip() != path_export_line(s)]
    if len(kept) != len(lines):
        host.write_text(s.profile_file, "".join(kept))


def _configure(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    backups: BackupStore = ctx.backups

    backups.backup_if_exists(s.config_file, CNF_BEFORE_WRITE)
    host.write_text(s.config_file, render_my_cnf(s))
    logger.info("MySQL configuration file created: %s", s.config_file)

    backups.backup_if_exists(s.service_file, UNIT_BEFORE_WRITE)
    use_safe = host.succeeds(f"test -x {shlex.quote(str(s.bin_dir / 'mysqld_safe'))}")
    if not use_safe:
        logger.warning("mysqld_safe not found, creating alternative service configuration...")
    host.write_text(s.service_file, render_unit(s, use_safe))
    logger.info("MySQL systemd service file created: %s", s.service_file)

    host.systemctl("daemon-reload")


def _undo_configure(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    _stop_and_disable(host)
    host.remove(s.service_file)
    host.remove(s.config_file)
    _restore_backup(ctx, CNF_BEFORE_WRITE, s.config_file)
    _restore_backup(ctx, UNIT_BEFORE_WRITE, s.service_file)
    host.systemctl("daemon-reload")


def wait_until_ready(
    host: Host, s: MysqlSettings, sleep: Callable[[float], None] = time.sleep
) -> bool:
    ping = f"{s.bin_dir}/mysqladmin ping --silent"
    for attempt in range(s.ready_timeout):
        if host.succeeds(ping):
            return True
        if attempt + 1 < s.ready_timeout:
            sleep(1)
    return False


def _initialize(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    logger.info("Running MySQL initialization...")
    host.run(
        f"{s.bin_dir}/mysqld --initialize-insecure --user={shlex.quote(s.user)}"
        " --lower-case-table-names=1",
        cwd=s.work_dir,
    )
    host.systemctl("start", "mysqld")
    host.systemctl("enable", "mysqld")

    logger.info("Waiting for MySQL to be ready...")
    if not wait_until_ready(host, s):
        raise StepError(f"MySQL failed to start within {s.ready_timeout} seconds")

    logger.info("Configuring MySQL security settings...")
    receipt = host.run(
        f"{s.bin_dir}/mysql -uroot --connect-expired-password",
        input=security_sql(s.root_password),
        check=False,
    )
    if receipt.ok:
        logger.info("MySQL security configuration completed")
    else:
        logger.warning("Some security configurations may have failed, but MySQL is running")


def _undo_initialize(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)
    _stop_and_disable(host)
    if s.data_dir.is_dir():
        for child in s.data_dir.iterdir():
            host.remove(child)


def _validate(ctx: StepContext) -> None:
    host: Host = ctx.host
    s = _settings(ctx)

    if not host.service_active("mysqld"):
        raise StepError("MySQL service is not running")
    logger.info("MySQL service is running")

    version = parse_version(host.output(f"{s.bin_dir}/mysqld --version"))
    if version:
        logger.info("MySQL version: %s", version)
    else:
        logger.warning("Could not determine MySQL version")

    probe = f'{s.bin_dir}/mysql -uroot -p{shlex.quote(s.root_password)} -e "SELECT 1;"'
    if not host.succeeds(probe):
        raise StepError("Database connection test failed")
    logger.info("Database connection test passed")


def generate_report(
    host: Host,
    s: MysqlSettings,
    *,
    log_file: Path | None = None,
    backup_dir: Path | None = None,
) -> Path:
    """Write the post-install report under ``report_dir`` and return its path."""
    path = s.report_dir / f"mysql_installation_report_{time.strftime('%Y%m%d_%H%M%S')}.txt"
    port_status = host.output(f"ss -tlnp | grep :{s.port}") or f"Port {s.port} not found"
    content = f"""MySQL Installation Report
========================
Installation Date: {time.strftime('%Y-%m-%d %H:%M:%S')}
MySQL Version: {s.version}
Installation Directory: {s.base_dir}
Data Directory: {s.data_dir}
Configuration File: {s.config_file}
Service File: {s.service_file}

Service Status:
{host.output("systemctl status mysqld --no-pager -l")}

MySQL Process:
{host.output("ps aux | grep mysqld | grep -v grep")}

Port Status:
{port_status}

Installation Log: {log_file or "-"}
Backup Directory: {backup_dir or "-"}

Security Notes:
- Root password has been set
- Anonymous users have been removed
- Test database has been removed
- Remote root access has been enabled

Next Steps:
1. Test the MySQL connection: mysql -uroot -p
2. Create application-specific databases and users
3. Configure firewall if needed: firewall-cmd --add-port={s.port}/tcp --permanent
4. Review and adjust MySQL configuration in {s.config_file}
5. Set up regular backups
"""
    host.write_text(path, content)
    logger.info("Installation report generated: %s", path)
    return path


def _report(ctx: StepContext) -> None:
    backups: BackupStore = ctx.backups
    path = generate_report(
        ctx.host,
        _settings(ctx),
        log_file=ctx.noted("log_file"),
        backup_dir=backups.root if backups.names() else None,
    )
    ctx.note("report_file", path)


def build_steps() -> list[Step]:
    return [
        Step("prerequisites", "Performing prerequisite checks", _prerequisites),
        Step("stop_services", "Stopping existing MySQL/MariaDB services", _stop_services),
        Step(
            "remove_existing",
            "Removing existing MySQL/MariaDB installations",
            _remove_existing,
            _restore_removed,
        ),
        Step(
            "user_and_dirs",
            "Creating MySQL user and directories",
            _user_and_dirs,
            _undo_user_and_dirs,
        ),
        Step("dependencies", "Installing required dependencies", _dependencies),
        Step("download", "Downloading and installing MySQL", _download, _undo_download),
        Step("configure", "Creating MySQL configuration files", _configure, _undo_configure),
        Step("initialize", "Initializing MySQL database", _initialize, _undo_initialize),
        Step("validate", "Validating MySQL installation", _validate),
        Step("report", "Generating installation report", _report),
    ]


def build_runner(
    settings: MysqlSettings,
    host: Host,
    *,
    confirm: Callable[[str], bool] | None = None,
    history: RunHistory | None = None,
    log_file: Path | None = None,
) -> StepRunner:
    context = StepContext(
        host=host,
        settings=settings,
        backups=BackupStore.timestamped(settings.backup_root, "mysql_backup"),
        confirm=confirm,
    )
    if log_file is not None:
        context.note("log_file", log_file)
    ledger = StepLedger(settings.ledger_file)
    if host.simulated:
        ledger = ledger.detached()
    return StepRunner(TASK_NAME, build_steps(), ledger, context, history=history)


def install_mysql(
    settings: MysqlSettings,
    host: Host,
    *,
    confirm: Callable[[str], bool] | None = None,
    history: RunHistory | None = None,
    dry_run: bool = False,
    log_file: Path | None = None,
) -> RunReport:
    """Install MySQL, resuming after the last recorded step.

    ``confirm`` is asked before continuing on a host that is not
    CentOS 7; without it such a host cancels the install.
    """
    runner = build_runner(
        settings, host, confirm=confirm, history=history, log_file=log_file
    )
    logger.info("Starting MySQL %s installation process...", settings.version)
    report = runner.run(dry_run=dry_run)
    if report.ok and not dry_run:
        logger.info("MySQL installation completed successfully!")
    return report


# ── Diagnostics ─────────────────────────────────────────────────


def diagnose(settings: MysqlSettings, host: Host) -> str:
    """Troubleshooting report. Read-only."""
    s = settings
    out: list[str] = []
    add = out.append

    def section(title: str) -> None:
        add("")
        add(title)

    add("=" * 42)
    add("MySQL Installation Diagnostic Report")
    add("=" * 42)
    add(f"Generated at: {time.strftime('%Y-%m-%d %H:%M:%S')}")

    section("1. Service Status:")
    add(host.output("systemctl status mysqld --no-pager") or "MySQL service not found")

    section("2. Recent systemd logs:")
    add(host.output('journalctl -u mysqld --since "30 minutes ago" --no-pager | tail -20'))

    section("3. MySQL Error Log:")
    error_log = s.log_dir / "mysql.err"
    if error_log.is_file():
        add(f"Last 20 lines of {error_log}:")
        add(_tail(error_log, 20))
    else:
        add(f"MySQL error log not found at {error_log}")
        for alt in (Path("/var/log/mysqld.log"), Path("/var/log/mysql/error.log")):
            if alt.is_file():
                add(f"Found alternative log at {alt}:")
                add(_tail(alt, 10))
                break

    section("4. Directory Structure:")
    add(f"MySQL base directory: {s.base_dir}")
    add("Required directories:")
    for directory in s.data_dirs():
        mark = "✓" if directory.is_dir() else "✗"
        add(f"{mark} {directory}" + ("" if directory.is_dir() else " (missing)"))

    section("5. Configuration File:")
    if s.config_file.is_file():
        add(f"Configuration file exists: {s.config_file}")
    else:
        add(f"Configuration file missing: {s.config_file}")

    section("6. MySQL User and Permissions:")
    ident = host.output(f"id {shlex.quote(s.user)}")
    add(f"MySQL user exists: {ident}" if ident else f"MySQL user not found: {s.user}")

    section("7. Process Information:")
    add(host.output("ps aux | grep mysqld | grep -v grep") or "No MySQL processes running")

    section("8. Service Configuration Check:")
    if s.service_file.is_file():
        add(f"Service file exists: {s.service_file}")
        add("Service file contents:")
        add(s.service_file.read_text())
        add("Executable checks:")
        for binary in ("mysqld", "mysqld_safe"):
            ok = host.succeeds(f"test -x {shlex.quote(str(s.bin_dir / binary))}")
            add(f"✓ {binary} executable exists" if ok
                else f"✗ {binary} executable missing or not executable")
    else:
        add(f"Service file missing: {s.service_file}")

    section("9. Port Status:")
    add(host.output(f"ss -tlnp | grep :{s.port}") or f"Port {s.port} not in use")

    section("10. Disk Space:")
    add(host.output(f"df -h {shlex.quote(str(s.base_dir.parent))}"))

    section("11. Configuration Validation:")
    mysqld = s.bin_dir / "mysqld"
    if host.succeeds(f"test -x {shlex.quote(str(mysqld))}"):
        receipt = host.run(
            f"{mysqld} --defaults-file={s.config_file} --validate-config 2>&1", check=False
        )
        add(receipt.output if receipt.ok else "Configuration validation failed")
    else:
        add("mysqld binary not found or not executable")

    add("=" * 42)
    add("Diagnostic Report Complete")
    add("=" * 42)
    return "\n".join(out) + "\n"


def _tail(path: Path, lines: int) -> str:
    return "\n".join(path.read_text(errors="replace").splitlines()[-lines:])
