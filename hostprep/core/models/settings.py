"""
Settings models — every tunable of every provisioning task.

Defaults reproduce the stock behaviour of each task. Paths are
fields rather than constants so a task can be pointed at a scratch
tree (tests, staging images) without touching the code.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class SshSettings(BaseModel):
    """sshd hardening (``hostprep ssh setup``)."""

    port: int = Field(default=29, ge=1, le=65535)
    config_file: Path = Path("/etc/ssh/sshd_config")
    permit_root_login: str = "yes"
    pubkey_authentication: str = "yes"
    password_authentication: str = "no"
    socket_override_dir: Path = Path("/etc/systemd/system/ssh.socket.d")
    launchd_plist: Path = Path("/System/Library/LaunchDaemons/ssh.plist")
    home_dir: Path | None = None  # authorized_keys owner home; None = resolve

    def directives(self) -> list[tuple[str, str]]:
        """sshd_config directives in the order they are written."""
        return [
            ("Port", str(self.port)),
            ("PermitRootLogin", self.permit_root_login),
            ("PubkeyAuthentication", self.pubkey_authentication),
            ("PasswordAuthentication", self.password_authentication),
        ]


class KeyCommandSettings(BaseModel):
    """One-line remote setup command (``hostprep ssh gen-cmd``)."""

    remote_host: str = "run.ckyl.in"
    script_path: str = "/self/setup-ssh.sh"
    key_search: list[str] = Field(
        default_factory=lambda: ["id_ed25519.pub", "id_rsa.pub"],
    )

    @property
    def script_url(self) -> str:
        return f"https://{self.remote_host}{self.script_path}"


class MysqlSettings(BaseModel):
    """MySQL binary installer (``hostprep install mysql``)."""

    version: str = "8.0.36"
    user: str = "mysql"
    group: str = "mysql"
    root_password: str = "RootPassw0rd."
    base_dir: Path = Path("/usr/local/mysql")
    socket: Path = Path("/tmp/mysql.sock")
    config_file: Path = Path("/etc/my.cnf")
    service_file: Path = Path("/etc/systemd/system/mysqld.service")
    work_dir: Path = Path("/opt")
    profile_file: Path = Path("/etc/profile")
    release_file: Path = Path("/etc/redhat-release")
    report_dir: Path = Path("/tmp")
    backup_root: Path = Path("/tmp")
    ledger_file: Path = Path("/opt/mysql80/.lock")
    port: int = 3306
    download_attempts: int = 3
    download_retry_delay: float = 5.0
    min_archive_bytes: int = 524288000  # 500 MiB
    min_free_bytes: int = 5 * 1024**3
    ready_timeout: int = 30
    required_commands: list[str] = Field(
        default_factory=lambda: ["wget", "tar", "systemctl", "groupadd", "useradd"],
    )
    dependencies: list[str] = Field(
        default_factory=lambda: ["wget", "libaio", "numactl-libs", "openssl-devel"],
    )
    cleanup_paths: list[Path] = Field(
        default_factory=lambda: [
            Path("/var/lib/mysql"),
            Path("/etc/my.cnf"),
            Path("/etc/my.cnf.d"),
            Path("/etc/mysql"),
            Path("/var/log/mysqld.log"),
            Path("/var/log/mysql"),
            Path("/run/mysqld"),
            Path("/tmp/mysql.sock"),
            Path("/tmp/mysqld.sock"),
        ],
    )
    legacy_data_dir: Path = Path("/var/lib/mysql")

    @property
    def data_dir(self) -> Path:
        return self.base_dir / "data"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def tmp_dir(self) -> Path:
        return self.base_dir / "tmp"

    @property
    def binlog_dir(self) -> Path:
        return self.base_dir / "binlog"

    @property
    def bin_dir(self) -> Path:
        return self.base_dir / "bin"

    @property
    def pid_file(self) -> Path:
        return self.base_dir / "mysql.pid"

    @property
    def dist_name(self) -> str:
        return f"mysql-{self.version}-linux-glibc2.12-x86_64"

    @property
    def archive_name(self) -> str:
        return f"{self.dist_name}.tar.xz"

    @property
    def download_url(self) -> str:
        series = ".".join(self.version.split(".")[:2])
        return (
            f"https://dev.mysql.com/get/Downloads/MySQL-{series}/{self.archive_name}"
        )

    def all_dirs(self) -> list[Path]:
        """Base directory first, then the data directories under it."""
        return [self.base_dir, *self.data_dirs()]

    def data_dirs(self) -> list[Path]:
        return [self.data_dir, self.log_dir, self.tmp_dir, self.binlog_dir]


class PhpSettings(BaseModel):
    """PHP (Remi) + Nginx installer (``hostprep install php``)."""

    repo_version: str = "73"
    runtime_version: str = "7.3.33"
    lock_dir: Path = Path("/opt/lnmp73")
    www_conf: Path = Path("/etc/php-fpm.d/www.conf")
    fpm_conf: Path = Path("/etc/php-fpm.conf")
    nginx_repo: Path = Path("/etc/yum.repos.d/nginx.repo")
    web_root: Path = Path("/usr/share/nginx/html")
    log_dir: Path = Path("/tmp")
    remi_release_url: str = (
        "https://mirrors.tuna.tsinghua.edu.cn/remi/enterprise/remi-release-7.rpm"
    )
    listen: str = "127.0.0.1:9000"
    fpm_user: str = "nginx"
    settle_seconds: float = 2.0
    packages: list[str] = Field(
        default_factory=lambda: [
            "php", "php-cli", "php-fpm", "php-common", "php-devel", "php-mysqlnd",
            "php-gd", "php-json", "php-xml", "php-zip", "php-bcmath", "php-mbstring",
            "php-snmp", "php-opcache", "php-pdo", "php-process", "php-pear",
        ],
    )
    purge_paths: list[str] = Field(
        default_factory=lambda: ["/etc/php*", "/usr/lib64/php", "/var/lib/php", "/etc/nginx"],
    )

    @property
    def ledger_file(self) -> Path:
        return self.lock_dir / ".lock"

    @property
    def www_conf_backup(self) -> Path:
        return self.www_conf.with_name(self.www_conf.name + ".backup")


class Settings(BaseModel):
    """Root settings document, as loaded from hostprep.yml + environment."""

    ssh: SshSettings = Field(default_factory=SshSettings)
    keys: KeyCommandSettings = Field(default_factory=KeyCommandSettings)
    mysql: MysqlSettings = Field(default_factory=MysqlSettings)
    php: PhpSettings = Field(default_factory=PhpSettings)
    state_dir: Path | None = None
