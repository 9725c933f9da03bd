"""
Shared test fixtures and configuration.

Every task runs against a ``Host`` whose shell adapter is a
MockAdapter, and against settings whose paths all live in tmp_path.
File edits are real (inside tmp_path); commands are only recorded.
"""

import logging
from pathlib import Path

import pytest

from hostprep.adapters.mock import MockAdapter
from hostprep.adapters.registry import AdapterRegistry
from hostprep.core.models.settings import MysqlSettings, PhpSettings, SshSettings
from hostprep.core.services.host import Host


class OfflineHost(Host):
    """Host with the network stubbed out."""

    def __init__(self, *args, reachable: bool = True, payload: bytes = b"x" * 64, **kwargs):
        super().__init__(*args, **kwargs)
        self.reachable = reachable
        self.payload = payload
        self.downloads: list[tuple[str, Path]] = []
        self.download_error: OSError | None = None

    def url_reachable(self, url: str, timeout: int = 10) -> bool:
        return self.reachable

    def download(self, url: str, dest: Path, timeout: int = 60) -> None:
        self.downloads.append((url, dest))
        if self.download_error is not None:
            raise self.download_error
        dest.write_bytes(self.payload)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Drop the handlers ``setup_logging`` and ``attach_task_log`` install."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def mock_adapter() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def registry(mock_adapter: MockAdapter) -> AdapterRegistry:
    reg = AdapterRegistry()
    reg.register(mock_adapter)
    return reg


@pytest.fixture
def host(registry: AdapterRegistry) -> OfflineHost:
    """Root on Linux, commands recorded by ``mock_adapter``."""
    return OfflineHost(registry, system="Linux", euid=0)


@pytest.fixture
def ssh_settings(tmp_path: Path) -> SshSettings:
    config = tmp_path / "etc" / "ssh" / "sshd_config"
    config.parent.mkdir(parents=True)
    config.write_text(
        "#Port 22\n"
        "ListenAddress 0.0.0.0\n"
        "#PermitRootLogin prohibit-password\n"
        "PasswordAuthentication yes\n"
        "UsePAM yes\n"
    )
    return SshSettings(
        config_file=config,
        socket_override_dir=tmp_path / "etc" / "systemd" / "system" / "ssh.socket.d",
        home_dir=tmp_path / "home",
    )


@pytest.fixture
def mysql_settings(tmp_path: Path) -> MysqlSettings:
    release = tmp_path / "etc" / "redhat-release"
    release.parent.mkdir(parents=True, exist_ok=True)
    release.write_text("CentOS Linux release 7.9.2009 (Core)\n")
    return MysqlSettings(
        base_dir=tmp_path / "usr" / "local" / "mysql",
        socket=tmp_path / "mysql.sock",
        config_file=tmp_path / "etc" / "my.cnf",
        service_file=tmp_path / "etc" / "systemd" / "system" / "mysqld.service",
        work_dir=tmp_path / "opt",
        profile_file=tmp_path / "etc" / "profile",
        release_file=release,
        report_dir=tmp_path / "reports",
        backup_root=tmp_path / "backups",
        ledger_file=tmp_path / "opt" / "mysql80" / ".lock",
        legacy_data_dir=tmp_path / "var" / "lib" / "mysql",
        cleanup_paths=[tmp_path / "var" / "lib" / "mysql", tmp_path / "etc" / "my.cnf.d"],
        min_archive_bytes=10,
        min_free_bytes=0,
        download_retry_delay=0,
        ready_timeout=3,
    )


@pytest.fixture
def php_settings(tmp_path: Path) -> PhpSettings:
    www_conf = tmp_path / "etc" / "php-fpm.d" / "www.conf"
    www_conf.parent.mkdir(parents=True)
    www_conf.write_text(
        "[www]\n"
        "user = apache\n"
        "group = apache\n"
        "listen = /run/php-fpm/www.sock\n"
        "pm = dynamic\n"
    )
    return PhpSettings(
        lock_dir=tmp_path / "opt" / "lnmp73",
        www_conf=www_conf,
        fpm_conf=tmp_path / "etc" / "php-fpm.conf",
        nginx_repo=tmp_path / "etc" / "yum.repos.d" / "nginx.repo",
        web_root=tmp_path / "usr" / "share" / "nginx" / "html",
        log_dir=tmp_path / "logs",
        settle_seconds=0,
        purge_paths=[str(tmp_path / "purge" / "php*")],
    )
