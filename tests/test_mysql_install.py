"""
Tests for the MySQL binary installer — templates, download, full run, rollback.

Commands are recorded by the mock adapter, so ``tar`` never extracts
anything: tests that get past the download step pre-create the
directory the tarball would have unpacked to.
"""

from pathlib import Path

import pytest

from hostprep.adapters.registry import AdapterRegistry
from hostprep.core.errors import StepError
from hostprep.core.persistence.history import RunHistory
from hostprep.core.persistence.step_ledger import StepLedger
from hostprep.core.services.host import Host
from hostprep.core.services.mysql_install import (
    build_steps,
    diagnose,
    fetch_archive,
    install_mysql,
    parse_version,
    path_export_line,
    render_my_cnf,
    render_unit,
    security_sql,
    wait_until_ready,
)


@pytest.fixture
def unpacked(mysql_settings) -> Path:
    """Directory ``tar -xf`` would have produced."""
    extracted = mysql_settings.base_dir.parent / mysql_settings.dist_name
    (extracted / "bin").mkdir(parents=True)
    (extracted / "bin" / "mysqld").write_text("#!/bin/sh\n")
    return extracted


# ── Templates ────────────────────────────────────────────────────────


class TestTemplates:
    def test_my_cnf_paths(self, mysql_settings):
        cnf = render_my_cnf(mysql_settings)
        assert f"datadir={mysql_settings.data_dir}" in cnf
        assert f"socket={mysql_settings.socket}" in cnf
        assert f"log-bin={mysql_settings.binlog_dir}/mysql-bin" in cnf
        assert "lower_case_table_names=1" in cnf
        assert cnf.startswith("[mysqld]\n")

    def test_unit_with_mysqld_safe(self, mysql_settings):
        unit = render_unit(mysql_settings, use_safe=True)
        assert "Type=forking" in unit
        assert f"{mysql_settings.bin_dir}/mysqld_safe --defaults-file=" in unit

    def test_unit_without_mysqld_safe(self, mysql_settings):
        unit = render_unit(mysql_settings, use_safe=False)
        assert "Type=simple" in unit
        assert f"ExecStart={mysql_settings.bin_dir}/mysqld --defaults-file=" in unit

    def test_security_sql(self):
        sql = security_sql("RootPassw0rd.")
        assert "BY 'RootPassw0rd.';" in sql
        assert "Db='test\\_%'" in sql
        assert sql.rstrip().endswith("FLUSH PRIVILEGES;")

    def test_security_sql_escapes_password(self):
        sql = security_sql("it's\\x")
        assert "'it''s\\\\x'" in sql

    def test_path_export_line(self, mysql_settings):
        assert path_export_line(mysql_settings) == f"export PATH=$PATH:{mysql_settings.bin_dir}"

    @pytest.mark.parametrize(
        "output,expected",
        [
            ("/usr/local/mysql/bin/mysqld  Ver 8.0.36 for Linux on x86_64", "8.0.36"),
            ("", None),
            ("command not found", None),
        ],
    )
    def test_parse_version(self, output, expected):
        assert parse_version(output) == expected


# ── Download and readiness ───────────────────────────────────────────


class TestFetchArchive:
    def test_downloads_into_work_dir(self, host, mysql_settings):
        archive = fetch_archive(host, mysql_settings, sleep=lambda s: None)
        assert archive == mysql_settings.work_dir / mysql_settings.archive_name
        assert archive.is_file()
        assert host.downloads == [(mysql_settings.download_url, archive)]

    def test_existing_archive_is_reused(self, host, mysql_settings):
        mysql_settings.work_dir.mkdir(parents=True)
        (mysql_settings.work_dir / mysql_settings.archive_name).write_bytes(b"cached")
        fetch_archive(host, mysql_settings, sleep=lambda s: None)
        assert host.downloads == []

    def test_retries_then_fails(self, host, mysql_settings):
        settings = mysql_settings.model_copy(update={"download_retry_delay": 1.5})
        host.download_error = OSError("connection reset")
        sleeps: list[float] = []
        with pytest.raises(StepError, match="All download attempts failed"):
            fetch_archive(host, settings, sleep=sleeps.append)
        assert len(host.downloads) == 3
        assert sleeps == [1.5, 1.5]


class TestWaitUntilReady:
    def test_ready_immediately(self, host, mysql_settings):
        assert wait_until_ready(host, mysql_settings, sleep=lambda s: None)

    def test_times_out(self, host, mock_adapter, mysql_settings):
        ping = f"{mysql_settings.bin_dir}/mysqladmin ping --silent"
        mock_adapter.set_failure(ping)
        sleeps: list[float] = []
        assert not wait_until_ready(host, mysql_settings, sleep=sleeps.append)
        assert mock_adapter.commands.count(ping) == 3
        assert sleeps == [1, 1]


# ── Full install ─────────────────────────────────────────────────────


class TestInstallMysql:
    def test_step_order(self):
        assert [s.name for s in build_steps()] == [
            "prerequisites",
            "stop_services",
            "remove_existing",
            "user_and_dirs",
            "dependencies",
            "download",
            "configure",
            "initialize",
            "validate",
            "report",
        ]

    def test_full_install(self, host, mock_adapter, mysql_settings, unpacked):
        s = mysql_settings
        report = install_mysql(s, host)

        assert report.ok, report.error
        assert StepLedger(s.ledger_file).completed() == [st.name for st in build_steps()]

        assert not unpacked.exists()
        assert (s.base_dir / "bin" / "mysqld").is_file()
        for directory in s.data_dirs():
            assert directory.is_dir()
        assert s.config_file.read_text() == render_my_cnf(s)
        assert "Type=forking" in s.service_file.read_text()
        assert path_export_line(s) in s.profile_file.read_text()
        assert not (s.work_dir / s.archive_name).exists()

        assert mock_adapter.ran("yum remove -y mariadb* mysql*")
        assert mock_adapter.ran("yum install -y libaio")
        assert mock_adapter.ran(f"tar -xf {s.work_dir / s.archive_name}")
        assert "systemctl start mysqld" in mock_adapter.commands
        assert "systemctl enable mysqld" in mock_adapter.commands

        init = next(c for c in mock_adapter.call_log if "--initialize-insecure" in c.command)
        assert init.params["cwd"] == str(s.work_dir)
        secure = next(c for c in mock_adapter.call_log if "--connect-expired-password" in c.command)
        assert secure.params["input"] == security_sql(s.root_password)

        reports = list(s.report_dir.glob("mysql_installation_report_*.txt"))
        assert len(reports) == 1
        assert "MySQL Version: 8.0.36" in reports[0].read_text()

    def test_second_run_does_nothing(self, host, mock_adapter, mysql_settings, unpacked):
        install_mysql(mysql_settings, host)
        mock_adapter.reset()

        report = install_mysql(mysql_settings, host)
        assert report.ok
        assert report.names("skipped") == [s.name for s in build_steps()]
        assert mock_adapter.call_count == 0

    def test_path_not_added_twice(self, host, mysql_settings, unpacked):
        mysql_settings.profile_file.parent.mkdir(parents=True, exist_ok=True)
        mysql_settings.profile_file.write_text(path_export_line(mysql_settings) + "\n")
        install_mysql(mysql_settings, host)
        assert mysql_settings.profile_file.read_text().count("export PATH") == 1

    def test_plain_mysqld_unit_without_safe(self, host, mock_adapter, mysql_settings, unpacked):
        mock_adapter.set_failure(f"test -x {mysql_settings.bin_dir / 'mysqld_safe'}")
        install_mysql(mysql_settings, host)
        assert "Type=simple" in mysql_settings.service_file.read_text()

    def test_security_failure_is_not_fatal(self, host, mock_adapter, mysql_settings, unpacked):
        mock_adapter.set_failure(f"{mysql_settings.bin_dir}/mysql -uroot --connect-expired-password")
        assert install_mysql(mysql_settings, host).ok

    def test_history_written(self, host, mysql_settings, unpacked, tmp_path):
        history = RunHistory.in_dir(tmp_path / "state")
        install_mysql(mysql_settings, host, history=history)
        (record,) = history.read_all()
        assert record.task == "mysql"
        assert record.status == "ok"

    def test_dry_run(self, host, mock_adapter, mysql_settings):
        report = install_mysql(mysql_settings, host, dry_run=True)
        assert report.status == "dry-run"
        assert mock_adapter.call_count == 0
        assert not mysql_settings.ledger_file.exists()


class TestPrerequisites:
    def test_requires_root(self, registry, mysql_settings):
        host = Host(registry, system="Linux", euid=1000)
        report = install_mysql(mysql_settings, host)
        assert report.failed_step == "prerequisites"
        assert report.error == "This task must be run as root"

    def test_other_os_without_confirm_cancels(self, host, mock_adapter, mysql_settings):
        mysql_settings.release_file.write_text("Rocky Linux release 9.3\n")
        report = install_mysql(mysql_settings, host)
        assert report.cancelled
        assert report.exit_code == 0
        assert report.rolled_back == []
        assert mock_adapter.call_count == 0

    def test_other_os_declined(self, host, mysql_settings):
        mysql_settings.release_file.write_text("Rocky Linux release 9.3\n")
        asked: list[str] = []

        def decline(question):
            asked.append(question)
            return False

        report = install_mysql(mysql_settings, host, confirm=decline)
        assert report.cancelled
        assert asked == ["Do you want to continue anyway?"]

    def test_other_os_confirmed(self, host, mysql_settings, unpacked):
        mysql_settings.release_file.write_text("Rocky Linux release 9.3\n")
        report = install_mysql(mysql_settings, host, confirm=lambda q: True)
        assert report.ok

    def test_missing_release_file_asks(self, host, mysql_settings, tmp_path):
        settings = mysql_settings.model_copy(update={"release_file": tmp_path / "absent"})
        assert install_mysql(settings, host).cancelled

    def test_not_enough_disk(self, host, mysql_settings):
        settings = mysql_settings.model_copy(update={"min_free_bytes": 1 << 60})
        report = install_mysql(settings, host)
        assert report.failed_step == "prerequisites"
        assert "Insufficient disk space" in report.error

    def test_network_unreachable(self, host, mysql_settings):
        host.reachable = False
        report = install_mysql(mysql_settings, host)
        assert "Cannot reach MySQL download server" in report.error

    def test_missing_commands(self, host, mock_adapter, mysql_settings):
        mock_adapter.set_failure("command -v wget >/dev/null 2>&1")
        mock_adapter.set_failure("command -v useradd >/dev/null 2>&1")
        report = install_mysql(mysql_settings, host)
        assert report.error == "Required command not found: wget, useradd"


class TestRollback:
    def test_failed_start_rolls_back(self, host, mock_adapter, mysql_settings, unpacked):
        s = mysql_settings
        s.config_file.parent.mkdir(parents=True, exist_ok=True)
        s.config_file.write_text("[mysqld]\nold=1\n")
        mock_adapter.set_failure("systemctl start mysqld", error="Job for mysqld.service failed")

        report = install_mysql(s, host)

        assert report.failed_step == "initialize"
        assert report.rolled_back == ["configure", "download", "user_and_dirs", "remove_existing"]
        assert report.rollback_errors == []
        assert StepLedger(s.ledger_file).completed() == [
            "prerequisites",
            "stop_services",
            "dependencies",
        ]
        assert not s.base_dir.exists()
        assert not s.service_file.exists()
        assert s.config_file.read_text() == "[mysqld]\nold=1\n"
        assert path_export_line(s) not in s.profile_file.read_text()
        assert mock_adapter.ran("userdel mysql")
        assert "systemctl disable mysqld" in mock_adapter.commands

    def test_corrupt_download(self, host, mysql_settings):
        host.payload = b"tiny"
        report = install_mysql(mysql_settings, host)
        assert report.failed_step == "download"
        assert report.error == "Downloaded file verification failed"

    def test_missing_extraction(self, host, mysql_settings):
        report = install_mysql(mysql_settings, host)
        assert report.failed_step == "download"
        assert "Extracted directory not found" in report.error

    def test_connection_test_failure(self, host, mock_adapter, mysql_settings, unpacked):
        probe = f'{mysql_settings.bin_dir}/mysql -uroot -pRootPassw0rd. -e "SELECT 1;"'
        mock_adapter.set_failure(probe)
        report = install_mysql(mysql_settings, host)
        assert report.failed_step == "validate"
        assert report.error == "Database connection test failed"
        assert "initialize" in report.rolled_back


class TestMockMode:
    def test_rehearsal_touches_nothing(self, mysql_settings):
        host = Host(AdapterRegistry(mock_mode=True), system="Linux", euid=0)
        report = install_mysql(mysql_settings, host)
        assert report.ok, report.error
        assert not mysql_settings.base_dir.exists()
        assert not mysql_settings.config_file.exists()
        assert not mysql_settings.report_dir.exists()
        assert not mysql_settings.ledger_file.exists()

    def test_rehearsal_honours_recorded_steps(self, mysql_settings):
        ledger = StepLedger(mysql_settings.ledger_file)
        ledger.mark("prerequisites")
        host = Host(AdapterRegistry(mock_mode=True), system="Linux", euid=0)

        report = install_mysql(mysql_settings, host)
        assert report.names("skipped") == ["prerequisites"]
        assert ledger.completed() == ["prerequisites"]


class TestDiagnose:
    def test_sections(self, host, mysql_settings):
        text = diagnose(mysql_settings, host)
        assert "MySQL Installation Diagnostic Report" in text
        for n in range(1, 12):
            assert f"\n{n}. " in text
        assert f"Configuration file missing: {mysql_settings.config_file}" in text
        assert "Diagnostic Report Complete" in text

    def test_reads_error_log(self, host, mysql_settings):
        mysql_settings.log_dir.mkdir(parents=True)
        lines = [f"line {i}" for i in range(30)]
        (mysql_settings.log_dir / "mysql.err").write_text("\n".join(lines) + "\n")
        text = diagnose(mysql_settings, host)
        assert "line 29" in text
        assert "line 9\n" not in text

    def test_read_only(self, host, mock_adapter, mysql_settings):
        diagnose(mysql_settings, host)
        for cmd in mock_adapter.commands:
            assert not cmd.startswith(("systemctl start", "systemctl stop", "yum", "userdel"))
