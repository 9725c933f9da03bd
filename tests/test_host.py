"""
Tests for the host facade — command verbs, file verbs, mock mode.
"""

from pathlib import Path

import pytest

from hostprep.adapters.mock import MockAdapter
from hostprep.adapters.registry import AdapterRegistry
from hostprep.core.errors import CommandError
from hostprep.core.services.host import Host


class TestHostCommands:
    def test_run_records_command(self, host, mock_adapter):
        receipt = host.run("yum makecache fast")
        assert receipt.ok
        assert mock_adapter.commands == ["yum makecache fast"]

    def test_run_check_raises(self, host, mock_adapter):
        mock_adapter.set_failure("systemctl start nginx", error="unit failed", return_code=5)
        with pytest.raises(CommandError) as exc:
            host.run("systemctl start nginx")
        assert exc.value.exit_code == 5
        assert exc.value.command == "systemctl start nginx"
        assert "unit failed" in str(exc.value)

    def test_run_without_check(self, host, mock_adapter):
        mock_adapter.set_failure("false")
        assert host.run("false", check=False).failed

    def test_run_passes_input_and_cwd(self, host, mock_adapter, tmp_path):
        host.run("mysql", input="SELECT 1;", cwd=tmp_path)
        params = mock_adapter.call_log[0].params
        assert params["input"] == "SELECT 1;"
        assert params["cwd"] == str(tmp_path)

    def test_probes(self, host, mock_adapter):
        mock_adapter.set_failure("id nginx >/dev/null 2>&1")
        mock_adapter.set_output("php -v", "PHP 7.3.33")
        assert not host.user_exists("nginx")
        assert host.group_exists("nginx")
        assert host.output("php -v") == "PHP 7.3.33"

    def test_output_empty_on_failure(self, host, mock_adapter):
        mock_adapter.set_failure("php -v")
        assert host.output("php -v") == ""

    def test_command_exists(self, host, mock_adapter):
        mock_adapter.set_failure("command -v wget", prefix=True)
        assert not host.command_exists("wget")
        assert host.command_exists("tar")

    def test_systemctl_quotes_units(self, host, mock_adapter):
        host.systemctl("restart", "php-fpm", "nginx")
        assert mock_adapter.commands == ["systemctl restart php-fpm nginx"]

    def test_service_active(self, host, mock_adapter):
        mock_adapter.set_failure("systemctl is-active --quiet mysqld")
        assert not host.service_active("mysqld")
        assert host.service_active("nginx")

    def test_yum_passes_globs_verbatim(self, host, mock_adapter):
        host.yum("remove", "-y", "'php*'")
        assert mock_adapter.commands == ["yum remove -y 'php*'"]

    def test_identity(self, registry):
        host = Host(registry, system="Darwin", euid=501)
        assert host.is_darwin
        assert not host.is_root
        assert "Darwin" in repr(host)


class TestHostFiles:
    def test_write_text_creates_parents_and_mode(self, host, tmp_path: Path):
        path = tmp_path / "a" / "b" / "tool.fn"
        host.write_text(path, "echo hi\n", mode=0o755)
        assert path.read_text() == "echo hi\n"
        assert path.stat().st_mode & 0o777 == 0o755

    def test_write_text_append(self, host, tmp_path: Path):
        path = tmp_path / "profile"
        path.write_text("one\n")
        host.write_text(path, "two\n", append=True)
        assert path.read_text() == "one\ntwo\n"

    def test_remove_file_and_dir(self, host, tmp_path: Path):
        (tmp_path / "d" / "sub").mkdir(parents=True)
        (tmp_path / "f").write_text("x")
        assert host.remove(tmp_path / "d")
        assert host.remove(tmp_path / "f")
        assert not (tmp_path / "d").exists()
        assert not (tmp_path / "f").exists()

    def test_remove_missing(self, host, tmp_path: Path):
        assert host.remove(tmp_path / "nothing") is False

    def test_move_and_make_dirs(self, host, tmp_path: Path):
        host.make_dirs(tmp_path / "x" / "y")
        (tmp_path / "src").write_text("data")
        host.move(tmp_path / "src", tmp_path / "x" / "y" / "dst")
        assert (tmp_path / "x" / "y" / "dst").read_text() == "data"


class TestHostMockMode:
    @pytest.fixture
    def sim(self) -> Host:
        reg = AdapterRegistry(mock_mode=True)
        reg.set_mock_mode(True, MockAdapter())
        return Host(reg, system="Linux", euid=0)

    def test_simulated(self, sim, host):
        assert sim.simulated
        assert not host.simulated
        assert "mock" in repr(sim)

    def test_file_verbs_do_nothing(self, sim, tmp_path: Path):
        target = tmp_path / "etc" / "nginx.repo"
        sim.write_text(target, "[nginx]\n")
        sim.make_dirs(tmp_path / "made")
        assert not target.exists()
        assert not (tmp_path / "made").exists()

    def test_remove_reports_but_keeps(self, sim, tmp_path: Path):
        keep = tmp_path / "keep"
        keep.write_text("x")
        assert sim.remove(keep)
        assert keep.exists()

    def test_move_does_nothing(self, sim, tmp_path: Path):
        (tmp_path / "a").write_text("x")
        sim.move(tmp_path / "a", tmp_path / "b")
        assert (tmp_path / "a").exists()
        assert not (tmp_path / "b").exists()

    def test_network_is_stubbed(self, sim, tmp_path: Path):
        assert sim.url_reachable("https://dev.mysql.com")
        sim.download("https://dev.mysql.com/x.tar.xz", tmp_path / "x.tar.xz")
        assert not (tmp_path / "x.tar.xz").exists()
