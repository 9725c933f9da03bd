"""
Tests for the one-line remote setup command.
"""

import subprocess
from pathlib import Path

import pytest

from hostprep.core.errors import StepError
from hostprep.core.models.settings import KeyCommandSettings
from hostprep.core.services.ssh_command import (
    build_setup_command,
    generate_setup_command,
    read_key,
)

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5 user@laptop"


@pytest.fixture
def ssh_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".ssh"
    d.mkdir()
    return d


class TestBuildCommand:
    def test_bash(self):
        cmd = build_setup_command("https://run.ckyl.in/self/setup-ssh.sh", KEY)
        assert cmd == (
            "curl -sSL https://run.ckyl.in/self/setup-ssh.sh | "
            f'sudo bash -s -- --add-pubkey="{KEY}"'
        )

    def test_sh(self):
        assert "| sudo sh -s --" in build_setup_command("https://x/y.sh", KEY, "sh")

    def test_unknown_shell(self):
        with pytest.raises(ValueError):
            build_setup_command("https://x/y.sh", KEY, "fish")

    def test_comment_is_not_expanded(self):
        key = 'ssh-ed25519 AAAAC3NzaC1lZDI1NTE5 "me" $HOME `id` \\x'
        cmd = build_setup_command("https://x/y.sh", key)
        argument = cmd.split("--add-pubkey=", 1)[1]
        assert argument == '"ssh-ed25519 AAAAC3NzaC1lZDI1NTE5 \\"me\\" \\$HOME \\`id\\` \\\\x"'

        result = subprocess.run(
            ["sh", "-c", f"printf %s {argument}"], capture_output=True, text=True, check=True
        )
        assert result.stdout == key

    def test_read_key_strips_line_breaks(self, tmp_path: Path):
        path = tmp_path / "k.pub"
        path.write_text(KEY + "\r\n")
        assert read_key(path) == KEY


class TestGenerate:
    def test_prefers_ed25519(self, ssh_dir: Path):
        (ssh_dir / "id_rsa.pub").write_text("ssh-rsa AAAA rsa@laptop\n")
        (ssh_dir / "id_ed25519.pub").write_text(KEY + "\n")
        result = generate_setup_command(KeyCommandSettings(), ssh_dir=ssh_dir)
        assert result.key == KEY
        assert result.key_file == ssh_dir / "id_ed25519.pub"
        assert result.command.endswith(f'--add-pubkey="{KEY}"')

    def test_falls_back_to_rsa(self, ssh_dir: Path):
        (ssh_dir / "id_rsa.pub").write_text("ssh-rsa AAAA rsa@laptop\n")
        result = generate_setup_command(KeyCommandSettings(), ssh_dir=ssh_dir)
        assert result.key == "ssh-rsa AAAA rsa@laptop"

    def test_explicit_file(self, tmp_path: Path, ssh_dir: Path):
        key_file = tmp_path / "deploy.pub"
        key_file.write_text(KEY)
        result = generate_setup_command(KeyCommandSettings(), pubkey_file=key_file, ssh_dir=ssh_dir)
        assert result.key_file == key_file

    def test_remote_host(self, ssh_dir: Path):
        (ssh_dir / "id_ed25519.pub").write_text(KEY)
        settings = KeyCommandSettings(remote_host="scripts.example.net")
        result = generate_setup_command(settings, ssh_dir=ssh_dir, shell="sh")
        assert result.script_url == "https://scripts.example.net/self/setup-ssh.sh"
        assert result.command.startswith("curl -sSL https://scripts.example.net/self/setup-ssh.sh | sudo sh")

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(StepError, match="not found"):
            generate_setup_command(KeyCommandSettings(), pubkey_file=tmp_path / "nope.pub")

    def test_no_default_key(self, ssh_dir: Path):
        with pytest.raises(StepError) as exc:
            generate_setup_command(KeyCommandSettings(), ssh_dir=ssh_dir)
        assert "No default keys found (id_ed25519 or id_rsa)" in str(exc.value)
        assert "--pubkey=" in str(exc.value)

    def test_empty_key_file(self, ssh_dir: Path):
        (ssh_dir / "id_ed25519.pub").write_text("\n")
        with pytest.raises(StepError, match="empty"):
            generate_setup_command(KeyCommandSettings(), ssh_dir=ssh_dir)

    def test_to_dict(self, ssh_dir: Path):
        (ssh_dir / "id_ed25519.pub").write_text(KEY)
        data = generate_setup_command(KeyCommandSettings(), ssh_dir=ssh_dir).to_dict()
        assert data["key_file"] == str(ssh_dir / "id_ed25519.pub")
        assert set(data) == {"command", "key", "key_file", "script_url"}
