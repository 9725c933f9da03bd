"""
One-line remote setup command.

Builds the ``curl ... | sudo bash -s -- --add-pubkey="<key>"`` line an
operator pastes on a fresh server to run the sshd hardening with
their local public key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from hostprep.core.errors import StepError
from hostprep.core.models.settings import KeyCommandSettings
from hostprep.core.services.ssh_keys import find_local_pubkey

logger = logging.getLogger(__name__)

SHELLS = ("bash", "sh")

TIP = "Copy and paste to your remote server, and it will be configured as well."


@dataclass
class SetupCommand:
    """A generated setup command and where its key came from."""

    command: str
    key: str
    key_file: Path
    script_url: str

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "key": self.key,
            "key_file": str(self.key_file),
            "script_url": self.script_url,
        }


def _double_quoted(value: str) -> str:
    """Escape the characters the shell still expands inside double quotes."""
    for char in ("\\", '"', "$", "`"):
        value = value.replace(char, "\\" + char)
    return f'"{value}"'


def build_setup_command(script_url: str, key: str, shell: str = "bash") -> str:
    if shell not in SHELLS:
        raise ValueError(f"Unsupported shell: {shell!r}")
    return f"curl -sSL {script_url} | sudo {shell} -s -- --add-pubkey={_double_quoted(key)}"


def read_key(path: Path) -> str:
    """Key file contents with newlines and carriage returns removed."""
    return path.read_text(encoding="utf-8").replace("\n", "").replace("\r", "")


def generate_setup_command(
    settings: KeyCommandSettings,
    *,
    pubkey_file: Path | None = None,
    ssh_dir: Path | None = None,
    shell: str = "bash",
) -> SetupCommand:
    """Generate the setup command for ``pubkey_file`` or the default key.

    Raises:
        StepError: if the given key file is missing, or no default key
            exists in ``ssh_dir`` (``~/.ssh``).
    """
    if pubkey_file is not None:
        if not pubkey_file.is_file():
            raise StepError(f"File {pubkey_file} not found.")
        key_file = pubkey_file
    else:
        ssh_dir = ssh_dir or Path.home() / ".ssh"
        found = find_local_pubkey(ssh_dir, settings.key_search)
        if found is None:
            names = " or ".join(Path(n).stem for n in settings.key_search)
            raise StepError(
                f"No default keys found ({names}). Please use --pubkey=/path/to/key.pub"
            )
        key_file = found

    key = read_key(key_file)
    if not key.strip():
        raise StepError(f"Key file {key_file} is empty.")
    logger.debug("Using public key %s", key_file)

    return SetupCommand(
        command=build_setup_command(settings.script_url, key, shell),
        key=key,
        key_file=key_file,
        script_url=settings.script_url,
    )
