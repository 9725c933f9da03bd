"""
SSH public keys — parsing, local discovery, authorized_keys edits.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_KEY_PREFIXES = ("ssh-", "ecdsa-", "sk-")


class InvalidKeyError(ValueError):
    """Not an OpenSSH public key line."""


@dataclass(frozen=True)
class PublicKey:
    """One OpenSSH public key: ``<algo> <base64 body> [comment]``.

    Two keys are the same key when algo and body match; the comment
    is decoration.
    """

    algo: str
    body: str
    comment: str = ""

    @classmethod
    def parse(cls, text: str) -> PublicKey:
        """Parse a key line. Newlines and carriage returns are dropped.

        >>> PublicKey.parse("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5 me@box\\n").comment
        'me@box'
        """
        flat = text.replace("\r", "").replace("\n", "").strip()
        parts = flat.split(maxsplit=2)
        if len(parts) < 2:
            raise InvalidKeyError(f"Not a public key: {flat[:40]!r}")
        algo, body = parts[0], parts[1]
        if not algo.startswith(_KEY_PREFIXES):
            raise InvalidKeyError(f"Unknown key type: {algo!r}")
        try:
            base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidKeyError(f"Key body is not base64: {e}") from e
        return cls(algo=algo, body=body, comment=parts[2] if len(parts) > 2 else "")

    @property
    def line(self) -> str:
        return " ".join(p for p in (self.algo, self.body, self.comment) if p)

    def same_key(self, line: str) -> bool:
        parts = line.split()
        return len(parts) >= 2 and (parts[0], parts[1]) == (self.algo, self.body)


def find_local_pubkey(ssh_dir: Path, names: list[str]) -> Path | None:
    """First existing key file in ``ssh_dir``, in ``names`` order."""
    for name in names:
        candidate = ssh_dir / name
        if candidate.is_file():
            return candidate
    return None


def resolve_key_home(system: str, euid: int, home: Path | None = None) -> Path:
    """Home directory whose authorized_keys receives the key.

    macOS always uses the invoking user's home. Elsewhere root's key
    goes to /root even when HOME points somewhere else under sudo.
    """
    home = home or Path(os.path.expanduser("~"))
    if system == "Darwin":
        return home
    return Path("/root") if euid == 0 else home


def install_authorized_key(home: Path, key: PublicKey) -> bool:
    """Append ``key`` to ``~/.ssh/authorized_keys``.

    Creates ``~/.ssh`` (0700) and the file (0600). Returns False, and
    leaves the file alone, when the key is already authorized.
    """
    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(parents=True, exist_ok=True)
    ssh_dir.chmod(0o700)
    path = ssh_dir / "authorized_keys"

    existing = path.read_text(encoding="utf-8") if path.is_file() else ""
    if any(key.same_key(line) for line in existing.splitlines()):
        logger.info("Public key already present in %s", path)
        path.chmod(0o600)
        return False

    with path.open("a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(key.line + "\n")
    path.chmod(0o600)
    logger.info("Public key installed to %s", path)
    return True


def remove_authorized_key(home: Path, key: PublicKey) -> bool:
    """Drop every line carrying ``key``. True if something was removed."""
    path = home / ".ssh" / "authorized_keys"
    if not path.is_file():
        return False
    lines = path.read_text(encoding="utf-8").splitlines()
    kept = [line for line in lines if not key.same_key(line)]
    if len(kept) == len(lines):
        return False
    path.write_text("".join(f"{line}\n" for line in kept), encoding="utf-8")
    logger.info("Public key removed from %s", path)
    return True
