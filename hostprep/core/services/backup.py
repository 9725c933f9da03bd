"""
Backups — copies of files a task is about to overwrite or delete.

Two flavours, both used by the installers:

- ``copy_aside(path, suffix)`` — a sibling copy (``sshd_config.bak``,
  ``www.conf.backup``), restored with ``restore_aside``.
- ``BackupStore`` — a timestamped directory (``/tmp/mysql_backup_<ts>``)
  holding named copies, restored by name during rollback.

Backup failures are logged and do not stop the task: the caller
decides whether a missing backup is fatal.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def _copy(source: Path, dest: Path) -> None:
    if source.is_dir():
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(source, dest, symlinks=True)
    else:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)


def copy_aside(path: Path, suffix: str = ".bak") -> Path:
    """Copy ``path`` to ``path + suffix`` (overwriting). Raises OSError."""
    dest = path.with_name(path.name + suffix)
    _copy(path, dest)
    logger.info("Backed up %s → %s", path, dest)
    return dest


def restore_aside(path: Path, suffix: str = ".bak") -> bool:
    """Put ``path + suffix`` back in place. False if there is no copy."""
    backup = path.with_name(path.name + suffix)
    if not backup.exists():
        return False
    _copy(backup, path)
    logger.info("Restored %s from %s", path, backup)
    return True


class BackupStore:
    """Named backups inside a single directory."""

    def __init__(self, root: Path):
        self._root = root
        self._origins: dict[str, Path] = {}

    @classmethod
    def timestamped(cls, parent: Path, prefix: str) -> BackupStore:
        return cls(parent / f"{prefix}_{time.strftime('%Y%m%d_%H%M%S')}")

    @property
    def root(self) -> Path:
        return self._root

    def names(self) -> list[str]:
        return list(self._origins)

    def backup_if_exists(self, source: Path, name: str) -> Path | None:
        """Copy ``source`` to ``<root>/<name>`` if it exists."""
        if not source.exists():
            return None
        dest = self._root / name
        logger.info("Backing up existing %s to %s", source, dest)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            _copy(source, dest)
        except OSError as e:
            logger.warning("Failed to backup %s, continuing: %s", source, e)
            return None
        self._origins[name] = source
        return dest

    def has(self, name: str) -> bool:
        return (self._root / name).exists()

    def restore(self, name: str, target: Path | None = None) -> bool:
        """Copy backup ``name`` back to ``target`` (default: where it came from)."""
        source = self._root / name
        target = target or self._origins.get(name)
        if target is None or not source.exists():
            return False
        _copy(source, target)
        logger.info("Restored %s from %s", target, source)
        return True
