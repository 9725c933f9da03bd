"""
Step ledger — durable record of completed provisioning steps.

The ledger is a flat marker file holding one step name per line.
It is consulted before every step, so an interrupted install picks
up at the first step that is not recorded. Lookups are whole-line
matches: ``php`` is not done just because ``php_fpm_conf`` is.

Appends go straight to the file; removals (after a step has been
compensated during a rollback) rewrite it atomically.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class StepLedger:
    """Flat-file set of completed step names.

    With ``path=None`` the ledger lives in memory only, which is what
    one-shot tasks (sshd hardening) use: they still get ordered
    compensation on failure, but nothing is remembered between runs.
    """

    def __init__(self, path: Path | None = None):
        self._path = path
        self._memory: list[str] = []

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def durable(self) -> bool:
        return self._path is not None

    def is_done(self, name: str) -> bool:
        """Whether ``name`` is recorded as a whole line."""
        return name in self._read()

    def completed(self) -> list[str]:
        """Recorded step names, in completion order, without duplicates."""
        seen: list[str] = []
        for name in self._read():
            if name not in seen:
                seen.append(name)
        return seen

    def mark(self, name: str) -> None:
        """Record ``name`` as complete. Marking twice is a no-op."""
        _check_name(name)
        if self.is_done(name):
            return
        if self._path is None:
            self._memory.append(name)
        else:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(name + "\n")
        logger.info("Step completed: %s", name)

    def unmark(self, name: str) -> None:
        """Forget ``name`` so the next run executes the step again."""
        names = [n for n in self._read() if n != name]
        if self._path is None:
            self._memory = names
            return
        if not self._path.is_file():
            return
        _write_atomic(self._path, "".join(f"{n}\n" for n in names))
        logger.debug("Step unmarked: %s", name)

    def detached(self) -> StepLedger:
        """In-memory copy of the current state. The file is never touched."""
        copy = StepLedger()
        copy._memory = self.completed()
        return copy

    def reset(self) -> None:
        """Forget every step."""
        self._memory = []
        if self._path is not None:
            self._path.unlink(missing_ok=True)
            logger.info("Ledger reset: %s", self._path)

    def _read(self) -> list[str]:
        if self._path is None:
            return list(self._memory)
        if not self._path.is_file():
            return []
        lines = self._path.read_text(encoding="utf-8").splitlines()
        return [line.strip() for line in lines if line.strip()]

    def __repr__(self) -> str:
        where = str(self._path) if self._path else "memory"
        return f"<StepLedger {where}>"


def _check_name(name: str) -> None:
    if not name or name != name.strip() or "\n" in name:
        raise ValueError(f"Invalid step name: {name!r}")


def _write_atomic(path: Path, content: str) -> None:
    """Write-to-temp-then-rename, so a crash never truncates the ledger."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".ledger_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
