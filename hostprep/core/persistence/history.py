"""
Run history — append-only log of task runs.

Every task invocation appends one NDJSON line (a ``RunRecord``).
The step ledger answers "what is done"; the history answers "what
happened, and when".
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from hostprep.core.models.run import RunRecord

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = "history.ndjson"


class RunHistory:
    """Append-only run history writer/reader."""

    def __init__(self, path: Path):
        self._path = path

    @classmethod
    def in_dir(cls, state_dir: Path) -> RunHistory:
        return cls(state_dir / DEFAULT_HISTORY_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        """Append a record. Failures are logged, never raised."""
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("History entry written: %s/%s", record.task, record.status)
        except OSError as e:
            logger.error("Failed to write run history: %s", e)

    def read_all(self) -> list[RunRecord]:
        """Read all records, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt history entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run history: %s", e)

        return records

    def read_recent(self, n: int = 20, task: str | None = None) -> list[RunRecord]:
        records = self.read_all()
        if task:
            records = [r for r in records if r.task == task]
        return records[-n:]
