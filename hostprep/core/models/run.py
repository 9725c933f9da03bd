"""
RunRecord — one line of the run history.

Written once per task invocation, after the runner finishes
(successfully, with a rollback, or cancelled).
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunRecord(BaseModel):
    """Summary of a single task run."""

    timestamp: str = Field(default_factory=_now_iso)
    task: str = ""                  # mysql, php, ssh
    status: str = ""                # ok, failed, cancelled, dry-run
    exit_code: int = 0
    duration_ms: int = 0

    steps_total: int = 0
    steps_run: list[str] = Field(default_factory=list)
    steps_skipped: list[str] = Field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None

    rolled_back: list[str] = Field(default_factory=list)
    rollback_errors: list[str] = Field(default_factory=list)
