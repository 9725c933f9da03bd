"""
Step runner — idempotent execution with compensating rollback.

A task is an ordered list of named Steps. For each step the runner:

    ledger says done?  → skip
    otherwise          → run forward action → mark in ledger

The first failing step stops the run. The runner then walks back
over every earlier step the ledger records as done (this run's and
those left by earlier runs), newest first, and runs its compensating
action. Compensation is best effort: a failing compensation is logged
and collected, and the walk goes on. A compensated step is unmarked
so the next run executes it again; a step without compensation keeps
its mark because its effect is still in place.

Flow:
    steps → skip/run/mark → (failure) → reverse compensate → report
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from hostprep.core.errors import InstallCancelled, StepError
from hostprep.core.models.run import RunRecord
from hostprep.core.persistence.history import RunHistory
from hostprep.core.persistence.step_ledger import StepLedger

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """What a step's actions get to work with.

    ``scratch`` survives from a step's forward action to its
    compensation within one run, e.g. ``{"created_user": True}``.
    Compensations of steps finished by an earlier run see an empty
    scratch and must assume nothing.
    """

    host: Any
    settings: Any = None
    backups: Any = None
    confirm: Callable[[str], bool] | None = None
    scratch: dict[str, Any] = field(default_factory=dict)

    def note(self, key: str, value: Any = True) -> None:
        self.scratch[key] = value

    def noted(self, key: str) -> Any:
        return self.scratch.get(key)


StepAction = Callable[[StepContext], None]


@dataclass
class Step:
    """A named unit of provisioning work."""

    name: str
    label: str
    forward: StepAction
    compensate: StepAction | None = None


@dataclass
class StepOutcome:
    name: str
    label: str
    status: str = "pending"  # ok, skipped, failed, cancelled, pending, dry-run
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label,
            "status": self.status,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RunReport:
    """Result of running a task's steps."""

    task: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    exit_code: int = 0
    cancelled: bool = False
    dry_run: bool = False
    rolled_back: list[str] = field(default_factory=list)
    rollback_errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.failed_step is None and not self.cancelled

    @property
    def status(self) -> str:
        if self.dry_run:
            return "dry-run"
        if self.cancelled:
            return "cancelled"
        return "ok" if self.ok else "failed"

    def names(self, status: str) -> list[str]:
        return [o.name for o in self.outcomes if o.status == status]

    def to_record(self) -> RunRecord:
        return RunRecord(
            task=self.task,
            status=self.status,
            exit_code=self.exit_code,
            duration_ms=self.duration_ms,
            steps_total=len(self.outcomes),
            steps_run=self.names("ok"),
            steps_skipped=self.names("skipped"),
            failed_step=self.failed_step,
            error=self.error,
            rolled_back=list(self.rolled_back),
            rollback_errors=list(self.rollback_errors),
        )

    def to_dict(self) -> dict:
        return {
            "task": self.task,
            "status": self.status,
            "exit_code": self.exit_code,
            "failed_step": self.failed_step,
            "error": self.error,
            "steps": [o.to_dict() for o in self.outcomes],
            "rolled_back": self.rolled_back,
            "rollback_errors": self.rollback_errors,
            "duration_ms": self.duration_ms,
        }


class StepRunner:
    """Run steps in order against a ledger.

    Args:
        task: Task name, used in logs and the run history.
        steps: Ordered steps. Names must be unique.
        ledger: Completed-step record consulted before each step.
        context: Passed to every forward and compensating action.
        history: Optional run history; one record per ``run()``.
    """

    def __init__(
        self,
        task: str,
        steps: list[Step],
        ledger: StepLedger,
        context: StepContext,
        *,
        history: RunHistory | None = None,
    ):
        names = [s.name for s in steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {', '.join(duplicates)}")
        self.task = task
        self.steps = steps
        self.ledger = ledger
        self.context = context
        self.history = history

    def pending(self) -> list[Step]:
        """Steps the next run would execute."""
        return [s for s in self.steps if not self.ledger.is_done(s.name)]

    def run(self, dry_run: bool = False) -> RunReport:
        start = time.monotonic()
        report = RunReport(task=self.task, dry_run=dry_run)
        report.outcomes = [StepOutcome(name=s.name, label=s.label) for s in self.steps]
        total = len(self.steps)

        for index, (step, outcome) in enumerate(zip(self.steps, report.outcomes), start=1):
            if self.ledger.is_done(step.name):
                logger.info("[Step %d/%d] %s — already done, skipping", index, total, step.label)
                outcome.status = "skipped"
                continue

            logger.info("[Step %d/%d] %s", index, total, step.label)
            if dry_run:
                outcome.status = "dry-run"
                continue

            step_start = time.monotonic()
            try:
                step.forward(self.context)
            except InstallCancelled as e:
                outcome.status = "cancelled"
                report.cancelled = True
                report.error = str(e) or "Cancelled by user"
                logger.info("Installation cancelled by user")
                break
            except Exception as e:
                outcome.duration_ms = _elapsed_ms(step_start)
                outcome.status = "failed"
                outcome.error = str(e)
                report.failed_step = step.name
                report.error = str(e)
                report.exit_code = e.exit_code if isinstance(e, StepError) else 1
                if isinstance(e, StepError):
                    logger.error("Step '%s' failed: %s", step.name, e)
                else:
                    logger.exception("Step '%s' failed unexpectedly", step.name)
                self._rollback(index - 1, report)
                break

            outcome.duration_ms = _elapsed_ms(step_start)
            outcome.status = "ok"
            self.ledger.mark(step.name)

        report.duration_ms = _elapsed_ms(start)
        if self.history is not None and not dry_run:
            self.history.write(report.to_record())
        return report

    def _rollback(self, failed_index: int, report: RunReport) -> None:
        """Compensate every recorded step before ``failed_index``, newest first."""
        done = [s for s in self.steps[:failed_index] if self.ledger.is_done(s.name)]
        if not done:
            logger.info("Nothing to roll back")
            return

        logger.info("Starting rollback of %d step(s)...", len(done))
        for step in reversed(done):
            if step.compensate is None:
                logger.debug("Step '%s' has no compensating action", step.name)
                continue
            logger.info("Rolling back: %s", step.label)
            try:
                step.compensate(self.context)
            except Exception as e:
                message = f"{step.name}: {e}"
                report.rollback_errors.append(message)
                logger.warning("Rollback of '%s' failed: %s", step.name, e)
                continue
            self.ledger.unmark(step.name)
            report.rolled_back.append(step.name)
        logger.info("Rollback completed")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
