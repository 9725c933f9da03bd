"""
Exception hierarchy for provisioning tasks.

Steps signal failure by raising; the runner turns the exception into
a failed outcome and starts the rollback. Anything that is not a
``StepError`` is still caught by the runner, but reported as an
unexpected error.
"""

from __future__ import annotations


class StepError(Exception):
    """A provisioning step could not complete."""

    exit_code: int = 1


class CommandError(StepError):
    """A system command exited non-zero."""

    def __init__(self, command: str, return_code: int | None, stderr: str = ""):
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        if return_code:
            self.exit_code = return_code
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Command failed (exit {return_code}): {command}{detail}")


class PrivilegeError(StepError):
    """The task needs root and was started without it."""


class InstallCancelled(Exception):
    """The operator declined to continue. Not a failure: exit status 0."""
