"""
Shell command adapter — run a command line on the local host.

Every yum, systemctl, useradd or launchctl call made by a task ends
up here. Commands run through ``/bin/sh`` so globs such as
``yum remove -y 'php*'`` and ``||`` fallbacks behave as typed.
"""

from __future__ import annotations

import logging
import subprocess
import time

from hostprep.adapters.base import Adapter, ExecutionContext
from hostprep.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Keep receipts small; a failing yum transaction can print megabytes.
_OUTPUT_TAIL = 8000


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str): The command line to execute.
        timeout (int): Timeout in seconds (default: 600).
        cwd (str): Working directory (default: inherited).
        input (str): Data written to the command's stdin.
    """

    @property
    def name(self) -> str:
        return "shell"

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.action.params.get("command"):
            return False, "Missing required param: 'command'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.action.params
        command = params["command"]
        timeout = params.get("timeout", 600)
        cwd = params.get("cwd")
        stdin = params.get("input")

        logger.debug("Executing: %s", command)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                input=stdin,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command timed out after {timeout}s",
                metadata={"command": command, "timeout": timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout[-_OUTPUT_TAIL:].rstrip()
        stderr = result.stderr[-_OUTPUT_TAIL:].rstrip()

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                duration_ms=elapsed_ms,
                metadata={
                    "command": command,
                    "return_code": result.returncode,
                    "stderr": stderr,
                },
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            output=output,
            duration_ms=elapsed_ms,
            metadata={
                "command": command,
                "return_code": result.returncode,
            },
        )
