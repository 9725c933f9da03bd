"""
Mock adapter — test double for the shell adapter.

Records every command it is asked to run and answers with success,
unless a canned response was registered. Canned responses match the
command line exactly, or by prefix when registered with
``prefix=True`` (handy for ``yum install -y ...`` families).
"""

from __future__ import annotations

from hostprep.adapters.base import Adapter, ExecutionContext
from hostprep.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing and ``--mock`` runs."""

    def __init__(
        self,
        adapter_name: str = "shell",
        default_output: str = "",
    ):
        self._name = adapter_name
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._prefix_responses: dict[str, Receipt] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[str]:
        """Command lines received, in order."""
        return [ctx.command for ctx in self._call_log]

    def ran(self, fragment: str) -> bool:
        """Whether any received command contains ``fragment``."""
        return any(fragment in cmd for cmd in self.commands)

    def set_response(self, action_id: str, receipt: Receipt, *, prefix: bool = False) -> None:
        """Set a custom response for a command line (or command prefix)."""
        if prefix:
            self._prefix_responses[action_id] = receipt
        else:
            self._responses[action_id] = receipt

    def set_output(self, action_id: str, output: str, *, prefix: bool = False) -> None:
        """Configure a command to succeed with the given stdout."""
        self.set_response(
            action_id,
            Receipt.success(
                adapter=self._name,
                action_id=action_id,
                output=output,
                metadata={"return_code": 0},
            ),
            prefix=prefix,
        )

    def set_failure(
        self,
        action_id: str,
        error: str = "Mock failure",
        *,
        return_code: int = 1,
        prefix: bool = False,
    ) -> None:
        """Configure a command to fail."""
        self.set_response(
            action_id,
            Receipt.failure(
                adapter=self._name,
                action_id=action_id,
                error=error,
                metadata={"return_code": return_code},
            ),
            prefix=prefix,
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        action_id = context.action.id
        if action_id in self._responses:
            return self._responses[action_id]

        matches = [p for p in self._prefix_responses if action_id.startswith(p)]
        if matches:
            return self._prefix_responses[max(matches, key=len)]

        return Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=self._default_output,
            metadata={"mock": True, "return_code": 0},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._prefix_responses.clear()
