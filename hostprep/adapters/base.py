"""
Adapter base — the contract between the host facade and the tools.

Provisioning services never call ``subprocess`` themselves. They
describe a command as an Action and hand it to an adapter through
the registry; the adapter answers with a Receipt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from hostprep.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def command(self) -> str:
        return str(self.params.get("command", ""))


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They never raise: failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g. 'shell')."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
