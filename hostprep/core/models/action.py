"""
Action and Receipt models — the command execution contract.

Every system command a provisioning step issues is an Action.
Every result is a Receipt. Adapters turn Actions into Receipts and
never raise; it is the caller that decides whether a failed Receipt
is fatal (see ``Host.run(check=True)``).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A requested command, dispatched to an adapter by name.

    The id doubles as the lookup key for canned responses in the
    mock adapter, so the host uses the command line itself as id.
    """

    id: str
    name: str = ""
    adapter: str = "shell"
    params: dict[str, Any] = Field(default_factory=dict)


class Receipt(BaseModel):
    """Outcome of an Action."""

    adapter: str
    action_id: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def return_code(self) -> int | None:
        """Process exit code, when the adapter ran a process."""
        code = self.metadata.get("return_code")
        return code if isinstance(code, int) else None

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )
