"""
Adapter registry — central dispatch for all command execution.

The host facade never talks to adapters directly, always through
the registry. Mock mode swaps every adapter for a recorder so a
whole task can be rehearsed without touching the machine.
"""

from __future__ import annotations

import logging
import time
from hostprep.adapters.base import Adapter, ExecutionContext
from hostprep.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters."""

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode
        self._mock_adapter: Adapter | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_adapter: Optional custom mock adapter. If None, every
                action succeeds with a ``[mock]`` receipt.
        """
        self._mock_mode = enabled
        self._mock_adapter = mock_adapter

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def execute_action(self, action: Action) -> Receipt:
        """Execute an action through the appropriate adapter.

        Resolves the adapter (or mock), validates, executes and
        returns a Receipt. Never raises.
        """
        start_time = time.monotonic()
        context = ExecutionContext(action=action, params=action.params)

        adapter: Adapter | None
        if self._mock_mode and self._mock_adapter:
            adapter = self._mock_adapter
        elif self._mock_mode:
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                output="",
                metadata={"mock": True, "return_code": 0},
            )
        else:
            adapter = self._adapters.get(action.adapter)

        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation error: {e}",
            )
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt
