"""Adapters — command execution backends.

Public re-exports for convenient access.
"""

from hostprep.adapters.base import Adapter, ExecutionContext
from hostprep.adapters.mock import MockAdapter
from hostprep.adapters.registry import AdapterRegistry
from hostprep.adapters.shell.command import ShellCommandAdapter

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "ShellCommandAdapter",
]
