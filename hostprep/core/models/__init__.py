"""
Domain models — Pydantic types shared by the engine and the services.

    from hostprep.core.models import Action, Receipt, Settings, RunRecord
"""

from hostprep.core.models.action import Action, Receipt
from hostprep.core.models.run import RunRecord
from hostprep.core.models.settings import (
    KeyCommandSettings,
    MysqlSettings,
    PhpSettings,
    Settings,
    SshSettings,
)

__all__ = [
    "Action",
    "KeyCommandSettings",
    "MysqlSettings",
    "PhpSettings",
    "Receipt",
    "RunRecord",
    "Settings",
    "SshSettings",
]
