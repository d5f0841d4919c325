"""Manager modules for Family Stars integration.

Managers orchestrate workflows and coordinate between engines.
They are stateful, event-aware, and the only code that mutates the
coordinator's data.
"""

from .base_manager import BaseManager
from .family_manager import FamilyManager
from .ledger_manager import LedgerManager
from .reward_manager import RewardManager
from .schedule_manager import ScheduleManager
from .sync_manager import SyncManager
from .task_manager import TaskManager

__all__ = [
    "BaseManager",
    "FamilyManager",
    "LedgerManager",
    "RewardManager",
    "ScheduleManager",
    "SyncManager",
    "TaskManager",
]
