"""Engine modules for Family Stars integration.

Contains the pure computation engines:
- task_engine: Task instance state machine, guards and transitions
- ledger_engine: Star ledger entries and totals
- schedule_engine: Recurring regeneration and expiration planning
- reconcile_engine: Canonical row sanitizing, merging and identity promotion
"""

from .ledger_engine import InsufficientFundsError, LedgerEngine
from .reconcile_engine import PromotionPlan, ReconcileEngine, SanitizeResult
from .schedule_engine import ScheduleEngine
from .task_engine import (
    TASK_ACTION_APPROVE,
    TASK_ACTION_EXPIRE,
    TASK_ACTION_REJECT,
    TASK_ACTION_REQUEST_COMPLETION,
    TaskEngine,
    TransitionEffect,
)

__all__ = [
    "TASK_ACTION_APPROVE",
    "TASK_ACTION_EXPIRE",
    "TASK_ACTION_REJECT",
    "TASK_ACTION_REQUEST_COMPLETION",
    "InsufficientFundsError",
    "LedgerEngine",
    "PromotionPlan",
    "ReconcileEngine",
    "SanitizeResult",
    "ScheduleEngine",
    "TaskEngine",
    "TransitionEffect",
]
