"""Contracts — canonical data structures shared by all engine modules."""

from src.contracts.alert import Alert
from src.contracts.automation import Action, ActionResult, Automation
from src.contracts.enums import Frequency, LifecycleState, Priority, QueueStatus, ScheduleStatus
from src.contracts.errors import (
    AutomationError,
    InvalidTransitionError,
    NoWorkerFoundError,
    QueueFullError,
    RetryExhaustedError,
    UnknownActionError,
    ValidationError,
    WorkerTimeoutError,
    WorkflowAbortedError,
)
from src.contracts.pattern import Correlation, DetectionResult, Pattern, Sequence
from src.contracts.queue import HistoryEntry, QueueItem, Schedule
from src.contracts.state import StateRecord

__all__ = [
    "Action",
    "ActionResult",
    "Alert",
    "Automation",
    "AutomationError",
    "Correlation",
    "DetectionResult",
    "Frequency",
    "HistoryEntry",
    "InvalidTransitionError",
    "LifecycleState",
    "NoWorkerFoundError",
    "Pattern",
    "Priority",
    "QueueFullError",
    "QueueItem",
    "QueueStatus",
    "RetryExhaustedError",
    "Schedule",
    "ScheduleStatus",
    "Sequence",
    "StateRecord",
    "UnknownActionError",
    "ValidationError",
    "WorkerTimeoutError",
    "WorkflowAbortedError",
]
