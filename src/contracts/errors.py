"""Error taxonomy for the remediation engine."""

from __future__ import annotations

from typing import Any


class AutomationError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(AutomationError):
    """Malformed alert, automation, condition, schedule or config."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or [message]
        super().__init__(message)


class InvalidTransitionError(AutomationError):
    def __init__(self, from_state: str, to_state: str, reason: str = "") -> None:
        self.from_state = from_state
        self.to_state = to_state
        msg = f"Invalid state transition: {from_state} -> {to_state}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class UnknownActionError(AutomationError):
    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action: {action_type}")


class NoWorkerFoundError(AutomationError):
    def __init__(self, automation_type: str) -> None:
        self.automation_type = automation_type
        super().__init__(f"No suitable worker found for type '{automation_type}'")


class WorkflowAbortedError(AutomationError):
    """A required workflow step failed; ``results`` holds the partial list."""

    def __init__(self, action_type: str, results: list[Any]) -> None:
        self.action_type = action_type
        self.results = list(results)
        super().__init__(f"Required action failed: {action_type}")


class QueueFullError(AutomationError):
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(f"Queue is full ({capacity} items)")


class WorkerTimeoutError(AutomationError):
    def __init__(self, item_id: str, timeout_sec: float) -> None:
        self.item_id = item_id
        self.timeout_sec = timeout_sec
        super().__init__(f"Worker timeout after {timeout_sec:g}s (item {item_id})")


class RetryExhaustedError(AutomationError):
    def __init__(self, item_id: str, attempts: int, last_error: BaseException | str) -> None:
        self.item_id = item_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up on {item_id} after {attempts} attempt(s): {last_error}")
