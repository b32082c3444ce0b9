"""Scheduler records: QueueItem, Schedule and HistoryEntry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.contracts.alert import Alert, format_timestamp
from src.contracts.automation import ActionResult, Automation


@dataclass(slots=True)
class QueueItem:
    """One unit of queued work.

    Terminates in completed, failed or cancelled. ``attempts`` never
    exceeds the scheduler's ``max_retries``.
    """

    id: str
    automation: Automation
    priority: int
    status: str  # queued | running | completed | failed | cancelled
    created: float
    modified: float
    attempts: int = 0
    alert: Alert | None = None
    schedule_id: str = ""
    result: Any = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "automation_id": self.automation.id,
            "automation_type": self.automation.type,
            "priority": self.priority,
            "status": self.status,
            "attempts": self.attempts,
            "created": format_timestamp(self.created),
            "modified": format_timestamp(self.modified),
            "alert_id": self.alert.id if self.alert else "",
            "schedule_id": self.schedule_id,
            "error": self.error,
        }


@dataclass(slots=True)
class Schedule:
    """A time-based trigger; ``next_run`` is recomputed after each fire."""

    id: str
    automation: Automation
    frequency: str
    next_run: float
    created: float
    modified: float
    interval: int | None = None
    priority: int | None = None
    status: str = "scheduled"  # scheduled | paused | cancelled
    runs: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "automation_id": self.automation.id,
            "frequency": self.frequency,
            "interval": self.interval,
            "priority": self.priority,
            "status": self.status,
            "next_run": format_timestamp(self.next_run),
            "runs": len(self.runs),
        }


@dataclass(slots=True)
class HistoryEntry:
    """Outcome of processing one alert against the matched automations."""

    alert: Alert
    automations: list[Automation]
    results: list[dict[str, Any]]
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        ok = sum(1 for r in self.results if r.get("success"))
        return {
            "alert_id": self.alert.id,
            "alert_type": self.alert.type,
            "alert_priority": self.alert.priority,
            "automations": ";".join(a.id for a in self.automations),
            "succeeded": ok,
            "failed": len(self.results) - ok,
            "timestamp": format_timestamp(self.timestamp),
        }


def result_summary(results: list[ActionResult]) -> list[dict[str, Any]]:
    """Flatten step results for history/reporting."""
    return [
        {"action": r.action, "success": r.success, "error": r.error, **r.output}
        for r in results
    ]
