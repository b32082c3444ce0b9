"""Lifecycle StateRecord."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.contracts.alert import format_timestamp


@dataclass(frozen=True, slots=True)
class StateRecord:
    """One lifecycle transition of an automation instance."""

    instance_id: str
    previous_state: str
    current_state: str
    timestamp: float
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "previous_state": self.previous_state,
            "current_state": self.current_state,
            "timestamp": format_timestamp(self.timestamp),
        }
