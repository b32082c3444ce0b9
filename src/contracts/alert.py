"""Модель оповіщення (Alert) з вхідного потоку."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from src.contracts.enums import Priority
from src.contracts.errors import ValidationError

_PRIORITIES = {p.value for p in Priority}


def _finite(value: Any, epoch: float) -> float:
    if not math.isfinite(epoch):
        raise ValidationError(f"invalid timestamp {value!r}")
    return epoch


def parse_timestamp(value: Any) -> float:
    """Convert an ISO-8601 string, datetime or epoch number to epoch seconds.

    NaN and infinities are rejected like any other malformed value.
    """
    if isinstance(value, bool):
        raise ValidationError(f"invalid timestamp {value!r}")
    if isinstance(value, (int, float)):
        return _finite(value, float(value))
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    if isinstance(value, str) and value.strip():
        s = value.strip()
        try:
            epoch = float(s)
        except ValueError:
            pass
        else:
            return _finite(value, epoch)
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"invalid timestamp {value!r}") from exc
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    raise ValidationError(f"invalid timestamp {value!r}")


def format_timestamp(epoch: float) -> str:
    """Epoch seconds → ``YYYY-MM-DDTHH:MM:SSZ``."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class Alert:
    """Оповіщення з типом, пріоритетом та часовою міткою. Незмінне після прийому."""

    id: str
    type: str
    priority: str  # low | medium | high | critical
    timestamp: float  # epoch seconds, UTC
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Alert:
        """Build an Alert from a loosely-typed mapping.

        Raises:
            ValidationError: type or timestamp missing, or unknown priority.
        """
        errors: list[str] = []
        alert_type = str(raw.get("type") or "").strip()
        if not alert_type:
            errors.append("type is required")

        priority = str(raw.get("priority") or Priority.MEDIUM.value).strip().lower()
        if priority not in _PRIORITIES:
            errors.append(f"unknown priority '{priority}'")

        ts_raw = raw.get("timestamp")
        ts = 0.0
        if ts_raw is None or ts_raw == "":
            errors.append("timestamp is required")
        else:
            try:
                ts = parse_timestamp(ts_raw)
            except ValidationError as exc:
                errors.append(str(exc))

        data = raw.get("data") or {}
        if not isinstance(data, Mapping):
            errors.append("data must be a mapping")

        if errors:
            raise ValidationError(f"Invalid alert: {', '.join(errors)}", errors)

        return cls(
            id=str(raw.get("id") or uuid.uuid4().hex[:12]),
            type=alert_type,
            priority=priority,
            timestamp=ts,
            data=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "timestamp": format_timestamp(self.timestamp),
            "data": dict(self.data),
        }
