"""Shared fixtures for alert remediation engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import pytest

from src.contracts.alert import Alert, parse_timestamp
from src.contracts.automation import Action, Automation
from src.shared.settings import EngineConfig

BASE_TS = "2026-03-01T10:00:00Z"

# ── Helper: create Alert / Automation with sensible defaults ─────────────


def make_alert(
    *,
    alert_id: str = "ALR-0001",
    alert_type: str = "performance",
    priority: str = "high",
    timestamp: str | float = BASE_TS,
    data: dict[str, Any] | None = None,
) -> Alert:
    return Alert(
        id=alert_id,
        type=alert_type,
        priority=priority,
        timestamp=parse_timestamp(timestamp),
        data=data or {},
    )


def make_automation(
    *,
    automation_id: str = "auto-1",
    steps: list[Action] | None = None,
    automation_type: str = "default",
) -> Automation:
    return Automation(
        id=automation_id,
        workflow=tuple(steps or [Action("notify", {"channel": "ops"}, required=True)]),
        name=automation_id,
        type=automation_type,
    )


# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(base: str = BASE_TS, seconds: int = 0) -> str:
    """Return an ISO-8601 timestamp offset from *base* by *seconds*."""
    dt = datetime.fromisoformat(base.replace("Z", "+00:00"))
    dt += timedelta(seconds=seconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class ManualClock:
    """Deterministic clock; tests move time with ``advance``."""

    def __init__(self, start: float | None = None) -> None:
        self.now = parse_timestamp(BASE_TS) if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def fast_config() -> EngineConfig:
    """Config with near-zero delays so retry paths finish quickly."""
    return EngineConfig(retry_delay=0.0, worker_timeout=1.0, queue_interval=0.01)


@pytest.fixture
def automations_yaml(tmp_path) -> str:
    path = tmp_path / "automations.yaml"
    path.write_text(
        """
workflows:
  performance:
    - {type: notify, required: true, params: {channel: ops}}
    - {type: scale, params: {amount: 2}}
automations:
  - id: performance_high
    conditions:
      - {kind: type, value: performance}
      - {kind: priority, value: high}
    workflow: performance
  - id: error_critical
    conditions:
      - {kind: type, value: error}
      - {kind: priority, value: critical}
    workflow:
      - {type: notify, required: true, params: {channel: dev}}
      - {type: restart}
""",
        encoding="utf-8",
    )
    return str(path)
