"""Tests for src.contracts — Alert, Action, ActionResult, records, errors."""

from __future__ import annotations

import pytest

from src.contracts.alert import Alert, format_timestamp, parse_timestamp
from src.contracts.automation import Action, ActionResult
from src.contracts.errors import (
    AutomationError,
    InvalidTransitionError,
    QueueFullError,
    RetryExhaustedError,
    ValidationError,
    WorkflowAbortedError,
)
from src.contracts.queue import HistoryEntry, result_summary
from tests.conftest import make_alert, make_automation, ts_offset

# ═══════════════════════════════════════════════════════════════════════════
#  Alert
# ═══════════════════════════════════════════════════════════════════════════


class TestAlert:
    def test_from_dict_iso_timestamp(self):
        alert = Alert.from_dict({
            "id": "a-1", "type": "performance", "priority": "HIGH",
            "timestamp": "2026-03-01T10:00:00Z", "data": {"cpu": 90},
        })
        assert alert.id == "a-1"
        assert alert.priority == "high"
        assert format_timestamp(alert.timestamp) == "2026-03-01T10:00:00Z"
        assert alert.data == {"cpu": 90}

    def test_from_dict_epoch_timestamp(self):
        alert = Alert.from_dict({"type": "error", "timestamp": 1_700_000_000})
        assert alert.timestamp == 1_700_000_000.0

    def test_missing_priority_defaults_to_medium(self):
        alert = Alert.from_dict({"type": "error", "timestamp": 1.0})
        assert alert.priority == "medium"

    def test_missing_id_is_generated(self):
        a = Alert.from_dict({"type": "error", "timestamp": 1.0})
        b = Alert.from_dict({"type": "error", "timestamp": 1.0})
        assert a.id and b.id and a.id != b.id

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc_info:
            Alert.from_dict({"priority": "urgent"})
        errors = exc_info.value.errors
        assert "type is required" in errors
        assert "timestamp is required" in errors
        assert any("urgent" in e for e in errors)

    def test_bad_timestamp_rejected(self):
        with pytest.raises(ValidationError, match="invalid timestamp"):
            Alert.from_dict({"type": "error", "timestamp": "yesterday"})

    @pytest.mark.parametrize("raw", ["nan", "inf", "-Infinity", float("nan"), float("inf")])
    def test_non_finite_timestamp_rejected(self, raw):
        with pytest.raises(ValidationError, match="invalid timestamp"):
            parse_timestamp(raw)
        with pytest.raises(ValidationError):
            Alert.from_dict({"type": "error", "timestamp": raw})

    def test_non_mapping_data_rejected(self):
        with pytest.raises(ValidationError, match="data must be a mapping"):
            Alert.from_dict({"type": "error", "timestamp": 1.0, "data": [1, 2]})

    def test_alert_is_immutable(self):
        alert = make_alert()
        with pytest.raises(AttributeError):
            alert.type = "error"  # type: ignore[misc]

    def test_to_dict(self):
        alert = make_alert(alert_id="x", timestamp=ts_offset(seconds=90))
        d = alert.to_dict()
        assert d["id"] == "x"
        assert d["timestamp"] == "2026-03-01T10:01:30Z"

    def test_parse_timestamp_naive_is_utc(self):
        assert parse_timestamp("2026-03-01T10:00:00") == parse_timestamp("2026-03-01T10:00:00Z")


# ═══════════════════════════════════════════════════════════════════════════
#  Action / ActionResult
# ═══════════════════════════════════════════════════════════════════════════


class TestAction:
    def test_from_dict_accepts_action_key(self):
        step = Action.from_dict({"action": "notify", "params": {"channel": "ops"}, "required": True})
        assert step.type == "notify"
        assert step.params == {"channel": "ops"}
        assert step.required is True

    def test_missing_type_rejected(self):
        with pytest.raises(ValidationError):
            Action.from_dict({"params": {}})

    def test_params_must_be_mapping(self):
        with pytest.raises(ValidationError, match="params"):
            Action.from_dict({"type": "scale", "params": 3})


class TestActionResult:
    def test_mapping_without_success_counts_as_success(self):
        r = ActionResult.coerce("notify", {"notified": True})
        assert r.success is True
        assert r.output == {"notified": True}

    def test_mapping_with_failure(self):
        r = ActionResult.coerce("scale", {"success": False, "error": "no capacity"})
        assert r.success is False
        assert r.error == "no capacity"

    def test_none_is_success(self):
        assert ActionResult.coerce("restart", None).success is True

    def test_bool_is_flag(self):
        assert ActionResult.coerce("restart", False).success is False

    def test_result_passthrough(self):
        original = ActionResult("backup", success=True)
        assert ActionResult.coerce("backup", original) is original


# ═══════════════════════════════════════════════════════════════════════════
#  Records & errors
# ═══════════════════════════════════════════════════════════════════════════


class TestRecords:
    def test_history_entry_counts(self):
        entry = HistoryEntry(
            alert=make_alert(),
            automations=[make_automation(automation_id="a"), make_automation(automation_id="b")],
            results=[{"automation_id": "a", "success": True}, {"automation_id": "b", "success": False}],
            timestamp=0.0,
        )
        d = entry.to_dict()
        assert d["automations"] == "a;b"
        assert d["succeeded"] == 1
        assert d["failed"] == 1

    def test_result_summary_flattens_output(self):
        rows = result_summary([ActionResult("scale", True, {"amount": 2})])
        assert rows == [{"action": "scale", "success": True, "error": "", "amount": 2}]


class TestErrors:
    def test_all_errors_share_base(self):
        for exc in (
            ValidationError("x"),
            InvalidTransitionError("a", "b"),
            QueueFullError(3),
            RetryExhaustedError("Q-1", 3, "boom"),
            WorkflowAbortedError("notify", []),
        ):
            assert isinstance(exc, AutomationError)

    def test_invalid_transition_message(self):
        exc = InvalidTransitionError("running", "running")
        assert str(exc) == "Invalid state transition: running -> running"

    def test_workflow_aborted_keeps_partial_results(self):
        partial = [ActionResult("notify", False)]
        exc = WorkflowAbortedError("notify", partial)
        assert exc.results == partial
        assert exc.results is not partial
