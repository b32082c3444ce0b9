"""Завантаження оповіщень з файлів (CSV та JSONL).

CSV: ``id,type,priority,timestamp`` plus any extra columns, which become
entries of ``alert.data`` (numeric strings are converted to floats).
JSONL: one alert object per line, ``data`` nested as-is.

Malformed rows are skipped with a warning.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any

from src.contracts.alert import Alert
from src.contracts.errors import ValidationError

log = logging.getLogger(__name__)

_CORE_COLUMNS = ("id", "type", "priority", "timestamp", "data")


def _maybe_number(value: str) -> Any:
    try:
        return float(value)
    except (TypeError, ValueError):
        return value


def _parse_row(row: dict[str, Any]) -> Alert:
    data: dict[str, Any] = {}
    raw_data = row.get("data")
    if isinstance(raw_data, dict):
        data.update(raw_data)
    elif isinstance(raw_data, str) and raw_data.strip():
        parsed = json.loads(raw_data)
        if not isinstance(parsed, dict):
            raise ValidationError("data column must hold a JSON object")
        data.update(parsed)
    for key, value in row.items():
        if key in _CORE_COLUMNS or key is None or value in (None, ""):
            continue
        data[key] = _maybe_number(value) if isinstance(value, str) else value
    return Alert.from_dict({**{k: row.get(k) for k in _CORE_COLUMNS[:4]}, "data": data})


def load_alerts_csv(path: str | Path) -> list[Alert]:
    alerts: list[Alert] = []
    with open(path, encoding="utf-8", newline="") as fh:
        for line_no, row in enumerate(csv.DictReader(fh), 2):
            try:
                alerts.append(_parse_row(row))
            except (ValidationError, json.JSONDecodeError) as exc:
                log.warning("Skipping CSV line %d: %s", line_no, exc)
    log.info("Loaded %d alerts from CSV: %s", len(alerts), path)
    return alerts


def load_alerts_jsonl(path: str | Path) -> list[Alert]:
    alerts: list[Alert] = []
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
                if not isinstance(obj, dict):
                    raise ValidationError("line is not a JSON object")
                alerts.append(_parse_row(obj))
            except (json.JSONDecodeError, ValidationError) as exc:
                log.warning("Skipping JSONL line %d: %s", line_no, exc)
    log.info("Loaded %d alerts from JSONL: %s", len(alerts), path)
    return alerts


def load_alerts(path: str | Path) -> list[Alert]:
    """Auto-detect format by file extension and load alerts sorted by time."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Alert file not found: {p}")
    alerts = load_alerts_jsonl(p) if p.suffix in (".jsonl", ".ndjson") else load_alerts_csv(p)
    alerts.sort(key=lambda a: a.timestamp)
    return alerts
