"""Engine configuration — every recognised option with its default.

Durations are seconds. YAML keys may carry a ``_sec`` suffix
(``retry_delay_sec: 5``) or use the bare name (``retry_delay: 5``).

Example ``config/engine.yaml``::

    scheduler:
      max_concurrent: 10
      max_queue_size: 1000
    workflow:
      concurrent_limit: 5
    patterns:
      min_support: 0.1
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from src.contracts.errors import ValidationError
from src.shared.config_loader import load_yaml

log = logging.getLogger(__name__)

_DAY = 86400.0


@dataclass(frozen=True)
class EngineConfig:
    # ── scheduler ──
    max_concurrent: int = 10
    max_queue_size: int = 1000
    default_priority: int = 5
    max_retries: int = 3
    retry_delay: float = 5.0
    worker_timeout: float = 30.0
    schedule_interval: float = 60.0
    queue_interval: float = 1.0

    # ── workflow executor ──
    concurrent_limit: int = 5

    # ── pattern detector ──
    min_pattern_length: int = 2
    max_pattern_length: int = 10
    min_support: float = 0.1
    min_confidence: float = 0.5
    time_window: float = 3600.0
    max_time_gap: float = 300.0
    alert_retention: float = _DAY

    # ── state manager ──
    history_retention: float = 30 * _DAY
    validate_transitions: bool = True
    cleanup_interval: float = _DAY

    # ── history buffers ──
    max_history: int = 1000

    def __post_init__(self) -> None:
        errors = self.validate()
        if errors:
            raise ValidationError(f"Invalid engine config: {', '.join(errors)}", errors)

    def validate(self) -> list[str]:
        errors: list[str] = []
        for name in ("max_concurrent", "max_queue_size", "max_retries",
                     "concurrent_limit", "min_pattern_length", "max_history"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be >= 1")
        for name in ("retry_delay", "schedule_interval", "queue_interval", "worker_timeout",
                     "time_window", "max_time_gap", "alert_retention", "history_retention",
                     "cleanup_interval"):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0")
        if self.max_pattern_length < self.min_pattern_length:
            errors.append("max_pattern_length must be >= min_pattern_length")
        for name in ("min_support", "min_confidence"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                errors.append(f"{name} must be within [0, 1]")
        return errors

    def with_overrides(self, **updates: Any) -> EngineConfig:
        """Return a copy with *updates* applied (re-validated)."""
        return replace(self, **updates)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> EngineConfig:
        """Build a config from a (possibly sectioned) mapping.

        Nested sections are flattened; unknown keys are logged and ignored.
        """
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in _flatten(raw).items():
            name = key[:-4] if key.endswith("_sec") and key[:-4] in known else key
            if name not in known:
                log.warning("Unknown config option '%s' ignored", key)
                continue
            values[name] = _coerce(name, value, known[name].type)
        return cls(**values)


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load ``EngineConfig`` from YAML; ``None`` yields defaults."""
    if path is None:
        return EngineConfig()
    cfg = EngineConfig.from_dict(load_yaml(path))
    log.info("Engine config loaded from %s", path)
    return cfg


def _flatten(raw: dict[str, Any]) -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            flat.update(_flatten(value))
        else:
            flat[str(key)] = value
    return flat


def _coerce(name: str, value: Any, type_name: Any) -> Any:
    target = str(type_name)
    try:
        if target == "bool":
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if target == "int":
            return int(value)
        if target == "float":
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Config option '{name}' has invalid value {value!r}") from exc
    return value
