"""Condition tree evaluated against an alert.

Supported kinds
───────────────
  type       — alert.type == value
  priority   — alert.priority == value
  threshold  — numeric metric at a dotted path in alert.data compared with
               one of > < >= <= ==
  trend      — sign of the least-squares slope of a metric series
  pattern    — presence of a mined pattern / sequence for the alert's type
  composite  — AND / OR over nested conditions

Conditions are parsed from plain dicts (YAML/JSON rule definitions)::

    {"kind": "threshold", "metric": "cpu.usage", "operator": ">=", "value": 90}

The legacy ``type`` key is accepted in place of ``kind``.
"""

from __future__ import annotations

import logging
import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import numpy as np

from src.contracts.alert import Alert
from src.contracts.enums import Priority
from src.contracts.errors import ValidationError
from src.contracts.pattern import DetectionResult

log = logging.getLogger(__name__)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
}

_DIRECTIONS = ("increasing", "decreasing", "stable")


@dataclass(slots=True)
class EvaluationContext:
    """What a condition may look at besides the alert itself."""

    window: list[Alert] = field(default_factory=list)
    detection: DetectionResult = field(default_factory=DetectionResult)


def resolve_metric(data: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted *path* through nested mappings; ``None`` if absent."""
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _option(raw: Mapping[str, Any], key: str, default: Any, cast: Callable[[Any], Any]) -> Any:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ValidationError(f"Condition option '{key}' must be numeric, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Condition option '{key}' must be numeric, got {value!r}") from None


def linear_slope(values: list[float]) -> float:
    """Least-squares slope over evenly spaced points."""
    if len(values) < 2:
        raise ValueError(f"Need at least 2 points for a slope, got {len(values)}")
    x = np.arange(len(values))
    slope, _intercept = np.polyfit(x, np.asarray(values, dtype=float), deg=1)
    return float(slope)


# ═══════════════════════════════════════════════════════════════════════════
#  Condition kinds
# ═══════════════════════════════════════════════════════════════════════════


class Condition(ABC):
    kind: str = ""

    @abstractmethod
    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool: ...


@dataclass(frozen=True)
class TypeCondition(Condition):
    value: str
    kind = "type"

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        return alert.type == self.value


@dataclass(frozen=True)
class PriorityCondition(Condition):
    value: str
    kind = "priority"

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        return alert.priority == self.value


@dataclass(frozen=True)
class ThresholdCondition(Condition):
    metric: str
    op: str
    value: float
    kind = "threshold"

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        actual = _as_number(resolve_metric(alert.data, self.metric))
        if actual is None:
            return False
        return _OPERATORS[self.op](actual, self.value)


@dataclass(frozen=True)
class TrendCondition(Condition):
    """Direction of a metric over time.

    The series is the list stored at ``metric`` when the alert carries one;
    otherwise the metric across window alerts of the same type, followed by
    the current alert.
    """

    metric: str
    direction: str
    min_points: int = 3
    tolerance: float = 0.0
    kind = "trend"

    def series(self, alert: Alert, ctx: EvaluationContext) -> list[float]:
        own = resolve_metric(alert.data, self.metric)
        if isinstance(own, (list, tuple)):
            return [v for v in (_as_number(x) for x in own) if v is not None]

        values: list[float] = []
        for prior in ctx.window:
            if prior.type != alert.type or prior.id == alert.id:
                continue
            v = _as_number(resolve_metric(prior.data, self.metric))
            if v is not None:
                values.append(v)
        current = _as_number(own)
        if current is not None:
            values.append(current)
        return values

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        values = self.series(alert, ctx)
        if len(values) < max(2, self.min_points):
            return False
        slope = linear_slope(values)
        if self.direction == "increasing":
            return slope > self.tolerance
        if self.direction == "decreasing":
            return slope < -self.tolerance
        return abs(slope) <= self.tolerance


@dataclass(frozen=True)
class PatternCondition(Condition):
    """Checks the last detection result.

    ``pattern`` — exact frequent-pattern key must be present;
    ``sequence`` — exact sequence key ("a->b") must be present;
    neither — some frequent pattern of the alert's own type with
    length >= ``min_length`` must exist.
    """

    pattern: str = ""
    sequence: str = ""
    min_length: int = 0
    kind = "pattern"

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        det = ctx.detection
        if self.pattern and self.pattern not in det.patterns:
            return False
        if self.sequence and self.sequence not in det.sequences:
            return False
        if self.pattern or self.sequence:
            return True
        return any(
            p.type == alert.type and p.length >= self.min_length
            for p in det.patterns.values()
        )


@dataclass(frozen=True)
class CompositeCondition(Condition):
    op: str
    conditions: tuple[Condition, ...]
    kind = "composite"

    def evaluate(self, alert: Alert, ctx: EvaluationContext) -> bool:
        if self.op == "AND":
            return all(c.evaluate(alert, ctx) for c in self.conditions)
        return any(c.evaluate(alert, ctx) for c in self.conditions)


# ═══════════════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════════════


def parse_condition(raw: Mapping[str, Any] | Condition) -> Condition:
    """Build a Condition from its dict form.

    Raises:
        ValidationError: unknown kind, missing value or bad operator.
    """
    if isinstance(raw, Condition):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Condition must be a mapping, got {type(raw).__name__}")

    kind = str(raw.get("kind") or raw.get("type") or "").strip().lower()

    if kind in ("type", "priority"):
        value = str(raw.get("value") or "").strip()
        if not value:
            raise ValidationError(f"Condition '{kind}' must have a value")
        if kind == "priority":
            value = value.lower()
            if value not in {p.value for p in Priority}:
                raise ValidationError(f"Unknown priority '{value}' in condition")
            return PriorityCondition(value)
        return TypeCondition(value)

    if kind == "threshold":
        metric = str(raw.get("metric") or "").strip()
        op = str(raw.get("operator") or raw.get("op") or "").strip()
        value = _as_number(raw.get("value"))
        if not metric:
            raise ValidationError("Threshold condition must name a metric")
        if op not in _OPERATORS:
            raise ValidationError(f"Unknown threshold operator '{op}'")
        if value is None:
            raise ValidationError("Threshold condition must have a numeric value")
        return ThresholdCondition(metric=metric, op=op, value=value)

    if kind == "trend":
        metric = str(raw.get("metric") or "").strip()
        direction = str(raw.get("direction") or raw.get("value") or "").strip().lower()
        if not metric:
            raise ValidationError("Trend condition must name a metric")
        if direction not in _DIRECTIONS:
            raise ValidationError(f"Trend direction must be one of {', '.join(_DIRECTIONS)}")
        return TrendCondition(
            metric=metric,
            direction=direction,
            min_points=_option(raw, "min_points", 3, int),
            tolerance=_option(raw, "tolerance", 0.0, float),
        )

    if kind == "pattern":
        cond = PatternCondition(
            pattern=str(raw.get("pattern") or raw.get("value") or ""),
            sequence=str(raw.get("sequence") or ""),
            min_length=_option(raw, "min_length", 0, int),
        )
        if not (cond.pattern or cond.sequence or cond.min_length):
            raise ValidationError("Pattern condition needs pattern, sequence or min_length")
        return cond

    if kind == "composite":
        op = str(raw.get("operator") or raw.get("op") or "AND").strip().upper()
        if op not in ("AND", "OR"):
            raise ValidationError(f"Composite operator must be AND or OR, got '{op}'")
        nested = raw.get("conditions") or []
        if not isinstance(nested, list) or not nested:
            raise ValidationError("Composite condition needs a non-empty conditions list")
        return CompositeCondition(op=op, conditions=tuple(parse_condition(c) for c in nested))

    raise ValidationError(f"Unknown condition kind '{kind}'")
