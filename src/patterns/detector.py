"""Pattern Detector — mine recurring structure from the alert stream.

Three independent miners run over the same alert list:

  frequent patterns  — per-type sliding windows of L consecutive alerts
                       (L ∈ [min_pattern_length, max_pattern_length]) whose
                       time span fits in ``time_window``; keyed
                       "type:priority,type:priority,…"
  sequential         — timestamp-adjacent pairs no further apart than
                       ``max_time_gap``; keyed "typeA->typeB"
  correlations       — co-occurrence of two types inside fixed
                       ``time_window`` buckets; keyed "typeA,typeB" (sorted)

All ratios are taken against the number of well-formed alerts. Malformed
input (no type or timestamp) is skipped, never raised.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict, deque
from itertools import combinations
from typing import Any, Iterable, Mapping

from src.contracts.alert import Alert
from src.contracts.errors import ValidationError
from src.contracts.pattern import Correlation, DetectionResult, Pattern, Sequence
from src.shared.settings import EngineConfig

log = logging.getLogger(__name__)


def _coerce_alerts(alerts: Iterable[Alert | Mapping[str, Any]]) -> list[Alert]:
    """Keep well-formed alerts, sorted by timestamp."""
    valid: list[Alert] = []
    skipped = 0
    for a in alerts:
        if isinstance(a, Alert):
            if a.type and a.timestamp is not None and math.isfinite(a.timestamp):
                valid.append(a)
            else:
                skipped += 1
            continue
        try:
            valid.append(Alert.from_dict(a))
        except (ValidationError, AttributeError, TypeError) as exc:
            skipped += 1
            log.debug("Skipping malformed alert: %s", exc)
    if skipped:
        log.debug("Pattern mining skipped %d malformed alert(s)", skipped)
    valid.sort(key=lambda a: a.timestamp)
    return valid


def _pattern_key(window: list[Alert]) -> str:
    return ",".join(f"{a.type}:{a.priority}" for a in window)


# ═══════════════════════════════════════════════════════════════════════════
#  Miners
# ═══════════════════════════════════════════════════════════════════════════


def find_frequent_patterns(
    alerts: list[Alert],
    min_length: int,
    max_length: int,
    time_window: float,
    min_support: float,
) -> dict[str, Pattern]:
    """Per-type windowed patterns whose support ratio reaches *min_support*.

    *alerts* must be sorted by timestamp.
    """
    total = len(alerts)
    if total == 0:
        return {}

    groups: dict[str, list[Alert]] = defaultdict(list)
    for a in alerts:
        groups[a.type].append(a)

    patterns: dict[str, Pattern] = {}
    for alert_type, group in groups.items():
        for length in range(min_length, max_length + 1):
            if length > len(group):
                break
            counts: dict[str, int] = defaultdict(int)
            for i in range(len(group) - length + 1):
                window = group[i:i + length]
                if window[-1].timestamp - window[0].timestamp <= time_window:
                    counts[_pattern_key(window)] += 1
            for key, support in counts.items():
                ratio = support / total
                if ratio >= min_support:
                    patterns[key] = Pattern(
                        key=key,
                        type=alert_type,
                        length=length,
                        support=support,
                        confidence=ratio,
                    )
    return patterns


def detect_sequential_patterns(
    alerts: list[Alert],
    max_time_gap: float,
    min_confidence: float,
) -> dict[str, Sequence]:
    """Adjacent-type transitions within *max_time_gap* seconds."""
    total = len(alerts)
    if total < 2:
        return {}

    intervals: dict[str, list[float]] = defaultdict(list)
    for current, nxt in zip(alerts, alerts[1:]):
        gap = nxt.timestamp - current.timestamp
        if gap <= max_time_gap:
            intervals[f"{current.type}->{nxt.type}"].append(gap)

    sequences: dict[str, Sequence] = {}
    for key, gaps in intervals.items():
        confidence = len(gaps) / total
        if confidence >= min_confidence:
            sequences[key] = Sequence(
                key=key,
                count=len(gaps),
                confidence=confidence,
                intervals=tuple(gaps),
            )
    return sequences


def analyze_correlations(
    alerts: list[Alert],
    time_window: float,
    min_confidence: float,
) -> dict[str, Correlation]:
    """Fraction of time buckets in which two distinct types co-occur."""
    if not alerts or time_window <= 0:
        return {}

    buckets: dict[int, set[str]] = defaultdict(set)
    for a in alerts:
        buckets[math.floor(a.timestamp / time_window)].add(a.type)

    windows = list(buckets.values())
    n_windows = len(windows)
    types = sorted({a.type for a in alerts})

    correlations: dict[str, Correlation] = {}
    for t1, t2 in combinations(types, 2):
        co = sum(1 for w in windows if t1 in w and t2 in w)
        ratio = co / n_windows
        if ratio >= min_confidence:
            key = f"{t1},{t2}"
            correlations[key] = Correlation(
                key=key,
                types=(t1, t2),
                cooccurrences=co,
                windows=n_windows,
                correlation=ratio,
            )
    return correlations


# ═══════════════════════════════════════════════════════════════════════════
#  Stateful detector (rolling window + last result)
# ═══════════════════════════════════════════════════════════════════════════


class PatternDetector:
    """Keeps a rolling alert window and the result of the last detection."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self._window: deque[Alert] = deque()
        self._last = DetectionResult()

    # ── window ────────────────────────────────────────────────────────────

    def observe(self, alert: Alert) -> None:
        """Add *alert* to the window and drop alerts past retention."""
        self._window.append(alert)
        if len(self._window) > 1 and alert.timestamp < self._window[-2].timestamp:
            self._window = deque(sorted(self._window, key=lambda a: a.timestamp))
        self.prune(self._window[-1].timestamp)

    def prune(self, now: float) -> int:
        cutoff = now - self.config.alert_retention
        dropped = 0
        while self._window and self._window[0].timestamp < cutoff:
            self._window.popleft()
            dropped += 1
        if dropped:
            log.debug("Alert window pruned %d alert(s) older than %.0fs", dropped, self.config.alert_retention)
        return dropped

    @property
    def window(self) -> list[Alert]:
        return list(self._window)

    # ── detection ─────────────────────────────────────────────────────────

    def detect_patterns(self, alerts: Iterable[Alert | Mapping[str, Any]] | None = None) -> DetectionResult:
        """Run all three miners. ``None`` mines the rolling window."""
        cfg = self.config
        valid = _coerce_alerts(self._window if alerts is None else alerts)

        result = DetectionResult(
            patterns=find_frequent_patterns(
                valid, cfg.min_pattern_length, cfg.max_pattern_length, cfg.time_window, cfg.min_support
            ),
            sequences=detect_sequential_patterns(valid, cfg.max_time_gap, cfg.min_confidence),
            correlations=analyze_correlations(valid, cfg.time_window, cfg.min_confidence),
            total_alerts=len(valid),
        )
        self._last = result
        log.debug(
            "Detected %d patterns, %d sequences, %d correlations from %d alerts",
            len(result.patterns), len(result.sequences), len(result.correlations), len(valid),
        )
        return result

    @property
    def last_result(self) -> DetectionResult:
        return self._last

    def get_patterns(self) -> list[Pattern]:
        return list(self._last.patterns.values())

    def get_sequences(self) -> list[Sequence]:
        return list(self._last.sequences.values())

    def get_correlations(self) -> list[Correlation]:
        return list(self._last.correlations.values())
