"""Derived pattern-mining results. Recomputed on every detection cycle."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Pattern:
    key: str  # "type:priority,type:priority,..."
    type: str
    length: int
    support: int
    confidence: float  # support / total alerts


@dataclass(frozen=True, slots=True)
class Sequence:
    key: str  # "typeA->typeB"
    count: int
    confidence: float  # count / total alerts
    intervals: tuple[float, ...] = ()

    @property
    def mean_interval(self) -> float:
        return sum(self.intervals) / len(self.intervals) if self.intervals else 0.0


@dataclass(frozen=True, slots=True)
class Correlation:
    key: str  # "typeA,typeB" (sorted)
    types: tuple[str, str]
    cooccurrences: int
    windows: int
    correlation: float


@dataclass(slots=True)
class DetectionResult:
    patterns: dict[str, Pattern] = field(default_factory=dict)
    sequences: dict[str, Sequence] = field(default_factory=dict)
    correlations: dict[str, Correlation] = field(default_factory=dict)
    total_alerts: int = 0

    def is_empty(self) -> bool:
        return not (self.patterns or self.sequences or self.correlations)
