"""Schedule validation and next-run arithmetic."""

from __future__ import annotations

from src.contracts.enums import Frequency
from src.contracts.errors import ValidationError

_MINUTE = 60.0
_HOUR = 3600.0
_DAY = 86400.0

# Fixed periods; ``monthly`` is a flat 30 days and ``cron`` a 1-day stub
_PERIOD_SEC: dict[str, float] = {
    Frequency.HOURLY.value: _HOUR,
    Frequency.DAILY.value: _DAY,
    Frequency.WEEKLY.value: 7 * _DAY,
    Frequency.MONTHLY.value: 30 * _DAY,
    Frequency.CRON.value: _DAY,
}

_FREQUENCIES = {f.value for f in Frequency}


def validate_schedule(automation: object, frequency: str | None, interval: int | None) -> None:
    """Raise ``ValidationError`` listing every problem with a schedule config."""
    errors: list[str] = []
    if automation is None:
        errors.append("automation is required")
    if not frequency:
        errors.append("frequency is required")
    elif frequency not in _FREQUENCIES:
        errors.append(f"unknown frequency '{frequency}'")
    if frequency == Frequency.MINUTES.value:
        if interval is None:
            errors.append("interval is required for minute frequency")
        elif isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            errors.append("interval must be a positive integer")
    if errors:
        raise ValidationError(f"Invalid schedule: {', '.join(errors)}", errors)


def calculate_next_run(frequency: str, interval: int | None, now: float) -> float:
    """Epoch seconds of the next fire after *now*."""
    if frequency == Frequency.MINUTES.value:
        return now + (interval or 0) * _MINUTE
    try:
        return now + _PERIOD_SEC[frequency]
    except KeyError:
        raise ValidationError(f"unknown frequency '{frequency}'") from None
