"""
Pure deadline evaluation for reactdrops.

Contract:
    ``compute_deadline()`` is PURE -- no I/O, all timestamps come from the
    caller.

Architecture: tip_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from tip_kernel.exceptions import InvalidReactdropDurationError

from tip_batch.domain.types import DurationUnit

DEFAULT_MAX_DURATION_HOURS = 24 * 7

_UNIT_ALIASES = {
    "h": DurationUnit.HOURS,
    "hr": DurationUnit.HOURS,
    "hour": DurationUnit.HOURS,
    "hours": DurationUnit.HOURS,
    "m": DurationUnit.MINUTES,
    "min": DurationUnit.MINUTES,
    "minute": DurationUnit.MINUTES,
    "minutes": DurationUnit.MINUTES,
}


def parse_unit(unit: DurationUnit | str) -> DurationUnit:
    """Accept a DurationUnit or a common spelling of one.

    Raises:
        ValueError: If the unit is not hours or minutes.
    """
    if isinstance(unit, DurationUnit):
        return unit
    try:
        return _UNIT_ALIASES[str(unit).strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown duration unit: {unit!r}") from None


def duration_delta(duration: int, unit: DurationUnit | str) -> timedelta:
    match parse_unit(unit):
        case DurationUnit.HOURS:
            return timedelta(hours=duration)
        case DurationUnit.MINUTES:
            return timedelta(minutes=duration)


def compute_deadline(
    opened_at: datetime,
    duration: int,
    unit: DurationUnit | str,
    max_duration_hours: int = DEFAULT_MAX_DURATION_HOURS,
) -> datetime:
    """Deadline for a reactdrop opened at ``opened_at``.

    Raises:
        InvalidReactdropDurationError: Duration not a positive int, unit
            unknown, or longer than ``max_duration_hours``.
    """
    unit_label = unit.value if isinstance(unit, DurationUnit) else str(unit)
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise InvalidReactdropDurationError(duration, unit_label, "duration must be an integer")
    if duration < 1:
        raise InvalidReactdropDurationError(duration, unit_label, "duration must be at least 1")
    try:
        delta = duration_delta(duration, unit)
    except ValueError as e:
        raise InvalidReactdropDurationError(duration, unit_label, str(e)) from e
    if delta > timedelta(hours=max_duration_hours):
        raise InvalidReactdropDurationError(
            duration,
            unit_label,
            f"longer than the maximum of {max_duration_hours} hours",
        )
    return opened_at + delta

