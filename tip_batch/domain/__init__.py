"""
tip_batch.domain -- Pure types and deadline evaluation for reactdrops.

ZERO I/O.
"""

from tip_batch.domain.schedule import (
    DEFAULT_MAX_DURATION_HOURS,
    compute_deadline,
    duration_delta,
    parse_unit,
)
from tip_batch.domain.types import (
    DurationUnit,
    ReactdropOutcome,
    ReactdropResult,
    SweepResult,
)

__all__ = [
    "DEFAULT_MAX_DURATION_HOURS",
    "DurationUnit",
    "ReactdropOutcome",
    "ReactdropResult",
    "SweepResult",
    "compute_deadline",
    "duration_delta",
    "parse_unit",
]
