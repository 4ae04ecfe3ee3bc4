"""
tip_batch.domain.types -- Pure frozen dataclasses for reactdrop settlement.

ZERO I/O.  Results of one sweep pass and of each reactdrop inside it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from tip_kernel.domain.intents import Settlement


class DurationUnit(str, Enum):
    """Units a reactdrop duration may be given in."""

    HOURS = "hours"
    MINUTES = "minutes"


class ReactdropOutcome(str, Enum):
    """What one sweep did with one due reactdrop."""

    SETTLED = "settled"
    EXPIRED = "expired"
    FAILED = "failed"
    SKIPPED = "skipped"  # Another sweeper claimed it first


@dataclass(frozen=True)
class ReactdropResult:
    """Outcome for a single reactdrop within a sweep."""

    reactdrop_id: UUID
    outcome: ReactdropOutcome
    settlement: Settlement | None = None
    reason: str | None = None


@dataclass(frozen=True)
class SweepResult:
    """Summary of one sweep pass."""

    started_at: datetime
    results: tuple[ReactdropResult, ...] = field(default_factory=tuple)
    interrupted_failed: int = 0

    def _count(self, outcome: ReactdropOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def settled(self) -> int:
        return self._count(ReactdropOutcome.SETTLED)

    @property
    def expired(self) -> int:
        return self._count(ReactdropOutcome.EXPIRED)

    @property
    def failed(self) -> int:
        return self._count(ReactdropOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ReactdropOutcome.SKIPPED)

    @property
    def processed(self) -> int:
        return len(self.results) - self.skipped
