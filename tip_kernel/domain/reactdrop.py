"""
Reactdrop -- a time-delayed group giveaway.

Responsibility:
    Status lifecycle and the immutable snapshot of a persisted reactdrop.
    While ``pending`` or ``settling`` a reactdrop holds its amount against
    the initiator's balance; the hold ends at a terminal status.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    The balance store reads pending and settling reactdrops as holds;
    tip_batch drives the lifecycle.

Lifecycle:
    pending --claim--> settling --> settled | expired | failed

    A reactdrop never returns to pending, and a terminal status is final.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from tip_kernel.domain.amount import Amount


class ReactdropStatus(str, Enum):
    """Reactdrop lifecycle status."""

    PENDING = "pending"  # Persisted, waiting for its deadline; holds funds
    SETTLING = "settling"  # Claimed by exactly one sweeper
    SETTLED = "settled"  # Transfer committed
    EXPIRED = "expired"  # Deadline passed with no eligible participants
    FAILED = "failed"  # Could not settle; needs operator attention

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ReactdropStatus.SETTLED, ReactdropStatus.EXPIRED, ReactdropStatus.FAILED}
)

# Failure reasons recorded on the row
FAILURE_INSUFFICIENT_FUNDS = "insufficient_funds"
FAILURE_PARTICIPANT_LOOKUP = "participant_lookup_failed"
FAILURE_INTERRUPTED = "settlement_interrupted"
FAILURE_PERSISTENCE = "persistence_failure"


@dataclass(frozen=True)
class Reactdrop:
    """Immutable snapshot of a persisted reactdrop."""

    reactdrop_id: UUID
    initiator: str
    trigger_token: str
    amount: Amount
    channel_ref: str
    message_ref: str
    deadline: datetime
    status: ReactdropStatus
    opened_at: datetime
    claimed_at: datetime | None = None
    finished_at: datetime | None = None
    event_id: UUID | None = None
    participant_count: int | None = None
    moved_total: Amount | None = None
    failure_reason: str | None = None

    def is_due(self, as_of: datetime) -> bool:
        return self.status == ReactdropStatus.PENDING and self.deadline <= as_of
