"""
Transfer intents and settlements -- pure DTOs for value movement.

Responsibility:
    Describes what a command or the reactdrop sweeper wants to move
    (``TransferIntent``), how the engine splits it (``SplitPlan``), and what
    actually moved (``Settlement``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Consumed by TransferEngine (kernel services), the reactdrop scheduler
    (tip_batch), and the notification dispatcher (tip_services).

Invariants enforced:
    - A split never creates or destroys units:
      ``share * recipients + remainder == requested``.
    - The remainder always stays with the sender; only ``moved_total`` moves.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from tip_kernel.domain.amount import Amount


class TransferKind(str, Enum):
    """Why value moved. Stored on every ledger entry."""

    DIRECT = "direct"
    ROLE = "role"
    REACTDROP = "reactdrop"


@dataclass(frozen=True)
class TransferIntent:
    """
    Request to move ``amount`` from ``source`` split across ``destinations``.

    Ephemeral -- exists only while the engine validates and executes it.
    Validation (non-empty, unique, no self-tip, minimum) happens in the
    engine, not at construction, so callers get typed errors.
    """

    source: str
    destinations: tuple[str, ...]
    amount: Amount
    kind: TransferKind

    @classmethod
    def direct(cls, source: str, destination: str, amount: Amount) -> TransferIntent:
        return cls(source=source, destinations=(destination,), amount=amount, kind=TransferKind.DIRECT)


@dataclass(frozen=True)
class SplitPlan:
    """Result of splitting a requested total across N recipients."""

    requested: Amount
    recipients: int
    share: Amount
    remainder: Amount

    @property
    def moved_total(self) -> Amount:
        return self.share * self.recipients


def plan_split(requested: Amount, recipients: int) -> SplitPlan:
    """
    Split ``requested`` evenly; the floor share goes to each recipient.

    Preconditions:
        - recipients > 0

    Postconditions:
        - ``plan.moved_total + plan.remainder == requested``
        - ``plan.remainder < Amount(recipients)``

    Raises:
        ValueError: If recipients is not positive.
    """
    share, remainder = requested.split(recipients)
    return SplitPlan(
        requested=requested,
        recipients=recipients,
        share=share,
        remainder=remainder,
    )


@dataclass(frozen=True)
class Settlement:
    """
    Immutable record of a successfully executed transfer.

    ``requested_total`` is what the caller asked for; ``moved_total`` is what
    left the source account.  Callers display the adjusted figure.
    """

    event_id: UUID
    source: str
    destinations: tuple[str, ...]
    kind: TransferKind
    requested_total: Amount
    share: Amount
    moved_total: Amount
    remainder: Amount
    settled_at: datetime

    @property
    def recipient_count(self) -> int:
        return len(self.destinations)

    @property
    def was_adjusted(self) -> bool:
        return self.moved_total != self.requested_total
