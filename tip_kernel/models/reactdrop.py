"""
Module: tip_kernel.models.reactdrop
Responsibility: Durable record of a reactdrop from creation to its terminal
    status.  Pending rows double as balance holds on the initiator.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.
    The lifecycle is driven by tip_batch; the kernel only reads pending rows
    as holds.

Invariants enforced:
    - The row carries everything needed to settle after a restart: no
      reference to any live messaging session is required.
    - status transitions are conditional UPDATEs in ReactdropRepository;
      terminal rows are frozen by db/immutability.py.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tip_kernel.db.base import TimestampedBase
from tip_kernel.db.types import (
    ACCOUNT_ID_LENGTH,
    EXTERNAL_REF_LENGTH,
    REASON_LENGTH,
    TRIGGER_TOKEN_LENGTH,
)
from tip_kernel.domain.amount import Amount
from tip_kernel.domain.reactdrop import Reactdrop, ReactdropStatus


class ReactdropModel(TimestampedBase):
    """Persistent reactdrop."""

    __tablename__ = "reactdrops"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_reactdrop_amount_positive"),
        Index("idx_reactdrop_status_deadline", "status", "deadline"),
        Index("idx_reactdrop_initiator_status", "initiator", "status"),
    )

    initiator: Mapped[str] = mapped_column(String(ACCOUNT_ID_LENGTH), nullable=False)
    trigger_token: Mapped[str] = mapped_column(String(TRIGGER_TOKEN_LENGTH), nullable=False)
    amount: Mapped[Amount] = mapped_column(nullable=False)

    channel_ref: Mapped[str] = mapped_column(String(EXTERNAL_REF_LENGTH), nullable=False)
    message_ref: Mapped[str] = mapped_column(String(EXTERNAL_REF_LENGTH), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReactdropStatus.PENDING.value,
    )

    # Ledger times, all from the injected Clock
    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    deadline: Mapped[datetime] = mapped_column(nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Settlement metadata
    event_id: Mapped[UUID | None] = mapped_column(nullable=True)
    participant_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    moved_total: Mapped[Amount | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(REASON_LENGTH), nullable=True)

    def __repr__(self) -> str:
        return f"<Reactdrop {self.id} {self.status} {self.amount!r}>"

    def to_dto(self) -> Reactdrop:
        return Reactdrop(
            reactdrop_id=self.id,
            initiator=self.initiator,
            trigger_token=self.trigger_token,
            amount=self.amount,
            channel_ref=self.channel_ref,
            message_ref=self.message_ref,
            deadline=self.deadline,
            status=ReactdropStatus(self.status),
            opened_at=self.opened_at,
            claimed_at=self.claimed_at,
            finished_at=self.finished_at,
            event_id=self.event_id,
            participant_count=self.participant_count,
            moved_total=self.moved_total,
            failure_reason=self.failure_reason,
        )
