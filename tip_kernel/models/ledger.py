"""
Module: tip_kernel.models.ledger
Responsibility: Append-only record of every movement of value between
    accounts.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One row per (source, destination) pair of a settlement; all rows of a
      settlement share one event_id and are numbered by line_no.
    - Rows are never updated or deleted (see db/immutability.py).
    - amount is never negative; zero is allowed when a split share floors
      to zero.

Audit relevance:
    Summing entries by destination minus entries by source, plus deposits,
    reproduces every account balance.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from tip_kernel.db.base import Base
from tip_kernel.db.types import ACCOUNT_ID_LENGTH
from tip_kernel.domain.amount import Amount
from tip_kernel.domain.intents import TransferKind
from tip_kernel.domain.records import LedgerEntryRecord


class LedgerEntry(Base):
    """
    One source -> destination movement inside a settlement event.

    ``recorded_at`` comes from the injected Clock, so replaying a scenario
    with a DeterministicClock yields identical rows apart from ids.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("event_id", "line_no", name="uq_ledger_event_line"),
        CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
        Index("idx_ledger_event", "event_id"),
        Index("idx_ledger_source", "source"),
        Index("idx_ledger_destination", "destination"),
    )

    event_id: Mapped[UUID] = mapped_column(nullable=False)

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    source: Mapped[str] = mapped_column(
        String(ACCOUNT_ID_LENGTH),
        ForeignKey("accounts.account_id"),
        nullable=False,
    )

    destination: Mapped[str] = mapped_column(
        String(ACCOUNT_ID_LENGTH),
        ForeignKey("accounts.account_id"),
        nullable=False,
    )

    amount: Mapped[Amount] = mapped_column(nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.source}->{self.destination} {self.amount!r}>"

    def to_dto(self) -> LedgerEntryRecord:
        return LedgerEntryRecord(
            entry_id=self.id,
            event_id=self.event_id,
            line_no=self.line_no,
            kind=TransferKind(self.kind),
            source=self.source,
            destination=self.destination,
            amount=self.amount,
            recorded_at=self.recorded_at,
        )
