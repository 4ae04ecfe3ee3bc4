"""
Read-side DTOs returned by services and selectors.

These are detached snapshots of persisted rows; nothing here touches
the ORM session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from tip_kernel.domain.amount import Amount
from tip_kernel.domain.intents import TransferKind
from tip_kernel.domain.notification import NotificationPreference


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of one custodial account."""

    account_id: str
    balance: Amount
    notification_preference: NotificationPreference | None
    blacklisted: bool


@dataclass(frozen=True)
class BalanceView:
    """Balance as shown to the account holder."""

    account_id: str
    balance: Amount
    held: Amount

    @property
    def available(self) -> Amount:
        return self.balance - self.held if self.held <= self.balance else Amount.zero()


@dataclass(frozen=True)
class LedgerEntryRecord:
    """One immutable source -> destination movement within a settlement event."""

    entry_id: UUID
    event_id: UUID
    line_no: int
    kind: TransferKind
    source: str
    destination: str
    amount: Amount
    recorded_at: datetime
