"""
Module: tip_kernel.selectors.ledger_selector
Responsibility: Read paths over the ledger, account balances, and reactdrops
    for operators, reports, and tests.
Architecture position: Kernel > Selectors.  Read-only.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, or_, select

from tip_kernel.domain.amount import Amount
from tip_kernel.domain.reactdrop import Reactdrop, ReactdropStatus
from tip_kernel.domain.records import LedgerEntryRecord
from tip_kernel.models.account import Account
from tip_kernel.models.ledger import LedgerEntry
from tip_kernel.models.reactdrop import ReactdropModel
from tip_kernel.selectors.base import BaseSelector


def _amount(value) -> Amount:
    if isinstance(value, Amount):
        return value
    return Amount(int(value or 0))


@dataclass(frozen=True)
class AccountFlow:
    """Ledger totals for one account (deposits excluded)."""

    account_id: str
    sent: Amount
    received: Amount
    entry_count: int


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries.

    Ordering:
        Entries are returned by ``recorded_at``, then ``event_id``, then
        ``line_no``, so all entries of one event stay together.
    """

    def _ordered(self, query):
        return query.order_by(
            LedgerEntry.recorded_at,
            LedgerEntry.event_id,
            LedgerEntry.line_no,
        )

    def entries_for_event(self, event_id: UUID) -> list[LedgerEntryRecord]:
        rows = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.event_id == event_id)
            .order_by(LedgerEntry.line_no)
        ).scalars()
        return [row.to_dto() for row in rows]

    def account_history(
        self,
        account_id: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[LedgerEntryRecord]:
        """Entries where the account is the source or the destination."""
        query = self._ordered(
            select(LedgerEntry).where(
                or_(
                    LedgerEntry.source == account_id,
                    LedgerEntry.destination == account_id,
                )
            )
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        return [row.to_dto() for row in self.session.execute(query).scalars()]

    def all_entries(self) -> list[LedgerEntryRecord]:
        rows = self.session.execute(self._ordered(select(LedgerEntry))).scalars()
        return [row.to_dto() for row in rows]

    def account_flow(self, account_id: str) -> AccountFlow:
        sent, sent_count = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.amount), 0),
                func.count(LedgerEntry.id),
            ).where(LedgerEntry.source == account_id)
        ).one()
        received, received_count = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.amount), 0),
                func.count(LedgerEntry.id),
            ).where(LedgerEntry.destination == account_id)
        ).one()
        return AccountFlow(
            account_id=account_id,
            sent=_amount(sent),
            received=_amount(received),
            entry_count=int(sent_count) + int(received_count),
        )

    def balance_of(self, account_id: str) -> Amount | None:
        """Stored balance, or None if the account was never created."""
        value = self.session.execute(
            select(Account.balance).where(Account.account_id == account_id)
        ).scalar_one_or_none()
        return value

    def custodial_total(self) -> Amount:
        """Sum of every account balance: what the wallet must cover."""
        value = self.session.execute(
            select(func.coalesce(func.sum(Account.balance), 0))
        ).scalar_one()
        return _amount(value)

    def account_count(self) -> int:
        return int(self.session.execute(select(func.count(Account.id))).scalar_one())

    # -----------------------------------------------------------------
    # Reactdrops
    # -----------------------------------------------------------------

    def get_reactdrop(self, reactdrop_id: UUID) -> Reactdrop | None:
        row = self.session.execute(
            select(ReactdropModel).where(ReactdropModel.id == reactdrop_id)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def reactdrops_by_status(
        self,
        status: ReactdropStatus,
        limit: int | None = None,
    ) -> list[Reactdrop]:
        query = (
            select(ReactdropModel)
            .where(ReactdropModel.status == ReactdropStatus(status).value)
            .order_by(ReactdropModel.deadline, ReactdropModel.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return [row.to_dto() for row in self.session.execute(query).scalars()]
