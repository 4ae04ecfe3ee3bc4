"""
Module: tip_kernel.models.account
Responsibility: ORM persistence for custodial accounts -- one balance per
    external user or role identifier.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - account_id is unique; an identifier maps to exactly one account.
    - balance is never negative (ck_account_balance_non_negative).  The
      constraint backs the conditional debit in BalanceStore; it is not the
      primary guard.

Failure modes:
    - IntegrityError on a duplicate account_id (lazy-create race, retried by
      BalanceStore).
    - IntegrityError if a raw write would drive balance below zero.
"""

from sqlalchemy import Boolean, CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tip_kernel.db.base import TimestampedBase
from tip_kernel.db.types import ACCOUNT_ID_LENGTH
from tip_kernel.domain.amount import Amount
from tip_kernel.domain.notification import NotificationPreference
from tip_kernel.domain.records import AccountInfo


class Account(TimestampedBase):
    """
    Custodial account for one external identifier.

    Accounts are created lazily with a zero balance the first time an
    identifier is read or credited.  Units only enter through deposits and
    only move between accounts through the transfer engine.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("account_id", name="uq_account_account_id"),
        CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),
    )

    # External identifier (user or role); opaque to the ledger
    account_id: Mapped[str] = mapped_column(String(ACCOUNT_ID_LENGTH), nullable=False)

    balance: Mapped[Amount] = mapped_column(
        nullable=False,
        default=Amount(0),
    )

    # NULL means the holder never chose; treated as channel_only
    notification_preference: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    blacklisted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account {self.account_id} balance={self.balance!r}>"

    def to_dto(self) -> AccountInfo:
        return AccountInfo(
            account_id=self.account_id,
            balance=self.balance,
            notification_preference=(
                NotificationPreference(self.notification_preference)
                if self.notification_preference is not None
                else None
            ),
            blacklisted=self.blacklisted,
        )
