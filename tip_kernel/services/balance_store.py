"""
BalanceStore -- durable per-account balances with race-free debits.

Responsibility:
    Owns every read and write of ``accounts.balance``.  Creates accounts
    lazily, applies deposits, and performs the single atomic
    debit-and-credit used by the transfer engine.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by TransferEngine, ReactdropRepository (holds), and operator
    tooling (deposits).

Invariants enforced:
    - No balance is ever negative.
    - A debit succeeds only if ``balance - held >= total``, where ``held`` is
      the sum of the account's pending and settling reactdrops.  A
      reactdrop's own settlement excludes that reactdrop from ``held``.
    - Check-then-act is race-free:
        1. Involved account rows are locked in sorted account_id order
           (``SELECT ... FOR UPDATE`` on PostgreSQL; a no-op on SQLite, where
           BEGIN IMMEDIATE already serializes writers).  Sorted order means
           two transfers over the same accounts can never deadlock.
        2. The debit is a conditional UPDATE whose WHERE clause re-evaluates
           the available balance, so a stale read can never overdraw.
    - Debit and credits happen in the caller's transaction (flush only).

Failure modes:
    - InsufficientFundsError: available balance below the requested total.
      Nothing has been written when it is raised.
    - ValidationError: malformed account identifier.
    - IntegrityError on the lazy-create race is absorbed (savepoint + retry).
"""

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from tip_kernel.db.types import ACCOUNT_ID_LENGTH
from tip_kernel.domain.amount import Amount, sum_amounts
from tip_kernel.domain.reactdrop import ReactdropStatus
from tip_kernel.domain.records import BalanceView
from tip_kernel.exceptions import InsufficientFundsError, ValidationError
from tip_kernel.logging_config import get_logger
from tip_kernel.models.account import Account
from tip_kernel.models.reactdrop import ReactdropModel
from tip_kernel.services.base import BaseService

logger = get_logger("services.balance_store")

# Reactdrops whose funds are committed but not yet moved
HOLDING_STATUSES = (ReactdropStatus.PENDING.value, ReactdropStatus.SETTLING.value)


def validate_account_id(account_id: str) -> str:
    """Reject empty or oversized identifiers before they reach the database."""
    if not isinstance(account_id, str) or not account_id.strip():
        raise ValidationError(f"Invalid account id: {account_id!r}")
    if len(account_id) > ACCOUNT_ID_LENGTH:
        raise ValidationError(
            f"Account id longer than {ACCOUNT_ID_LENGTH} characters: {account_id!r}"
        )
    return account_id


def _as_amount(value) -> Amount:
    # SUM() comes back as Decimal on PostgreSQL and int on SQLite
    if isinstance(value, Amount):
        return value
    return Amount(int(value or 0))


class BalanceStore(BaseService):
    """
    Balance reads and mutations for custodial accounts.

    Contract:
        Every method runs inside the caller's transaction and flushes; none
        commits.

    Guarantees:
        - ``get_balance`` never fails for an unknown id; it creates the
          account with a zero balance.
        - ``try_debit_and_credit`` either applies every write or none.
    """

    # -----------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------

    def _find(self, account_id: str, *, for_update: bool = False) -> Account | None:
        stmt = select(Account).where(Account.account_id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def ensure_account(self, account_id: str) -> Account:
        """
        Return the account, creating it with a zero balance if missing.

        Postconditions:
            - Exactly one row exists for ``account_id``.
        """
        validate_account_id(account_id)
        account = self._find(account_id)
        if account is not None:
            return account

        # Another transaction may create the same account concurrently.
        # Use a savepoint so a unique violation doesn't roll back other work.
        savepoint = self.session.begin_nested()
        try:
            account = Account(account_id=account_id, balance=Amount.zero())
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
            logger.debug("account_created", extra={"account_id": account_id})
            return account
        except IntegrityError:
            logger.debug("account_create_race_retry", extra={"account_id": account_id})
            savepoint.rollback()
            account = self._find(account_id)
            if account is None:
                raise
            return account

    def lock_accounts(self, account_ids: Iterable[str]) -> dict[str, Account]:
        """
        Ensure and lock the given accounts in sorted id order.

        Returns:
            Mapping of account_id to its locked, freshly loaded row.
        """
        ordered = sorted(set(account_ids))
        for account_id in ordered:
            self.ensure_account(account_id)

        locked: dict[str, Account] = {}
        for account_id in ordered:
            locked[account_id] = self._find(account_id, for_update=True)
        return locked

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_balance(self, account_id: str) -> Amount:
        """Current balance; zero (and a new account) for an unknown id."""
        return self.ensure_account(account_id).balance

    def _held_expression(self, account_id: str, exclude_reactdrop_id: UUID | None = None):
        query = select(func.coalesce(func.sum(ReactdropModel.amount), 0)).where(
            ReactdropModel.initiator == account_id,
            ReactdropModel.status.in_(HOLDING_STATUSES),
        )
        if exclude_reactdrop_id is not None:
            query = query.where(ReactdropModel.id != exclude_reactdrop_id)
        return query

    def held_amount(self, account_id: str, exclude_reactdrop_id: UUID | None = None) -> Amount:
        """Sum of the account's pending and settling reactdrops."""
        value = self.session.execute(
            self._held_expression(account_id, exclude_reactdrop_id)
        ).scalar_one()
        return _as_amount(value)

    def available_balance(
        self, account_id: str, exclude_reactdrop_id: UUID | None = None
    ) -> Amount:
        """Balance minus holds; never negative."""
        view = self.balance_view(account_id, exclude_reactdrop_id)
        return view.available

    def balance_view(
        self, account_id: str, exclude_reactdrop_id: UUID | None = None
    ) -> BalanceView:
        balance = self.get_balance(account_id)
        return BalanceView(
            account_id=account_id,
            balance=balance,
            held=self.held_amount(account_id, exclude_reactdrop_id),
        )

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def deposit(self, account_id: str, amount: Amount) -> Amount:
        """
        Credit units arriving from the wallet.

        Returns:
            The new balance.
        """
        if amount.is_zero:
            raise ValidationError("Deposit amount must be positive")
        self.lock_accounts([account_id])
        self.session.execute(
            update(Account)
            .where(Account.account_id == account_id)
            .values(balance=Account.balance + amount.sats)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        new_balance = self._find(account_id).balance
        logger.info(
            "deposit_applied",
            extra={
                "account_id": account_id,
                "amount": amount.sats,
                "balance": new_balance.sats,
            },
        )
        return new_balance

    def check_available(self, account_id: str, amount: Amount) -> Amount:
        """
        Lock the account and verify ``amount`` is available.

        Used before persisting a new hold (a pending reactdrop), so two
        creations cannot both pass against the same funds.

        Returns:
            The available balance at check time.

        Raises:
            InsufficientFundsError: If available < amount.
        """
        self.lock_accounts([account_id])
        available = self.available_balance(account_id)
        if available < amount:
            raise InsufficientFundsError(
                account_id=account_id,
                requested=amount.sats,
                available=available.sats,
            )
        return available

    def try_debit_and_credit(
        self,
        source: str,
        credits: Sequence[tuple[str, Amount]],
        exclude_reactdrop_id: UUID | None = None,
    ) -> Amount:
        """
        Debit ``source`` by the sum of ``credits`` and apply each credit.

        Preconditions:
            - ``credits`` is non-empty.
            - The caller owns an open transaction.

        ``exclude_reactdrop_id`` is set when settling a reactdrop, so its own
        hold does not block the debit that consumes it.

        Postconditions:
            - On success, source lost exactly the credited total and every
              destination gained its amount.
            - On InsufficientFundsError, no row was modified.

        Returns:
            The debited total.

        Raises:
            InsufficientFundsError: If ``balance - held < total``.
        """
        if not credits:
            raise ValidationError("No credits given")

        per_destination: dict[str, Amount] = {}
        for destination, amount in credits:
            validate_account_id(destination)
            per_destination[destination] = per_destination.get(destination, Amount.zero()) + amount
        total = sum_amounts(per_destination.values())

        self.lock_accounts([source, *per_destination])

        held = self._held_expression(source, exclude_reactdrop_id).scalar_subquery()
        result = self.session.execute(
            update(Account)
            .where(
                Account.account_id == source,
                Account.balance - held >= total.sats,
            )
            .values(balance=Account.balance - total.sats)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = self.available_balance(source, exclude_reactdrop_id)
            logger.info(
                "debit_rejected_insufficient_funds",
                extra={
                    "account_id": source,
                    "requested": total.sats,
                    "available": available.sats,
                },
            )
            raise InsufficientFundsError(
                account_id=source,
                requested=total.sats,
                available=available.sats,
            )

        for destination, amount in sorted(per_destination.items()):
            if amount.is_zero:
                continue
            self.session.execute(
                update(Account)
                .where(Account.account_id == destination)
                .values(balance=Account.balance + amount.sats)
                .execution_options(synchronize_session=False)
            )

        self.session.flush()
        logger.debug(
            "debit_and_credit_applied",
            extra={
                "account_id": source,
                "total": total.sats,
                "destinations": len(per_destination),
            },
        )
        return total
