"""
TransferEngine -- validates, splits, and atomically executes transfers.

Responsibility:
    Turns a TransferIntent into balance mutations plus ledger entries.
    The single place where value moves between accounts, shared by direct
    tips, role tips, and reactdrop settlement.

Architecture position:
    Kernel > Services -- imperative shell.
    Delegates the balance check-and-mutate to BalanceStore; appends
    LedgerEntry rows itself.

Invariants enforced:
    - Destinations are non-empty and unique; the source is never a
      destination.
    - Only ``share * n`` moves; the remainder never leaves the sender.
    - One BalanceStore call per transfer, then exactly one ledger entry per
      destination, all sharing one fresh event_id, in the caller's
      transaction.  A failure at any step leaves no trace once the caller
      rolls back.

Failure modes:
    - InvalidSplitError: empty, duplicate, or self-including destinations.
    - BelowMinimumError: requested amount under the configured minimum.
    - InsufficientFundsError: from BalanceStore; nothing written.

Non-goals:
    - No deduplication.  Callers submit each logical intent at most once;
      the reactdrop path guarantees this with its claim step.
"""

from uuid import UUID, uuid4

from tip_kernel.domain.amount import Amount
from tip_kernel.domain.clock import Clock, SystemClock
from tip_kernel.domain.intents import Settlement, TransferIntent, plan_split
from tip_kernel.exceptions import BelowMinimumError, InvalidSplitError
from tip_kernel.logging_config import LogContext, get_logger
from tip_kernel.models.ledger import LedgerEntry
from tip_kernel.services.balance_store import BalanceStore
from tip_kernel.services.base import BaseService

logger = get_logger("services.transfer_engine")

DEFAULT_MINIMUM_TIP = Amount(1)


def validate_intent(intent: TransferIntent, minimum: Amount = DEFAULT_MINIMUM_TIP) -> None:
    """
    Check an intent before anything is locked or written.

    Raises:
        InvalidSplitError: On empty, duplicate, or self-including destinations.
        BelowMinimumError: If ``intent.amount < minimum``.
    """
    if not intent.destinations:
        raise InvalidSplitError("no destinations")
    if len(set(intent.destinations)) != len(intent.destinations):
        raise InvalidSplitError("duplicate destinations")
    if intent.source in intent.destinations:
        raise InvalidSplitError("source cannot be a destination")
    if intent.amount < minimum:
        raise BelowMinimumError(amount=intent.amount.sats, minimum=minimum.sats)


class TransferEngine(BaseService):
    """
    Executes transfer intents.

    Contract:
        ``execute_transfer`` flushes and returns a Settlement; the caller
        commits.  If the caller rolls back, neither balances nor ledger
        entries persist.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        minimum_tip: Amount = DEFAULT_MINIMUM_TIP,
        balance_store: BalanceStore | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._minimum_tip = minimum_tip
        self._balances = balance_store or BalanceStore(session)

    @property
    def minimum_tip(self) -> Amount:
        return self._minimum_tip

    def execute_transfer(
        self,
        intent: TransferIntent,
        exclude_reactdrop_id: UUID | None = None,
    ) -> Settlement:
        """
        Validate, split, and apply ``intent``.

        ``exclude_reactdrop_id`` names the reactdrop being settled; its hold
        is released for this debit only.

        Postconditions:
            - ``settlement.moved_total + settlement.remainder == intent.amount``
            - One ledger entry per destination, amount ``settlement.share``.

        Raises:
            InvalidSplitError, BelowMinimumError, InsufficientFundsError
        """
        validate_intent(intent, self._minimum_tip)

        plan = plan_split(intent.amount, len(intent.destinations))
        event_id = uuid4()
        settled_at = self._clock.now()

        with LogContext.bind(event_id=str(event_id), account_id=intent.source):
            self._balances.try_debit_and_credit(
                intent.source,
                [(destination, plan.share) for destination in intent.destinations],
                exclude_reactdrop_id=exclude_reactdrop_id,
            )

            for line_no, destination in enumerate(intent.destinations):
                self.session.add(
                    LedgerEntry(
                        event_id=event_id,
                        line_no=line_no,
                        kind=intent.kind.value,
                        source=intent.source,
                        destination=destination,
                        amount=plan.share,
                        recorded_at=settled_at,
                    )
                )
            self.session.flush()

            settlement = Settlement(
                event_id=event_id,
                source=intent.source,
                destinations=tuple(intent.destinations),
                kind=intent.kind,
                requested_total=intent.amount,
                share=plan.share,
                moved_total=plan.moved_total,
                remainder=plan.remainder,
                settled_at=settled_at,
            )

            logger.info(
                "transfer_settled",
                extra={
                    "kind": intent.kind.value,
                    "recipients": settlement.recipient_count,
                    "requested_total": intent.amount.sats,
                    "moved_total": settlement.moved_total.sats,
                    "share": settlement.share.sats,
                    "remainder": settlement.remainder.sats,
                },
            )

        return settlement
