"""
ReactdropRepository -- persistence and status transitions for reactdrops.

Contract:
    Every transition is a conditional UPDATE on the expected current
    status.  The database decides which of two concurrent callers wins; the
    loser sees ``rowcount == 0`` and gets AlreadySettledError.

Architecture: tip_batch/services.  Imports from tip_kernel only.

Invariants enforced:
    - A reactdrop is created only if the initiator's available balance
      (balance minus existing holds) covers it, checked under the same
      account lock BalanceStore uses for debits.
    - pending -> settling happens at most once per reactdrop.
    - settling -> settled | expired | failed happens at most once.
    - Nothing ever moves back to pending.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update

from tip_kernel.domain.amount import Amount
from tip_kernel.domain.intents import Settlement
from tip_kernel.domain.reactdrop import (
    FAILURE_INTERRUPTED,
    Reactdrop,
    ReactdropStatus,
)
from tip_kernel.exceptions import (
    AlreadySettledError,
    ReactdropNotFoundError,
    ValidationError,
)
from tip_kernel.logging_config import get_logger
from tip_kernel.models.reactdrop import ReactdropModel
from tip_kernel.services.balance_store import BalanceStore
from tip_kernel.services.base import BaseService

logger = get_logger("batch.reactdrop_repository")


class ReactdropRepository(BaseService):
    """Reactdrop rows.  Flushes only; the caller commits."""

    def __init__(self, session, balance_store: BalanceStore | None = None):
        super().__init__(session)
        self._balances = balance_store or BalanceStore(session)

    # -----------------------------------------------------------------
    # Creation and reads
    # -----------------------------------------------------------------

    def create(
        self,
        *,
        initiator: str,
        trigger_token: str,
        amount: Amount,
        channel_ref: str,
        message_ref: str,
        opened_at: datetime,
        deadline: datetime,
    ) -> Reactdrop:
        """
        Persist a pending reactdrop, holding ``amount`` on the initiator.

        Raises:
            InsufficientFundsError: Available balance does not cover amount.
            ValidationError: Zero amount, or deadline not after opened_at.
        """
        if amount.is_zero:
            raise ValidationError("Reactdrop amount must be positive")
        if deadline <= opened_at:
            raise ValidationError("Reactdrop deadline must be after its start")

        self._balances.check_available(initiator, amount)

        model = ReactdropModel(
            initiator=initiator,
            trigger_token=trigger_token,
            amount=amount,
            channel_ref=channel_ref,
            message_ref=message_ref,
            status=ReactdropStatus.PENDING.value,
            opened_at=opened_at,
            deadline=deadline,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "reactdrop_created",
            extra={
                "reactdrop_id": str(model.id),
                "initiator": initiator,
                "amount": amount.sats,
                "deadline": deadline,
            },
        )
        return model.to_dto()

    def _load(self, reactdrop_id: UUID) -> ReactdropModel | None:
        return self.session.execute(
            select(ReactdropModel)
            .where(ReactdropModel.id == reactdrop_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, reactdrop_id: UUID) -> Reactdrop:
        """
        Raises:
            ReactdropNotFoundError: Unknown id.
        """
        model = self._load(reactdrop_id)
        if model is None:
            raise ReactdropNotFoundError(str(reactdrop_id))
        return model.to_dto()

    def find_due(self, as_of: datetime, limit: int | None = None) -> list[Reactdrop]:
        """Pending reactdrops whose deadline is at or before ``as_of``."""
        query = (
            select(ReactdropModel)
            .where(
                ReactdropModel.status == ReactdropStatus.PENDING.value,
                ReactdropModel.deadline <= as_of,
            )
            .order_by(ReactdropModel.deadline, ReactdropModel.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return [m.to_dto() for m in self.session.execute(query).scalars()]

    def find_stalled(self, as_of: datetime, stalled_after_seconds: int) -> list[Reactdrop]:
        """Reactdrops claimed at least ``stalled_after_seconds`` ago and still settling."""
        cutoff = as_of - timedelta(seconds=stalled_after_seconds)
        query = (
            select(ReactdropModel)
            .where(
                ReactdropModel.status == ReactdropStatus.SETTLING.value,
                ReactdropModel.claimed_at <= cutoff,
            )
            .order_by(ReactdropModel.claimed_at, ReactdropModel.id)
        )
        return [m.to_dto() for m in self.session.execute(query).scalars()]

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    def _transition(
        self,
        reactdrop_id: UUID,
        expected: ReactdropStatus,
        **values,
    ) -> Reactdrop:
        result = self.session.execute(
            update(ReactdropModel)
            .where(
                ReactdropModel.id == reactdrop_id,
                ReactdropModel.status == expected.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        current = self._load(reactdrop_id)
        if result.rowcount != 1:
            if current is None:
                raise ReactdropNotFoundError(str(reactdrop_id))
            raise AlreadySettledError(str(reactdrop_id), current.status)
        self.session.flush()
        return current.to_dto()

    def claim(self, reactdrop_id: UUID, claimed_at: datetime) -> Reactdrop:
        """
        Move pending -> settling.  The winner of a concurrent claim gets the
        row back; every other caller gets AlreadySettledError.

        Raises:
            AlreadySettledError: The reactdrop is no longer pending.
            ReactdropNotFoundError: Unknown id.
        """
        reactdrop = self._transition(
            reactdrop_id,
            ReactdropStatus.PENDING,
            status=ReactdropStatus.SETTLING.value,
            claimed_at=claimed_at,
        )
        logger.debug("reactdrop_claimed", extra={"reactdrop_id": str(reactdrop_id)})
        return reactdrop

    def mark_settled(
        self,
        reactdrop_id: UUID,
        settlement: Settlement,
        finished_at: datetime,
    ) -> Reactdrop:
        return self._transition(
            reactdrop_id,
            ReactdropStatus.SETTLING,
            status=ReactdropStatus.SETTLED.value,
            finished_at=finished_at,
            event_id=settlement.event_id,
            participant_count=settlement.recipient_count,
            moved_total=settlement.moved_total,
        )

    def mark_expired(self, reactdrop_id: UUID, finished_at: datetime) -> Reactdrop:
        return self._transition(
            reactdrop_id,
            ReactdropStatus.SETTLING,
            status=ReactdropStatus.EXPIRED.value,
            finished_at=finished_at,
            participant_count=0,
            moved_total=Amount.zero(),
        )

    def mark_failed(
        self,
        reactdrop_id: UUID,
        reason: str,
        finished_at: datetime,
        participant_count: int | None = None,
    ) -> Reactdrop:
        return self._transition(
            reactdrop_id,
            ReactdropStatus.SETTLING,
            status=ReactdropStatus.FAILED.value,
            finished_at=finished_at,
            failure_reason=reason[:200],
            participant_count=participant_count,
        )

    def fail_stalled(self, as_of: datetime, stalled_after_seconds: int) -> list[Reactdrop]:
        """
        Fail reactdrops whose settlement was interrupted.

        A row still in settling proves its transfer never committed, since
        the transfer and the settled status commit together.
        """
        failed: list[Reactdrop] = []
        for reactdrop in self.find_stalled(as_of, stalled_after_seconds):
            try:
                failed.append(
                    self.mark_failed(reactdrop.reactdrop_id, FAILURE_INTERRUPTED, as_of)
                )
            except AlreadySettledError:
                continue
            logger.error(
                "reactdrop_settlement_failed",
                extra={
                    "reactdrop_id": str(reactdrop.reactdrop_id),
                    "reason": FAILURE_INTERRUPTED,
                    "initiator": reactdrop.initiator,
                    "amount": reactdrop.amount.sats,
                },
            )
        return failed
