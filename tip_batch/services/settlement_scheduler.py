"""
SettlementScheduler -- background sweep that settles due reactdrops.

Contract:
    - ``sweep()`` runs one pass: fail interrupted claims, then claim, resolve,
      and settle every due reactdrop.
    - ``start()`` / ``stop()`` run sweeps on a fixed cadence as an asyncio
      task, independent of any command or messaging session.

Architecture: tip_batch/services.  Database work runs on the default
    executor through tip_kernel.db.units; messaging calls are awaited
    directly.

Per reactdrop:

    claim (tx 1)  pending -> settling, committed before any slow work.
                  Losing a claim race means another sweeper owns it: skip.
    resolve       participants from the reaction, deduplicated, initiator
                  removed.  Lookup failure or timeout -> failed.
    settle (tx 2) zero participants -> expired.  Otherwise one transfer
                  (kind reactdrop) and settling -> settled together.
                  A validation failure rolls back, then -> failed.
    notify        after commit, best-effort.

Invariants enforced:
    - At most one settlement per reactdrop: only the claim winner settles,
      and the settled transition is conditional on settling.
    - The reactdrop keeps holding its amount while settling; only its own
      transfer is exempt from that hold.
    - All timestamps from the injected Clock.
    - A failed settlement is logged at ERROR as reactdrop_settlement_failed
      and never retried automatically.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session, sessionmaker

from tip_kernel.db.units import run_in_executor
from tip_kernel.domain.amount import Amount
from tip_kernel.domain.clock import Clock, SystemClock
from tip_kernel.domain.intents import Settlement, TransferIntent, TransferKind
from tip_kernel.domain.reactdrop import (
    FAILURE_PARTICIPANT_LOOKUP,
    FAILURE_PERSISTENCE,
    Reactdrop,
)
from tip_kernel.exceptions import (
    AlreadySettledError,
    PersistenceFailureError,
    ValidationError,
)
from tip_kernel.logging_config import LogContext, get_logger
from tip_kernel.services.transfer_engine import DEFAULT_MINIMUM_TIP, TransferEngine

from tip_batch.domain.types import ReactdropOutcome, ReactdropResult, SweepResult
from tip_batch.services.reactdrop_repository import ReactdropRepository

if TYPE_CHECKING:
    from tip_services.notification_dispatcher import NotificationDispatcher
    from tip_services.ports import MessagingPlatform

logger = get_logger("batch.settlement_scheduler")


def eligible_participants(participants: list[str], initiator: str) -> tuple[str, ...]:
    """Deduplicate (first occurrence wins) and drop the initiator."""
    return tuple(p for p in dict.fromkeys(participants) if p != initiator)


class SettlementScheduler:
    """In-process sweeper for due reactdrops.

    Non-goals:
        - NOT a distributed scheduler; several instances are safe because
          claims are conditional, not because work is partitioned.
        - Does NOT retry failed reactdrops.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        messaging: MessagingPlatform,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        minimum_tip: Amount = DEFAULT_MINIMUM_TIP,
        sweep_interval_seconds: float = 30.0,
        batch_size: int = 50,
        stalled_after_seconds: int = 900,
        participant_lookup_timeout_seconds: float = 30.0,
        engine_factory: Callable[..., TransferEngine] = TransferEngine,
    ):
        self._session_factory = session_factory
        self._messaging = messaging
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._minimum_tip = minimum_tip
        self._interval = sweep_interval_seconds
        self._batch_size = batch_size
        self._stalled_after = stalled_after_seconds
        self._lookup_timeout = participant_lookup_timeout_seconds
        self._engine_factory = engine_factory
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def sweep(self) -> SweepResult:
        """One pass over interrupted and due reactdrops.

        Raises:
            PersistenceFailureError: If the due list cannot be read.
        """
        started_at = self._clock.now()

        interrupted = await run_in_executor(
            self._session_factory,
            "fail_stalled_reactdrops",
            lambda s: ReactdropRepository(s).fail_stalled(started_at, self._stalled_after),
        )

        due = await run_in_executor(
            self._session_factory,
            "find_due_reactdrops",
            lambda s: ReactdropRepository(s).find_due(started_at, self._batch_size),
        )

        results: list[ReactdropResult] = []
        for reactdrop in due:
            if self._stop_event is not None and self._stop_event.is_set():
                break
            with LogContext.bind(reactdrop_id=str(reactdrop.reactdrop_id)):
                results.append(await self.settle_one(reactdrop))

        result = SweepResult(
            started_at=started_at,
            results=tuple(results),
            interrupted_failed=len(interrupted),
        )
        if due or interrupted:
            logger.info(
                "reactdrop_sweep_completed",
                extra={
                    "due": len(due),
                    "settled": result.settled,
                    "expired": result.expired,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "interrupted_failed": result.interrupted_failed,
                },
            )
        return result

    async def settle_one(self, reactdrop: Reactdrop) -> ReactdropResult:
        """Claim and settle a single due reactdrop."""
        reactdrop_id = reactdrop.reactdrop_id

        try:
            claimed = await run_in_executor(
                self._session_factory,
                "claim_reactdrop",
                lambda s: ReactdropRepository(s).claim(reactdrop_id, self._clock.now()),
            )
        except AlreadySettledError:
            return ReactdropResult(reactdrop_id, ReactdropOutcome.SKIPPED)

        try:
            reacted = await asyncio.wait_for(
                self._messaging.collect_reaction_participants(
                    claimed.channel_ref,
                    claimed.message_ref,
                    claimed.trigger_token,
                ),
                timeout=self._lookup_timeout,
            )
        except Exception as e:
            return await self._fail(claimed, FAILURE_PARTICIPANT_LOOKUP, e)

        participants = eligible_participants(list(reacted), claimed.initiator)

        if not participants:
            try:
                await run_in_executor(
                    self._session_factory,
                    "expire_reactdrop",
                    lambda s: ReactdropRepository(s).mark_expired(reactdrop_id, self._clock.now()),
                )
            except AlreadySettledError as e:
                return self._lost_claim(reactdrop_id, e)
            logger.info("reactdrop_expired", extra={"reason": "no_participants"})
            return ReactdropResult(reactdrop_id, ReactdropOutcome.EXPIRED)

        intent = TransferIntent(
            source=claimed.initiator,
            destinations=participants,
            amount=claimed.amount,
            kind=TransferKind.REACTDROP,
        )

        def _settle(session: Session) -> Settlement:
            engine = self._engine_factory(
                session, clock=self._clock, minimum_tip=self._minimum_tip
            )
            settlement = engine.execute_transfer(intent, exclude_reactdrop_id=reactdrop_id)
            ReactdropRepository(session).mark_settled(
                reactdrop_id, settlement, settlement.settled_at
            )
            return settlement

        try:
            settlement = await run_in_executor(
                self._session_factory, "settle_reactdrop", _settle
            )
        except AlreadySettledError as e:
            return self._lost_claim(reactdrop_id, e)
        except ValidationError as e:
            return await self._fail(
                claimed, e.code.lower(), e, participant_count=len(participants)
            )
        except PersistenceFailureError as e:
            return await self._fail(
                claimed, FAILURE_PERSISTENCE, e, participant_count=len(participants)
            )

        logger.info(
            "reactdrop_settled",
            extra={
                "event_id": str(settlement.event_id),
                "participants": settlement.recipient_count,
                "moved_total": settlement.moved_total.sats,
            },
        )

        if self._dispatcher is not None:
            await self._dispatcher.notify_settlement(settlement, claimed.channel_ref)

        return ReactdropResult(reactdrop_id, ReactdropOutcome.SETTLED, settlement=settlement)

    def start(self) -> None:
        """Start sweeping on the running loop."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="reactdrop-sweeper"
        )
        logger.info("scheduler_started", extra={"sweep_interval": self._interval})

    async def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                self._task.cancel()
                logger.warning("scheduler_stop_timeout", extra={"timeout": timeout})
            self._task = None
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.exception("scheduler_sweep_failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    def _lost_claim(self, reactdrop_id, error: AlreadySettledError) -> ReactdropResult:
        # The stalled-claim pass finished the row first; the transfer rolled back
        logger.warning(
            "reactdrop_claim_lost",
            extra={"current_status": error.status},
        )
        return ReactdropResult(reactdrop_id, ReactdropOutcome.SKIPPED)

    async def _fail(
        self,
        reactdrop: Reactdrop,
        reason: str,
        error: Exception,
        participant_count: int | None = None,
    ) -> ReactdropResult:
        reactdrop_id = reactdrop.reactdrop_id
        logger.error(
            "reactdrop_settlement_failed",
            extra={
                "reason": reason,
                "initiator": reactdrop.initiator,
                "amount": reactdrop.amount.sats,
                "error": f"{type(error).__name__}: {error}",
            },
        )
        try:
            await run_in_executor(
                self._session_factory,
                "fail_reactdrop",
                lambda s: ReactdropRepository(s).mark_failed(
                    reactdrop_id,
                    reason,
                    self._clock.now(),
                    participant_count=participant_count,
                ),
            )
        except PersistenceFailureError:
            # Row stays settling; the stalled-claim pass fails it later
            logger.exception("reactdrop_fail_not_recorded")
        except AlreadySettledError as e:
            logger.warning(
                "reactdrop_fail_not_recorded",
                extra={"current_status": e.status},
            )
        return ReactdropResult(reactdrop_id, ReactdropOutcome.FAILED, reason=reason)
