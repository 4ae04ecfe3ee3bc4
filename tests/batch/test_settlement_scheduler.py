"""
Tests for SettlementScheduler (``tip_batch.services.settlement_scheduler``).

Behaviour tested:
- A due reactdrop of 12 with 4 participants pays each 3, debits the
  initiator 12 at settlement time, and settles exactly once.
- A due reactdrop with no participants expires with no ledger entries.
- The amount stays held while the sweeper resolves participants.
- Failure paths: funds gone, participant lookup failure or timeout,
  persistence failure, a claim lost to the stalled-claim pass.
- Interrupted claims after a restart, concurrent sweepers, and the
  background loop.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from tip_batch.domain.types import ReactdropOutcome
from tip_batch.services.reactdrop_repository import ReactdropRepository
from tip_batch.services.settlement_scheduler import (
    SettlementScheduler,
    eligible_participants,
)
from tip_kernel.domain.amount import Amount
from tip_kernel.domain.intents import TransferIntent, TransferKind
from tip_kernel.domain.reactdrop import (
    FAILURE_INSUFFICIENT_FUNDS,
    FAILURE_INTERRUPTED,
    FAILURE_PARTICIPANT_LOOKUP,
    FAILURE_PERSISTENCE,
    ReactdropStatus,
)
from tip_kernel.exceptions import InsufficientFundsError
from tip_kernel.models.account import Account
from tip_kernel.models.ledger import LedgerEntry
from tip_kernel.selectors.ledger_selector import LedgerSelector
from tip_kernel.services.transfer_engine import TransferEngine
from tip_services.notification_dispatcher import NotificationDispatcher

TOKEN = ":tada:"


@pytest.fixture
def create_reactdrop(session_factory, deterministic_clock):
    def _create(initiator="alice", sats=12, minutes=5, message_ref="msg-1"):
        now = deterministic_clock.now()
        with session_factory() as s:
            reactdrop = ReactdropRepository(s).create(
                initiator=initiator,
                trigger_token=TOKEN,
                amount=Amount(sats),
                channel_ref="chan-1",
                message_ref=message_ref,
                opened_at=now,
                deadline=now + timedelta(minutes=minutes),
            )
            s.commit()
        return reactdrop

    return _create


@pytest.fixture
def scheduler(session_factory, messaging, deterministic_clock):
    dispatcher = NotificationDispatcher(messaging, session_factory=session_factory)
    return SettlementScheduler(
        session_factory,
        messaging,
        dispatcher=dispatcher,
        clock=deterministic_clock,
        sweep_interval_seconds=0.05,
        stalled_after_seconds=900,
    )


def _reactdrop(session_factory, reactdrop_id):
    with session_factory() as s:
        return LedgerSelector(s).get_reactdrop(reactdrop_id)


def _entries(session_factory) -> int:
    with session_factory() as s:
        return s.execute(select(func.count(LedgerEntry.id))).scalar_one()


class TestEligibleParticipants:
    def test_dedup_and_initiator_removed(self):
        assert eligible_participants(["b", "alice", "c", "b"], "alice") == ("b", "c")

    def test_only_initiator(self):
        assert eligible_participants(["alice"], "alice") == ()


class TestSettlement:
    def test_splits_evenly_and_settles_once(
        self, scheduler, messaging, create_reactdrop, fund, balance_of,
        session_factory, deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2", "alice", "p3", "p4", "p1"]
        deterministic_clock.advance(minutes=6)

        result = asyncio.run(scheduler.sweep())

        assert result.settled == 1
        settlement = result.results[0].settlement
        assert settlement.kind == TransferKind.REACTDROP
        assert settlement.destinations == ("p1", "p2", "p3", "p4")
        assert settlement.share == Amount(3)
        assert balance_of("alice") == 88
        for p in ("p1", "p2", "p3", "p4"):
            assert balance_of(p) == 3

        stored = _reactdrop(session_factory, reactdrop.reactdrop_id)
        assert stored.status is ReactdropStatus.SETTLED
        assert stored.event_id == settlement.event_id
        assert stored.participant_count == 4
        assert stored.moved_total == Amount(12)
        assert stored.finished_at == deterministic_clock.now()

        # A second sweep finds nothing left to do
        again = asyncio.run(scheduler.sweep())
        assert again.processed == 0
        assert _entries(session_factory) == 4

    def test_no_participants_expires(
        self, scheduler, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop(sats=12)
        deterministic_clock.advance(minutes=6)

        result = asyncio.run(scheduler.sweep())

        assert result.expired == 1
        assert balance_of("alice") == 100
        assert _entries(session_factory) == 0
        assert _reactdrop(session_factory, reactdrop.reactdrop_id).status is ReactdropStatus.EXPIRED

    def test_only_initiator_reacted_expires(
        self, scheduler, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop()
        messaging.reactions[("msg-1", TOKEN)] = ["alice"]
        deterministic_clock.advance(minutes=6)
        assert asyncio.run(scheduler.sweep()).expired == 1

    def test_not_due_untouched(
        self, scheduler, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop(minutes=30)
        deterministic_clock.advance(minutes=6)
        result = asyncio.run(scheduler.sweep())
        assert result.processed == 0
        assert messaging.participant_lookups == 0

    def test_remainder_stays_with_initiator(
        self, scheduler, messaging, create_reactdrop, fund, balance_of, deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop(sats=10)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2", "p3"]
        deterministic_clock.advance(minutes=6)
        asyncio.run(scheduler.sweep())
        assert balance_of("alice") == 91


class TestNotifications:
    def test_settlement_announced(
        self, scheduler, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2"]
        deterministic_clock.advance(minutes=6)
        asyncio.run(scheduler.sweep())
        assert messaging.public_messages == [
            ("chan-1", "<@alice> just tipped 0.00000012 VRSC to 2 users!")
        ]

    def test_delivery_failure_does_not_undo_settlement(
        self, scheduler, messaging, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2"]
        messaging.fail_public = True
        deterministic_clock.advance(minutes=6)
        result = asyncio.run(scheduler.sweep())
        assert result.settled == 1
        assert balance_of("p1") == 6
        assert _reactdrop(session_factory, reactdrop.reactdrop_id).status is ReactdropStatus.SETTLED


class TestFailures:
    def test_funds_gone_fails_reactdrop(
        self, scheduler, messaging, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock, captured_logs,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop(sats=12)
        # Balance reduced outside the ledger (operator correction)
        with session_factory() as s:
            s.execute(update(Account).where(Account.account_id == "alice").values(balance=5))
            s.commit()
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2"]
        deterministic_clock.advance(minutes=6)

        result = asyncio.run(scheduler.sweep())

        assert result.failed == 1
        assert result.results[0].reason == FAILURE_INSUFFICIENT_FUNDS
        stored = _reactdrop(session_factory, reactdrop.reactdrop_id)
        assert stored.status is ReactdropStatus.FAILED
        assert stored.failure_reason == FAILURE_INSUFFICIENT_FUNDS
        assert stored.participant_count == 2
        assert balance_of("alice") == 5
        assert balance_of("p1") == 0
        assert _entries(session_factory) == 0
        errors = [r for r in captured_logs() if r["message"] == "reactdrop_settlement_failed"]
        assert errors and errors[0]["level"] == "ERROR"
        assert errors[0]["reactdrop_id"] == str(reactdrop.reactdrop_id)

    def test_participant_lookup_failure(
        self, scheduler, messaging, create_reactdrop, fund, session_factory, deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop()
        messaging.fail_participant_lookup = True
        deterministic_clock.advance(minutes=6)

        result = asyncio.run(scheduler.sweep())

        assert result.failed == 1
        stored = _reactdrop(session_factory, reactdrop.reactdrop_id)
        assert stored.failure_reason == FAILURE_PARTICIPANT_LOOKUP

    def test_persistence_failure_during_settlement(
        self, session_factory, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        class BrokenEngine:
            def __init__(self, session, **kwargs):
                pass

            def execute_transfer(self, intent, exclude_reactdrop_id=None):
                raise OperationalError("UPDATE accounts", {}, Exception("connection lost"))

        fund("alice", 100)
        reactdrop = create_reactdrop()
        messaging.reactions[("msg-1", TOKEN)] = ["p1"]
        deterministic_clock.advance(minutes=6)
        scheduler = SettlementScheduler(
            session_factory, messaging, clock=deterministic_clock, engine_factory=BrokenEngine
        )

        result = asyncio.run(scheduler.sweep())

        assert result.results[0].reason == FAILURE_PERSISTENCE
        stored = _reactdrop(session_factory, reactdrop.reactdrop_id)
        assert stored.status is ReactdropStatus.FAILED

    def test_failed_reactdrop_not_retried(
        self, scheduler, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop()
        messaging.fail_participant_lookup = True
        deterministic_clock.advance(minutes=6)
        asyncio.run(scheduler.sweep())
        messaging.fail_participant_lookup = False
        asyncio.run(scheduler.sweep())
        assert messaging.participant_lookups == 1

    def test_participant_lookup_timeout(
        self, session_factory, messaging, create_reactdrop, fund, deterministic_clock,
    ):
        fund("alice", 100)
        stuck = create_reactdrop(minutes=5, message_ref="msg-1")
        create_reactdrop(minutes=6, message_ref="msg-2")
        messaging.hang_participant_lookup = True
        deterministic_clock.advance(minutes=7)
        scheduler = SettlementScheduler(
            session_factory,
            messaging,
            clock=deterministic_clock,
            participant_lookup_timeout_seconds=0.1,
        )

        result = asyncio.run(asyncio.wait_for(scheduler.sweep(), timeout=5))

        assert result.failed == 2
        assert all(r.reason == FAILURE_PARTICIPANT_LOOKUP for r in result.results)
        assert _reactdrop(session_factory, stuck.reactdrop_id).status is ReactdropStatus.FAILED

    def test_claim_lost_to_stalled_pass_is_skipped(
        self, scheduler, messaging, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock, captured_logs,
    ):
        fund("alice", 100)
        lost = create_reactdrop(minutes=5, message_ref="msg-1")
        create_reactdrop(minutes=6, message_ref="msg-2")
        messaging.reactions[("msg-1", TOKEN)] = ["p1"]
        messaging.reactions[("msg-2", TOKEN)] = ["p2"]

        def stalled_pass_fails_first():
            if messaging.participant_lookups != 1:
                return
            with session_factory() as s:
                ReactdropRepository(s).mark_failed(
                    lost.reactdrop_id, FAILURE_INTERRUPTED, deterministic_clock.now()
                )
                s.commit()

        messaging.on_participant_lookup = stalled_pass_fails_first
        deterministic_clock.advance(minutes=7)

        result = asyncio.run(scheduler.sweep())

        assert [r.outcome for r in result.results] == [
            ReactdropOutcome.SKIPPED,
            ReactdropOutcome.SETTLED,
        ]
        assert balance_of("p1") == 0
        assert balance_of("p2") == 12
        assert balance_of("alice") == 88
        stored = _reactdrop(session_factory, lost.reactdrop_id)
        assert stored.status is ReactdropStatus.FAILED
        assert stored.failure_reason == FAILURE_INTERRUPTED
        assert any(r["message"] == "reactdrop_claim_lost" for r in captured_logs())


class TestHoldWhileSettling:
    def test_tip_during_participant_lookup_cannot_spend_held_amount(
        self, scheduler, messaging, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock,
    ):
        fund("alice", 12)
        reactdrop = create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2"]
        attempts = []

        def tip_from_initiator():
            with session_factory() as s:
                try:
                    TransferEngine(s, clock=deterministic_clock).execute_transfer(
                        TransferIntent.direct("alice", "carol", Amount(12))
                    )
                    s.commit()
                    attempts.append("settled")
                except InsufficientFundsError:
                    s.rollback()
                    attempts.append("rejected")

        messaging.on_participant_lookup = tip_from_initiator
        deterministic_clock.advance(minutes=6)

        result = asyncio.run(scheduler.sweep())

        assert attempts == ["rejected"]
        assert result.settled == 1
        assert balance_of("carol") == 0
        assert balance_of("p1") == balance_of("p2") == 6
        assert balance_of("alice") == 0
        assert _reactdrop(session_factory, reactdrop.reactdrop_id).status is ReactdropStatus.SETTLED


class TestRestartSafety:
    def test_interrupted_claim_failed_after_threshold(
        self, scheduler, create_reactdrop, fund, balance_of, session_factory,
        deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop()
        deterministic_clock.advance(minutes=6)
        # A previous process claimed it and died before settling
        with session_factory() as s:
            ReactdropRepository(s).claim(reactdrop.reactdrop_id, deterministic_clock.now())
            s.commit()

        deterministic_clock.advance(seconds=899)
        assert asyncio.run(scheduler.sweep()).interrupted_failed == 0

        deterministic_clock.advance(seconds=1)
        result = asyncio.run(scheduler.sweep())
        assert result.interrupted_failed == 1
        stored = _reactdrop(session_factory, reactdrop.reactdrop_id)
        assert stored.status is ReactdropStatus.FAILED
        assert stored.failure_reason == FAILURE_INTERRUPTED
        assert balance_of("alice") == 100

    def test_fresh_scheduler_settles_persisted_reactdrop(
        self, session_factory, messaging, create_reactdrop, fund, balance_of,
        deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1"]
        deterministic_clock.advance(hours=3)

        # No object from the creating "process" survives except the database
        restarted = SettlementScheduler(session_factory, messaging, clock=deterministic_clock)
        assert asyncio.run(restarted.sweep()).settled == 1
        assert balance_of("p1") == 12


class TestConcurrentSweepers:
    def test_two_sweepers_settle_once(
        self, session_factory, messaging, create_reactdrop, fund, balance_of,
        deterministic_clock,
    ):
        fund("alice", 100)
        create_reactdrop(sats=12)
        messaging.reactions[("msg-1", TOKEN)] = ["p1", "p2"]
        deterministic_clock.advance(minutes=6)
        sweepers = [
            SettlementScheduler(session_factory, messaging, clock=deterministic_clock)
            for _ in range(2)
        ]

        async def run_both():
            return await asyncio.gather(*(s.sweep() for s in sweepers))

        results = asyncio.run(run_both())

        assert sum(r.settled for r in results) == 1
        assert balance_of("alice") == 88
        assert balance_of("p1") == 6
        assert _entries(session_factory) == 2


class TestBackgroundLoop:
    def test_start_and_stop(
        self, scheduler, messaging, create_reactdrop, fund, session_factory,
        deterministic_clock,
    ):
        fund("alice", 100)
        reactdrop = create_reactdrop()
        messaging.reactions[("msg-1", TOKEN)] = ["p1"]
        deterministic_clock.advance(minutes=6)

        async def run():
            scheduler.start()
            assert scheduler.is_running
            for _ in range(200):
                await asyncio.sleep(0.02)
                if _reactdrop(session_factory, reactdrop.reactdrop_id).status.is_terminal:
                    break
            await scheduler.stop(timeout=5)
            assert not scheduler.is_running

        asyncio.run(run())
        assert _reactdrop(session_factory, reactdrop.reactdrop_id).status is ReactdropStatus.SETTLED

    def test_loop_survives_sweep_errors(self, scheduler, captured_logs):
        calls = []

        async def broken_sweep():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler.sweep = broken_sweep

        async def run():
            scheduler.start()
            await asyncio.sleep(0.2)
            await scheduler.stop(timeout=5)

        asyncio.run(run())
        assert len(calls) >= 2
        assert any(r["message"] == "scheduler_sweep_failed" for r in captured_logs())
