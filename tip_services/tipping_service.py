"""
TippingService -- the three command flows, without parsing or layout.

Contract:
    ``tip_user``, ``tip_role`` and ``start_reactdrop`` take already-parsed
    arguments from a command handler and either complete or raise a typed
    ValidationError before anything is mutated.  Settled tips are followed
    by best-effort notification; a reactdrop is persisted and left for the
    SettlementScheduler.

Architecture: tip_services.  Database work runs on the default executor
    through tip_kernel.db.units, one transaction per step.  Chat platform
    calls go through the MessagingPlatform port.

Order of checks in every flow:

    1. blacklist            AccountBlacklistedError, before any balance read
    2. command minimum      BelowMinimumError
    3. command specifics    duration, trigger token, role members
    4. balance              InsufficientFundsError, race-free inside the
                            transfer (or under the account lock for a
                            reactdrop hold)

Each call binds a fresh ``request_id`` into the LogContext.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from tip_batch.domain.schedule import (
    DEFAULT_MAX_DURATION_HOURS,
    compute_deadline,
)
from tip_batch.domain.types import DurationUnit
from tip_batch.services.reactdrop_repository import ReactdropRepository
from tip_kernel.db.units import run_in_executor
from tip_kernel.domain.amount import DEFAULT_TICKER, Amount
from tip_kernel.domain.clock import Clock, SystemClock
from tip_kernel.domain.intents import Settlement, TransferIntent, TransferKind
from tip_kernel.domain.notification import NotificationPreference
from tip_kernel.domain.reactdrop import Reactdrop
from tip_kernel.domain.records import AccountInfo, BalanceView
from tip_kernel.exceptions import (
    BelowMinimumError,
    DeliveryFailureError,
    InvalidTriggerTokenError,
    TipKernelError,
)
from tip_kernel.logging_config import LogContext, get_logger
from tip_kernel.services.account_service import AccountService
from tip_kernel.services.balance_store import BalanceStore
from tip_kernel.services.transfer_engine import DEFAULT_MINIMUM_TIP, TransferEngine

from tip_services.notification_dispatcher import (
    PUBLIC,
    DeliveryReport,
    NotificationDispatcher,
)
from tip_services.ports import MessagingPlatform

logger = get_logger("services.tipping")


@dataclass(frozen=True)
class TipResult:
    """A settled tip and what happened to its notifications."""

    settlement: Settlement
    delivery: DeliveryReport


@dataclass(frozen=True)
class ReactdropStarted:
    reactdrop: Reactdrop
    announcement: str


def reactdrop_announcement(amount: str, trigger_token: str, remaining: timedelta) -> str:
    """Public text that opens a reactdrop."""
    minutes = int(remaining.total_seconds()) // 60
    return (
        f">>> **A reactdrop of {amount} was started!**\n\n"
        f"React with the {trigger_token} emoji to participate\n\n"
        f"Time remaining: {minutes // 60} hour(s) and {minutes % 60} minute(s)"
    )


class TippingService:
    """Async command façade over the ledger.

    Non-goals:
        - Does NOT parse commands or render embeds.
        - Does NOT deduplicate repeated commands; each call is one intent.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        messaging: MessagingPlatform,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        ticker: str = DEFAULT_TICKER,
        minimum_tip: Amount = DEFAULT_MINIMUM_TIP,
        minimum_role_tip: Amount = DEFAULT_MINIMUM_TIP,
        minimum_reactdrop: Amount = DEFAULT_MINIMUM_TIP,
        max_duration_hours: int = DEFAULT_MAX_DURATION_HOURS,
        engine_factory: Callable[..., TransferEngine] = TransferEngine,
    ):
        self._session_factory = session_factory
        self._messaging = messaging
        self._dispatcher = dispatcher or NotificationDispatcher(
            messaging, session_factory=session_factory, ticker=ticker
        )
        self._clock = clock or SystemClock()
        self._ticker = ticker
        self._minimum_tip = minimum_tip
        self._minimum_role_tip = minimum_role_tip
        self._minimum_reactdrop = minimum_reactdrop
        self._max_duration_hours = max_duration_hours
        self._engine_factory = engine_factory

    # -----------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------

    async def tip_user(
        self,
        author: str,
        channel_ref: str,
        recipient: str,
        amount: Amount,
    ) -> TipResult:
        """
        Tip one user.

        Raises:
            AccountBlacklistedError, BelowMinimumError, InvalidSplitError,
            InsufficientFundsError, PersistenceFailureError
        """
        with LogContext.bind(request_id=str(uuid4()), account_id=author):
            await self._require_allowed(author)
            self._require_minimum(amount, self._minimum_tip)
            intent = TransferIntent.direct(author, recipient, amount)
            return await self._settle_and_notify(intent, channel_ref, self._minimum_tip)

    async def tip_role(
        self,
        author: str,
        channel_ref: str,
        role_id: str,
        amount: Amount,
    ) -> TipResult:
        """
        Split ``amount`` across the members of a role, the author excluded.

        Raises:
            AccountBlacklistedError, BelowMinimumError, InvalidSplitError
            (role has no other members), InsufficientFundsError,
            PersistenceFailureError
        """
        with LogContext.bind(request_id=str(uuid4()), account_id=author):
            await self._require_allowed(author)
            self._require_minimum(amount, self._minimum_role_tip)

            members = await self._messaging.resolve_role_members(role_id)
            destinations = tuple(m for m in dict.fromkeys(members) if m != author)
            logger.debug(
                "role_members_resolved",
                extra={"role_id": role_id, "members": len(destinations)},
            )

            intent = TransferIntent(
                source=author,
                destinations=destinations,
                amount=amount,
                kind=TransferKind.ROLE,
            )
            return await self._settle_and_notify(intent, channel_ref, self._minimum_role_tip)

    async def start_reactdrop(
        self,
        author: str,
        channel_ref: str,
        trigger_token: str,
        amount: Amount,
        duration: int,
        unit: DurationUnit | str,
    ) -> ReactdropStarted:
        """
        Announce and persist a reactdrop.

        The announcement is posted and seeded with the trigger reaction
        before the row is written, because the row needs the message
        reference.  From then on nothing refers to this call's session.

        Raises:
            AccountBlacklistedError, BelowMinimumError,
            InvalidReactdropDurationError, InvalidTriggerTokenError,
            InsufficientFundsError, DeliveryFailureError (announcement could
            not be posted), PersistenceFailureError
        """
        with LogContext.bind(request_id=str(uuid4()), account_id=author):
            await self._require_allowed(author)
            self._require_minimum(amount, self._minimum_reactdrop)

            opened_at = self._clock.now()
            deadline = compute_deadline(opened_at, duration, unit, self._max_duration_hours)

            if not await self._messaging.validate_trigger_token(channel_ref, trigger_token):
                raise InvalidTriggerTokenError(trigger_token)

            await run_in_executor(
                self._session_factory,
                "check_reactdrop_funds",
                lambda s: BalanceStore(s).check_available(author, amount),
            )

            text = reactdrop_announcement(
                amount.format(self._ticker), trigger_token, deadline - opened_at
            )
            message_ref, failure = await self._dispatcher.send_public(channel_ref, text)
            if failure is not None:
                raise DeliveryFailureError(channel_ref, PUBLIC, failure.reason)

            try:
                await self._messaging.add_reaction(channel_ref, message_ref, trigger_token)
            except Exception as e:
                # Participants can still add the reaction themselves
                logger.warning(
                    "reactdrop_seed_reaction_failed",
                    extra={"message_ref": message_ref, "error": f"{type(e).__name__}: {e}"},
                )

            try:
                reactdrop = await run_in_executor(
                    self._session_factory,
                    "create_reactdrop",
                    lambda s: ReactdropRepository(s).create(
                        initiator=author,
                        trigger_token=trigger_token,
                        amount=amount,
                        channel_ref=channel_ref,
                        message_ref=message_ref,
                        opened_at=opened_at,
                        deadline=deadline,
                    ),
                )
            except TipKernelError as e:
                logger.warning(
                    "reactdrop_announcement_orphaned",
                    extra={"message_ref": message_ref, "error_code": e.code},
                )
                raise

            return ReactdropStarted(reactdrop=reactdrop, announcement=text)

    # -----------------------------------------------------------------
    # Account queries and settings
    # -----------------------------------------------------------------

    async def balance(self, account_id: str) -> BalanceView:
        """Balance, pending holds, and available amount; creates the account."""
        return await run_in_executor(
            self._session_factory,
            "balance_view",
            lambda s: BalanceStore(s).balance_view(account_id),
        )

    async def set_notification_preference(
        self,
        account_id: str,
        preference: NotificationPreference | None,
    ) -> AccountInfo:
        return await run_in_executor(
            self._session_factory,
            "set_notification_preference",
            lambda s: AccountService(s).set_notification_preference(account_id, preference),
        )

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    async def _require_allowed(self, author: str) -> None:
        await run_in_executor(
            self._session_factory,
            "check_blacklist",
            lambda s: AccountService(s).require_not_blacklisted(author),
        )

    @staticmethod
    def _require_minimum(amount: Amount, minimum: Amount) -> None:
        if amount < minimum:
            raise BelowMinimumError(amount=amount.sats, minimum=minimum.sats)

    async def _settle_and_notify(
        self,
        intent: TransferIntent,
        channel_ref: str,
        minimum: Amount,
    ) -> TipResult:
        settlement = await run_in_executor(
            self._session_factory,
            f"{intent.kind.value}_tip",
            lambda s: self._engine_factory(
                s, clock=self._clock, minimum_tip=minimum
            ).execute_transfer(intent),
        )
        # Committed; nothing below can undo it
        delivery = await self._dispatcher.notify_settlement(settlement, channel_ref)
        return TipResult(settlement=settlement, delivery=delivery)
