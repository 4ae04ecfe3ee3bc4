"""
NotificationDispatcher -- best-effort delivery after a settlement commits.

Contract:
    ``notify_settlement()`` is called only after the ledger transaction has
    committed.  It never raises for a delivery problem and never touches
    balances: every failed or timed-out send becomes a DeliveryFailure in
    the returned DeliveryReport and a WARNING log line.

Architecture: tip_services.  Talks to the chat platform through the
    MessagingPlatform port; reads preferences through AccountService.

Delivery rules (per recipient preference, unset treated as channel_only):

    preference     public message   mentions recipient   direct message
    all            yes              yes                  yes
    dm_only        yes              no                   yes
    channel_only   yes              yes                  no
    off            yes              no                   no

    Single recipient: one public message, mentioning or not, plus the DM
    when the preference asks for one.
    Several recipients: one aggregate public message, plus DMs per
    recipient preference.

Sends are bounded by ``delivery_timeout_seconds`` and never retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from tip_kernel.db.units import run_in_executor
from tip_kernel.domain.amount import DEFAULT_TICKER
from tip_kernel.domain.intents import Settlement
from tip_kernel.domain.notification import NotificationPreference, delivery_plan
from tip_kernel.exceptions import DeliveryFailureError, PersistenceFailureError
from tip_kernel.logging_config import get_logger
from tip_kernel.services.account_service import AccountService

from tip_services.ports import MessagingPlatform

logger = get_logger("services.notification_dispatcher")

DEFAULT_DELIVERY_TIMEOUT_SECONDS = 10.0

PUBLIC = "public"
DIRECT = "direct"


@dataclass(frozen=True)
class DeliveryFailure:
    """One send that did not go through."""

    target: str
    channel_kind: str
    reason: str

    @classmethod
    def from_error(cls, error: DeliveryFailureError) -> DeliveryFailure:
        return cls(target=error.target, channel_kind=error.channel_kind, reason=error.reason)


@dataclass(frozen=True)
class DeliveryReport:
    """What happened to the notifications of one settlement."""

    event_id: UUID | None
    attempted: int = 0
    delivered: int = 0
    failures: tuple[DeliveryFailure, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failures


class _ReportBuilder:
    def __init__(self, event_id: UUID | None):
        self.event_id = event_id
        self.attempted = 0
        self.delivered = 0
        self.failures: list[DeliveryFailure] = []

    def build(self) -> DeliveryReport:
        return DeliveryReport(
            event_id=self.event_id,
            attempted=self.attempted,
            delivered=self.delivered,
            failures=tuple(self.failures),
        )


class NotificationDispatcher:
    """Fans out settlement notifications over an unreliable channel."""

    def __init__(
        self,
        messaging: MessagingPlatform,
        session_factory: sessionmaker[Session] | None = None,
        ticker: str = DEFAULT_TICKER,
        delivery_timeout_seconds: float = DEFAULT_DELIVERY_TIMEOUT_SECONDS,
    ):
        self._messaging = messaging
        self._session_factory = session_factory
        self._ticker = ticker
        self._timeout = delivery_timeout_seconds

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def notify_settlement(
        self,
        settlement: Settlement,
        channel_ref: str,
        preferences: Mapping[str, NotificationPreference | None] | None = None,
    ) -> DeliveryReport:
        """
        Announce a committed settlement.

        Args:
            settlement: The committed transfer.
            channel_ref: Channel for the public message.
            preferences: Recipient preferences; loaded from the database
                when omitted.

        Returns:
            DeliveryReport.  Never raises for delivery failures.
        """
        if preferences is None:
            preferences = await self._load_preferences(settlement.destinations)

        report = _ReportBuilder(settlement.event_id)
        if settlement.recipient_count == 1:
            await self._notify_single(settlement, channel_ref, preferences, report)
        else:
            await self._notify_multiple(settlement, channel_ref, preferences, report)

        result = report.build()
        logger.info(
            "settlement_notified",
            extra={
                "event_id": str(settlement.event_id),
                "attempted": result.attempted,
                "delivered": result.delivered,
                "failed": len(result.failures),
            },
        )
        return result

    async def send_public(self, channel_ref: str, text: str) -> tuple[str | None, DeliveryFailure | None]:
        """Single bounded public send, for announcements outside a settlement."""
        report = _ReportBuilder(None)
        message_ref = await self._attempt(
            report,
            channel_ref,
            PUBLIC,
            lambda: self._messaging.send_public_message(channel_ref, text),
        )
        return message_ref, (report.failures[0] if report.failures else None)

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    async def _load_preferences(
        self,
        account_ids: tuple[str, ...],
    ) -> Mapping[str, NotificationPreference | None]:
        if self._session_factory is None:
            return dict.fromkeys(account_ids)
        try:
            return await run_in_executor(
                self._session_factory,
                "load_notification_preferences",
                lambda session: AccountService(session).get_notification_preferences(account_ids),
            )
        except PersistenceFailureError:
            logger.warning(
                "notification_preferences_unavailable",
                extra={"recipients": len(account_ids)},
            )
            return dict.fromkeys(account_ids)

    async def _notify_single(self, settlement, channel_ref, preferences, report) -> None:
        recipient = settlement.destinations[0]
        plan = delivery_plan(preferences.get(recipient))
        amount = settlement.moved_total.format(self._ticker)
        sender = self._messaging.mention(settlement.source)

        if plan.mention_in_public:
            target = self._messaging.mention(recipient)
        else:
            target = f"`{await self._display_name(recipient)}`"

        await self._attempt(
            report,
            channel_ref,
            PUBLIC,
            lambda: self._messaging.send_public_message(
                channel_ref, f"{sender} just tipped {target} {amount}!"
            ),
        )

        if plan.direct_message:
            await self._send_dm(report, recipient, settlement.share, sender)

    async def _notify_multiple(self, settlement, channel_ref, preferences, report) -> None:
        sender = self._messaging.mention(settlement.source)
        total = settlement.moved_total.format(self._ticker)

        await self._attempt(
            report,
            channel_ref,
            PUBLIC,
            lambda: self._messaging.send_public_message(
                channel_ref,
                f"{sender} just tipped {total} to {settlement.recipient_count} users!",
            ),
        )

        for recipient in settlement.destinations:
            if delivery_plan(preferences.get(recipient)).direct_message:
                await self._send_dm(report, recipient, settlement.share, sender)

    async def _send_dm(self, report, recipient, share, sender) -> None:
        text = f"You just got tipped {share.format(self._ticker)} from {sender}!"
        await self._attempt(
            report,
            recipient,
            DIRECT,
            lambda: self._messaging.send_direct_message(recipient, text),
        )

    async def _display_name(self, account_id: str) -> str:
        try:
            return await asyncio.wait_for(
                self._messaging.display_name(account_id), timeout=self._timeout
            )
        except Exception:
            logger.debug("display_name_unavailable", extra={"account_id": account_id})
            return account_id

    async def _attempt(
        self,
        report: _ReportBuilder,
        target: str,
        channel_kind: str,
        send: Callable[[], Awaitable],
    ):
        report.attempted += 1
        try:
            result = await asyncio.wait_for(send(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._record_failure(report, DeliveryFailureError(target, channel_kind, "timeout"))
            return None
        except Exception as e:
            self._record_failure(
                report,
                DeliveryFailureError(target, channel_kind, f"{type(e).__name__}: {e}"),
            )
            return None
        report.delivered += 1
        return result

    def _record_failure(self, report: _ReportBuilder, error: DeliveryFailureError) -> None:
        report.failures.append(DeliveryFailure.from_error(error))
        logger.warning(
            "notification_delivery_failed",
            extra={
                "target": error.target,
                "channel_kind": error.channel_kind,
                "reason": error.reason,
                "error_code": error.code,
            },
        )
