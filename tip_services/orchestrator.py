"""
tip_services.orchestrator -- DI container for the bot process.

Responsibility:
    Turns a ``TipLedgerConfig`` plus the platform adapters into the wired
    set of services a bot process runs: engine and session factory,
    immutability listeners, notification dispatcher, tipping service, and
    the reactdrop settlement scheduler.  No service creates another
    service internally; all wiring is visible here.

Architecture position:
    Services -- the top of the stack.  The only module that reads both
    ``tip_config`` and every lower package.

Usage:
    config = get_active_config()
    ledger = TipLedgerOrchestrator.from_config(config, messaging=platform)
    await ledger.start()
    ...
    await ledger.tipping.tip_user(author, channel, recipient, amount)
    ...
    await ledger.stop()
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from tip_batch.services.settlement_scheduler import SettlementScheduler
from tip_config import TipLedgerConfig
from tip_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from tip_kernel.db.immutability import register_immutability_listeners
from tip_kernel.domain.clock import Clock, SystemClock
from tip_kernel.logging_config import configure_logging, get_logger

from tip_services.notification_dispatcher import NotificationDispatcher
from tip_services.ports import ChainClient, MessagingPlatform
from tip_services.supply_report import SupplyReport, build_supply_report
from tip_services.tipping_service import TippingService

logger = get_logger("services.orchestrator")


class TipLedgerOrchestrator:
    """Owns every long-lived service of one bot process."""

    def __init__(
        self,
        config: TipLedgerConfig,
        session_factory: sessionmaker[Session],
        messaging: MessagingPlatform,
        chain: ChainClient | None = None,
        clock: Clock | None = None,
    ):
        self._config = config
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._chain = chain

        ledger = config.ledger

        self._dispatcher = NotificationDispatcher(
            messaging,
            session_factory=session_factory,
            ticker=ledger.ticker,
            delivery_timeout_seconds=config.notifications.delivery_timeout_seconds,
        )

        self._tipping = TippingService(
            session_factory,
            messaging,
            dispatcher=self._dispatcher,
            clock=self._clock,
            ticker=ledger.ticker,
            minimum_tip=ledger.minimum_tip,
            minimum_role_tip=ledger.minimum_role_tip,
            minimum_reactdrop=ledger.minimum_reactdrop,
            max_duration_hours=config.reactdrop.max_duration_hours,
        )

        # Settlement splits a reactdrop that already passed its own minimum,
        # so only the smallest-unit floor applies here
        self._scheduler = SettlementScheduler(
            session_factory,
            messaging,
            dispatcher=self._dispatcher,
            clock=self._clock,
            minimum_tip=ledger.minimum_tip,
            sweep_interval_seconds=config.scheduler.sweep_interval_seconds,
            batch_size=config.scheduler.batch_size,
            stalled_after_seconds=config.scheduler.stalled_after_seconds,
            participant_lookup_timeout_seconds=(
                config.scheduler.participant_lookup_timeout_seconds
            ),
        )

    @classmethod
    def from_config(
        cls,
        config: TipLedgerConfig,
        messaging: MessagingPlatform,
        chain: ChainClient | None = None,
        clock: Clock | None = None,
        create_schema: bool = True,
    ) -> TipLedgerOrchestrator:
        """Initialize logging and the database from ``config`` and wire services."""
        configure_logging(level=config.logging.level)
        db = config.database
        engine = init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            sqlite_busy_timeout_ms=db.sqlite_busy_timeout_ms,
        )
        if create_schema:
            create_tables(engine)
        register_immutability_listeners()
        logger.info(
            "orchestrator_configured",
            extra={"config_set_id": config.config_id, "checksum": config.checksum},
        )
        return cls(config, get_session_factory(), messaging, chain=chain, clock=clock)

    # -----------------------------------------------------------------
    # Services
    # -----------------------------------------------------------------

    @property
    def config(self) -> TipLedgerConfig:
        return self._config

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def tipping(self) -> TippingService:
        return self._tipping

    @property
    def scheduler(self) -> SettlementScheduler:
        return self._scheduler

    async def supply_report(self) -> SupplyReport:
        """
        Raises:
            RuntimeError: No chain client was wired.
        """
        if self._chain is None:
            raise RuntimeError("No chain client configured")
        return await build_supply_report(self._session_factory, self._chain, self._clock)

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def start(self) -> None:
        """Start the reactdrop sweeper on the running loop."""
        self._scheduler.start()

    async def stop(self, timeout: float = 30.0) -> None:
        await self._scheduler.stop(timeout=timeout)
