"""
TipLedgerConfig schema.

Typed, frozen view of a configuration set.  YAML files are parsed into
these types by the loader; services receive the plain values they need
(minimums, intervals, timeouts), never the config object itself, so the
kernel stays free of any ``tip_config`` import.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tip_kernel.domain.amount import DEFAULT_TICKER, Amount

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``tip_kernel.db.init_engine_from_url``."""

    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout_ms: int = 30000


@dataclass(frozen=True)
class LedgerConfig:
    """Amount display and per-command minimums."""

    ticker: str = DEFAULT_TICKER
    minimum_tip: Amount = Amount(1)
    minimum_role_tip: Amount = Amount(1)
    minimum_reactdrop: Amount = Amount(1)


@dataclass(frozen=True)
class SchedulerConfig:
    """Reactdrop sweeper cadence."""

    sweep_interval_seconds: float = 30.0
    batch_size: int = 50
    stalled_after_seconds: int = 900
    participant_lookup_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class NotificationsConfig:
    delivery_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class ReactdropConfig:
    max_duration_hours: int = 168


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TipLedgerConfig:
    """
    A complete configuration set.

    ``checksum`` is the SHA-256 of the parsed source data and identifies the
    exact configuration a process ran with.
    """

    config_id: str
    version: int
    database: DatabaseConfig
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    reactdrop: ReactdropConfig = field(default_factory=ReactdropConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
