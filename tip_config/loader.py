"""
Configuration Loader (``tip_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``tip_config.schema`` dataclasses.  This is internal tooling; the single
public entry point for runtime config is ``tip_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Coin amounts are parsed from strings or integers, never floats.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values (negative intervals, float amounts, unknown level)
  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from tip_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    NotificationsConfig,
    ReactdropConfig,
    SchedulerConfig,
    TipLedgerConfig,
)
from tip_kernel.domain.amount import Amount


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_amount(value: Any, field_name: str) -> Amount:
    """
    Parse a coin-denominated amount (``"0.5"`` or ``1``).

    Raises:
        ValueError: for floats and anything ``Amount.from_coins`` rejects.
    """
    if isinstance(value, float):
        raise ValueError(
            f"{field_name}: write amounts as quoted strings, got float {value!r}"
        )
    try:
        amount = Amount.from_coins(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field_name}: {e}") from e
    if amount.is_zero:
        raise ValueError(f"{field_name}: must be greater than zero")
    return amount


def _positive(value: Any, field_name: str, kind: type = int):
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field_name}: expected a number, got {value!r}") from e
    if number <= 0:
        raise ValueError(f"{field_name}: must be positive, got {value!r}")
    return number


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=_positive(data.get("pool_size", 5), "database.pool_size"),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=_positive(data.get("pool_timeout", 30), "database.pool_timeout"),
        pool_recycle=int(data.get("pool_recycle", 1800)),
        sqlite_busy_timeout_ms=_positive(
            data.get("sqlite_busy_timeout_ms", 30000), "database.sqlite_busy_timeout_ms"
        ),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    minimum_tip = parse_amount(data["minimum_tip"], "ledger.minimum_tip")
    return LedgerConfig(
        ticker=str(data.get("ticker", LedgerConfig.ticker)),
        minimum_tip=minimum_tip,
        minimum_role_tip=parse_amount(
            data.get("minimum_role_tip", data["minimum_tip"]), "ledger.minimum_role_tip"
        ),
        minimum_reactdrop=parse_amount(
            data.get("minimum_reactdrop", data["minimum_tip"]), "ledger.minimum_reactdrop"
        ),
    )


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    return SchedulerConfig(
        sweep_interval_seconds=_positive(
            data.get("sweep_interval_seconds", 30.0), "scheduler.sweep_interval_seconds", float
        ),
        batch_size=_positive(data.get("batch_size", 50), "scheduler.batch_size"),
        stalled_after_seconds=_positive(
            data.get("stalled_after_seconds", 900), "scheduler.stalled_after_seconds"
        ),
        participant_lookup_timeout_seconds=_positive(
            data.get("participant_lookup_timeout_seconds", 30.0),
            "scheduler.participant_lookup_timeout_seconds",
            float,
        ),
    )


def parse_notifications(data: dict[str, Any]) -> NotificationsConfig:
    return NotificationsConfig(
        delivery_timeout_seconds=_positive(
            data.get("delivery_timeout_seconds", 10.0),
            "notifications.delivery_timeout_seconds",
            float,
        ),
    )


def parse_reactdrop(data: dict[str, Any]) -> ReactdropConfig:
    return ReactdropConfig(
        max_duration_hours=_positive(
            data.get("max_duration_hours", 168), "reactdrop.max_duration_hours"
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any]) -> TipLedgerConfig:
    """
    Parse a full configuration set from a dict.

    Postconditions:
        - Returns a frozen ``TipLedgerConfig`` carrying the checksum of
          ``data``.
    Raises:
        KeyError: if ``config_id``, ``version``, ``database.url`` or
            ``ledger.minimum_tip`` is missing.
        ValueError: for invalid values.
    """
    return TipLedgerConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        database=parse_database(data["database"]),
        ledger=parse_ledger(data["ledger"]),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        notifications=parse_notifications(data.get("notifications") or {}),
        reactdrop=parse_reactdrop(data.get("reactdrop") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
