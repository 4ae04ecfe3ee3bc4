"""
Pure domain layer.

Value types and DTOs with NO dependencies on the ORM, the database, or I/O.
All domain objects are immutable and deterministic.
"""

from tip_kernel.domain.amount import (
    COIN_DECIMAL_PLACES,
    DEFAULT_TICKER,
    UNITS_PER_COIN,
    Amount,
    sum_amounts,
)
from tip_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from tip_kernel.domain.intents import (
    Settlement,
    SplitPlan,
    TransferIntent,
    TransferKind,
    plan_split,
)
from tip_kernel.domain.notification import (
    DeliveryPlan,
    NotificationPreference,
    delivery_plan,
)
from tip_kernel.domain.reactdrop import TERMINAL_STATUSES, Reactdrop, ReactdropStatus
from tip_kernel.domain.records import AccountInfo, BalanceView, LedgerEntryRecord

__all__ = [
    "Amount",
    "COIN_DECIMAL_PLACES",
    "DEFAULT_TICKER",
    "UNITS_PER_COIN",
    "sum_amounts",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Settlement",
    "SplitPlan",
    "TransferIntent",
    "TransferKind",
    "plan_split",
    "DeliveryPlan",
    "NotificationPreference",
    "delivery_plan",
    "AccountInfo",
    "BalanceView",
    "LedgerEntryRecord",
    "Reactdrop",
    "ReactdropStatus",
    "TERMINAL_STATUSES",
]
