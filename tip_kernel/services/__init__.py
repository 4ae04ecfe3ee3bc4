"""Kernel services: balance store, transfer engine, account settings."""

from tip_kernel.services.account_service import AccountService
from tip_kernel.services.balance_store import BalanceStore, validate_account_id
from tip_kernel.services.base import BaseService
from tip_kernel.services.transfer_engine import (
    DEFAULT_MINIMUM_TIP,
    TransferEngine,
    validate_intent,
)

__all__ = [
    "AccountService",
    "BalanceStore",
    "BaseService",
    "DEFAULT_MINIMUM_TIP",
    "TransferEngine",
    "validate_account_id",
    "validate_intent",
]
