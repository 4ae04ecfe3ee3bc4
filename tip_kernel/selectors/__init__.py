"""Read-only selectors for the tip kernel."""

from tip_kernel.selectors.base import BaseSelector
from tip_kernel.selectors.ledger_selector import AccountFlow, LedgerSelector

__all__ = [
    "AccountFlow",
    "BaseSelector",
    "LedgerSelector",
]
