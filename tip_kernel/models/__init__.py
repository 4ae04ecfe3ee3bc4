"""ORM models for the tip kernel."""

from tip_kernel.models.account import Account
from tip_kernel.models.ledger import LedgerEntry
from tip_kernel.models.reactdrop import ReactdropModel

__all__ = [
    "Account",
    "LedgerEntry",
    "ReactdropModel",
]
