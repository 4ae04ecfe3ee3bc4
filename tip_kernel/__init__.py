"""
Tip Kernel - custodial balance ledger

A persistent ledger for chat tipping with:
- Exact fixed-point amounts (smallest-unit integers, no floats)
- Atomic debit/credit across many accounts
- Append-only transfer ledger
- Soft holds for pending and settling reactdrops
"""

__version__ = "0.1.0"
