"""
tip_batch.services -- Reactdrop persistence and the settlement sweeper.
"""

from tip_batch.services.reactdrop_repository import ReactdropRepository
from tip_batch.services.settlement_scheduler import (
    SettlementScheduler,
    eligible_participants,
)

__all__ = [
    "ReactdropRepository",
    "SettlementScheduler",
    "eligible_participants",
]
