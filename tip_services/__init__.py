"""
tip_services -- async command flows, notification fan-out, and wiring.

Sits above tip_kernel and tip_batch.  Talks to the chat platform and the
wallet node only through the protocols in ``tip_services.ports``.
"""

from tip_services.notification_dispatcher import (
    DeliveryFailure,
    DeliveryReport,
    NotificationDispatcher,
)
from tip_services.orchestrator import TipLedgerOrchestrator
from tip_services.ports import ChainClient, MessagingPlatform, SupplyFigures
from tip_services.supply_report import SupplyReport, build_supply_report
from tip_services.tipping_service import (
    ReactdropStarted,
    TippingService,
    TipResult,
    reactdrop_announcement,
)

__all__ = [
    "ChainClient",
    "DeliveryFailure",
    "DeliveryReport",
    "MessagingPlatform",
    "NotificationDispatcher",
    "ReactdropStarted",
    "SupplyFigures",
    "SupplyReport",
    "TipLedgerOrchestrator",
    "TipResult",
    "TippingService",
    "build_supply_report",
    "reactdrop_announcement",
]
