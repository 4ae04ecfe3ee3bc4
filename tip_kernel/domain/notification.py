"""
Notification preferences and their delivery plans.

Responsibility:
    Maps each recipient's stored preference to the fixed combination of
    delivery channels used after a settlement.  The public ledger-visibility
    message is never suppressed; only mentioning and direct delivery vary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Used by NotificationDispatcher (tip_services) and AccountService.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NotificationPreference(str, Enum):
    """How a recipient wants to hear about incoming tips."""

    ALL = "all"
    CHANNEL_ONLY = "channel_only"
    DM_ONLY = "dm_only"
    OFF = "off"


@dataclass(frozen=True)
class DeliveryPlan:
    """Channels to use for one recipient."""

    mention_in_public: bool
    direct_message: bool
    public_message: bool = True


def delivery_plan(preference: NotificationPreference | None) -> DeliveryPlan:
    """
    Resolve the delivery plan for a preference; ``None`` means unset.

    ============  ======  =======  ==
    preference    public  mention  DM
    ============  ======  =======  ==
    all           yes     yes      yes
    dm_only       yes     no       yes
    channel_only  yes     yes      no
    unset         yes     yes      no
    off           yes     no       no
    ============  ======  =======  ==
    """
    match preference:
        case NotificationPreference.ALL:
            return DeliveryPlan(mention_in_public=True, direct_message=True)
        case NotificationPreference.DM_ONLY:
            return DeliveryPlan(mention_in_public=False, direct_message=True)
        case NotificationPreference.CHANNEL_ONLY | None:
            return DeliveryPlan(mention_in_public=True, direct_message=False)
        case NotificationPreference.OFF:
            return DeliveryPlan(mention_in_public=False, direct_message=False)
        case _:
            raise ValueError(f"Unknown notification preference: {preference!r}")
