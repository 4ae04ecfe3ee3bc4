"""
Module: tip_kernel.db.types
Responsibility: Column types and annotated aliases shared by every model.
    Centralizes how amounts, account identifiers, and timestamps are stored
    so PostgreSQL and SQLite hold identical values.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts are stored as BIGINT smallest units.  A NULL or negative
      stored value is a corruption and raises on load.
    - Timestamps bound to UTCDateTime must be timezone-aware; they are
      stored as naive UTC so comparisons behave the same on both backends.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.types import TypeDecorator

from tip_kernel.domain.amount import Amount

# Opaque external user/role identifier (chat platform snowflakes fit easily)
ACCOUNT_ID_LENGTH = 64

# Channel / message references kept for post-session delivery
EXTERNAL_REF_LENGTH = 64

# Reaction emoji identity (unicode emoji or custom emoji markup)
TRIGGER_TOKEN_LENGTH = 100

REASON_LENGTH = 200


class AmountType(TypeDecorator):
    """Amount <-> BIGINT (smallest units)."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Amount):
            return value.sats
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise TypeError(f"AmountType expects Amount, got {type(value).__name__}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Amount(int(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as naive UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
