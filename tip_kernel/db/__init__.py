"""Database layer - engine, base classes, column types, and immutability."""

from tip_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from tip_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from tip_kernel.db.types import ACCOUNT_ID_LENGTH, AmountType, UTCDateTime

__all__ = [
    "build_engine",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "ACCOUNT_ID_LENGTH",
    "AmountType",
    "UTCDateTime",
]
