"""
ORM-level immutability enforcement for ledger history.

Ledger entries are append-only: once flushed, an entry is never updated or
deleted.  Corrections are new transfers, never edits.  Reactdrops are
mutable only until they reach a terminal status (settled, expired, failed).

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The reactdrop status transitions themselves run as conditional Core UPDATE
statements (``WHERE status = 'settling'``), so the database is the arbiter
for concurrent sweepers; these listeners catch ORM code that tries to
rewrite history.

Usage:

    from tip_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from tip_kernel.exceptions import ImmutabilityViolationError
from tip_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_ledger_entry_update(mapper, connection, target):
    """Ledger entries are immutable from creation."""
    raise _blocked(
        "LedgerEntry",
        str(target.id),
        "UPDATE",
        "Ledger entries are append-only and cannot be modified",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    raise _blocked(
        "LedgerEntry",
        str(target.id),
        "DELETE",
        "Ledger entries are append-only and cannot be deleted",
    )


def _check_reactdrop_update(mapper, connection, target):
    """
    Block changes to a reactdrop that was already terminal before this flush.

    A transition INTO a terminal status is allowed; anything after it is not.
    """
    from tip_kernel.domain.reactdrop import ReactdropStatus

    history = get_history(target, "status")
    if history.deleted:
        previous = history.deleted[0]
    elif history.unchanged:
        previous = history.unchanged[0]
    else:
        return

    previous = ReactdropStatus(previous)
    if previous.is_terminal:
        raise _blocked(
            "Reactdrop",
            str(target.id),
            "UPDATE",
            f"Reactdrop is already {previous.value} and cannot be modified",
        )


def _check_reactdrop_delete(mapper, connection, target):
    raise _blocked(
        "Reactdrop",
        str(target.id),
        "DELETE",
        "Reactdrops are kept for audit and cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable, before database work.
    """
    from tip_kernel.models.reactdrop import ReactdropModel
    from tip_kernel.models.ledger import LedgerEntry

    for target, name, fn in _listeners(LedgerEntry, ReactdropModel):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _listeners(ledger_entry, reactdrop):
    return (
        (ledger_entry, "before_update", _check_ledger_entry_update),
        (ledger_entry, "before_delete", _check_ledger_entry_delete),
        (reactdrop, "before_update", _check_reactdrop_update),
        (reactdrop, "before_delete", _check_reactdrop_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from tip_kernel.models.reactdrop import ReactdropModel
    from tip_kernel.models.ledger import LedgerEntry

    for target, name, fn in _listeners(LedgerEntry, ReactdropModel):
        _safe_remove_listener(target, name, fn)
