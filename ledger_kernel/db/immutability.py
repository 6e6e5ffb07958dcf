"""
ORM-Level Immutability Enforcement for observed ledger facts.

===============================================================================
WHY THIS EXISTS
===============================================================================

A payment record is a copy of something the ledger already made permanent.
The client may learn about a fact twice (subscription and polling) but it
must never rewrite or forget one it has stored.  Deduplication therefore
happens BEFORE insert (ledger_engines.matching); after insert, rows are
frozen.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule                                   | Why
------------------|----------------------------------------|------------------------------
PaymentRecordRow  | ALWAYS immutable, never deleted        | Observed ledger fact
PaymentRecordLink | ALWAYS immutable, never deleted        | Absorbed identity is final
SyncCursorRow     | last_block may only move forward       | Cursor monotonicity
                  | (reset = delete the row, then recreate)|

===============================================================================
USAGE
===============================================================================

Called by create_tables(); safe to call more than once:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from ledger_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ENTITY_TYPES = {
    "PaymentRecordRow": "PaymentRecord",
    "PaymentRecordLinkRow": "PaymentRecordLink",
}


def _check_payment_record_immutability(mapper, connection, target):
    """Prevent any updates to payment records and their links."""
    from ledger_kernel.models.payment_record import PaymentRecordLinkRow, PaymentRecordRow

    if not isinstance(target, (PaymentRecordRow, PaymentRecordLinkRow)):
        return
    entity_type = _ENTITY_TYPES[type(target).__name__]

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Payment records are observed ledger facts and cannot be modified",
    )


def _check_payment_record_delete(mapper, connection, target):
    """Prevent deletion of payment records and their links."""
    from ledger_kernel.models.payment_record import PaymentRecordLinkRow, PaymentRecordRow

    if not isinstance(target, (PaymentRecordRow, PaymentRecordLinkRow)):
        return
    entity_type = _ENTITY_TYPES[type(target).__name__]

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Payment records cannot be deleted",
    )


def _check_sync_cursor_monotonic(mapper, connection, target):
    """
    Prevent a sync cursor from moving backwards.

    Uses attribute history: ``deleted`` holds the value loaded from the
    database, ``added`` the value being written.
    """
    from ledger_kernel.models.sync_cursor import SyncCursorRow

    if not isinstance(target, SyncCursorRow):
        return

    history = get_history(target, "last_block")
    if not history.deleted or not history.added:
        return

    old_block = history.deleted[0]
    new_block = history.added[0]
    if old_block is None:
        return
    if new_block is None or new_block < old_block:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "SyncCursor",
                "entity_id": str(target.id),
                "operation": "UPDATE",
                "old_block": old_block,
                "new_block": new_block,
            },
        )
        raise ImmutabilityViolationError(
            entity_type="SyncCursor",
            entity_id=str(target.id),
            reason=f"Cursor cannot move backwards from {old_block} to {new_block}",
        )


def _listeners():
    from ledger_kernel.models.payment_record import PaymentRecordLinkRow, PaymentRecordRow
    from ledger_kernel.models.sync_cursor import SyncCursorRow

    return (
        (PaymentRecordRow, "before_update", _check_payment_record_immutability),
        (PaymentRecordRow, "before_delete", _check_payment_record_delete),
        (PaymentRecordLinkRow, "before_update", _check_payment_record_immutability),
        (PaymentRecordLinkRow, "before_delete", _check_payment_record_delete),
        (SyncCursorRow, "before_update", _check_sync_cursor_monotonic),
    )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
