"""
ORM-level immutability enforcement for append-only records.

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events before
the SQL reaches the database.  The listeners registered here raise
ImmutabilityViolationError for:

Entity                 | When immutable      | Why
-----------------------|---------------------|------------------------------------
LedgerEntry            | Always              | Balances are replays of the ledger
PracticeReassignment   | Always              | Audit trail of portfolio moves

TrackedBase audit metadata (updated_at / updated_by_id) is not financial
data, but since neither entity is ever legitimately updated, any UPDATE is
refused outright.

Usage (once at startup, after models are imported):

    from stipend_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from stipend_kernel.exceptions import ImmutabilityViolationError
from stipend_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only and cannot be {verb}",
    )


def _check_ledger_entry_update(mapper, connection, target):
    _block("LedgerEntry", target, "UPDATE")


def _check_ledger_entry_delete(mapper, connection, target):
    _block("LedgerEntry", target, "DELETE")


def _check_reassignment_update(mapper, connection, target):
    _block("PracticeReassignment", target, "UPDATE")


def _check_reassignment_delete(mapper, connection, target):
    _block("PracticeReassignment", target, "DELETE")


def _listeners():
    from stipend_kernel.models.ledger import LedgerEntry
    from stipend_kernel.models.practice import PracticeReassignment

    return (
        (LedgerEntry, "before_update", _check_ledger_entry_update),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (PracticeReassignment, "before_update", _check_reassignment_update),
        (PracticeReassignment, "before_delete", _check_reassignment_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
