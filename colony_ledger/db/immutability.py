"""
ORM-Level Immutability Enforcement for the resource ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

The ledger is the colony's audit trail: every stock change must be traceable
to exactly one causal entry.  Entries are corrected by writing new entries
(an ADJUSTMENT), never by editing or deleting old ones.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the
database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable          | Why
----------------|-------------------------|----------------------------------
LedgerEntry     | ALWAYS (from creation)  | The audit trail
InboundReceipt  | ALWAYS (from creation)  | Idempotency anchor of a shipment

===============================================================================
USAGE
===============================================================================

Called once at startup (colony_services.bootstrap does this):

    from colony_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from colony_ledger.exceptions import ImmutabilityViolationError
from colony_ledger.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_ledger_entry_immutability(mapper, connection, target):
    """Prevent any updates to LedgerEntry records."""
    _block("LedgerEntry", target, "UPDATE", "Ledger entries are immutable and cannot be modified")


def _check_ledger_entry_delete(mapper, connection, target):
    """Prevent deletion of LedgerEntry records."""
    _block("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


def _check_inbound_receipt_immutability(mapper, connection, target):
    """Prevent any updates to InboundReceipt records."""
    _block("InboundReceipt", target, "UPDATE", "Inbound receipts are immutable and cannot be modified")


def _check_inbound_receipt_delete(mapper, connection, target):
    """Prevent deletion of InboundReceipt records."""
    _block("InboundReceipt", target, "DELETE", "Inbound receipts cannot be deleted")


_LISTENERS = (
    ("LedgerEntry", "before_update", _check_ledger_entry_immutability),
    ("LedgerEntry", "before_delete", _check_ledger_entry_delete),
    ("InboundReceipt", "before_update", _check_inbound_receipt_immutability),
    ("InboundReceipt", "before_delete", _check_inbound_receipt_delete),
)


def _targets():
    # Inline import: models import from db, db must not import models at load.
    from colony_ledger.models.ledger import InboundReceipt, LedgerEntry

    return {"LedgerEntry": LedgerEntry, "InboundReceipt": InboundReceipt}


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if not event.contains(targets[name], event_name, listener_fn):
            event.listen(targets[name], event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if event.contains(targets[name], event_name, listener_fn):
            event.remove(targets[name], event_name, listener_fn)
