"""
ORM-level append-only enforcement for shift check records.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule                       | Why
--------------------|----------------------------|-------------------------------
InventoryCheckItem  | No UPDATE, no DELETE       | A verification is a historical fact;
                    |                            | counts on the check are derived from it
InventoryCheck      | No DELETE                  | Completed and abandoned checks are the
                    |                            | apparatus's check history

Lifecycle transitions on ``inventory_checks`` are conditional bulk UPDATEs
issued by InventoryCheckService; those bypass mapper events and are the only
sanctioned write path for a check after insert.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update / before_delete] --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The error aborts the flush; the caller's transaction must be rolled back.

Usage:

    from firestock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent; init_engine_from_url calls it

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from firestock_kernel.exceptions import ImmutabilityViolationError
from firestock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_item_immutability(mapper, connection, target):
    """Verification rows are write-once."""
    _blocked(
        "InventoryCheckItem",
        target.id,
        "UPDATE",
        "Recorded verifications cannot be modified",
    )


def _check_item_delete(mapper, connection, target):
    _blocked(
        "InventoryCheckItem",
        target.id,
        "DELETE",
        "Recorded verifications cannot be deleted",
    )


def _check_inventory_check_delete(mapper, connection, target):
    _blocked(
        "InventoryCheck",
        target.id,
        "DELETE",
        "Inventory checks are kept as history and cannot be deleted",
    )


def _listeners():
    from firestock_kernel.models.inventory_check import InventoryCheck
    from firestock_kernel.models.inventory_check_item import InventoryCheckItem

    return [
        (InventoryCheckItem, "before_update", _check_item_immutability),
        (InventoryCheckItem, "before_delete", _check_item_delete),
        (InventoryCheck, "before_delete", _check_inventory_check_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register the append-only listeners.

    Safe to call more than once; already registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that need to bypass the rule.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
