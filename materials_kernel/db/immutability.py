"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger and the request audit trail are append-only. A balance is
only reproducible if no movement is ever edited, and an approval trail is
only evidence if no step is ever rewritten. Corrections are compensating
entries, never updates.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |                                                  ^
         v                                                  |
    [before_delete event] --> _check_*_delete() ------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable              | Why
------------------|-----------------------------|---------------------------------
StockMovement     | ALWAYS (from creation)      | Ledger is the source of truth
WorkflowRecord    | ALWAYS (from creation)      | Audit trail of transitions
DispatchLine      | ALWAYS (from creation)      | Quantities bound at dispatch
LocationMovement  | ALWAYS (from creation)      | Placement / split audit trail
Dispatch          | After status = received     | Receipt closes the dispatch
MaterialRequest   | Never deletable             | Rejected requests kept for audit
Material          | Never deletable             | Deactivate instead (soft delete)

===============================================================================
USAGE
===============================================================================

Called by init_engine_from_url(); calling it again is harmless:

    from materials_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from materials_kernel.exceptions import ImmutabilityViolationError
from materials_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata that may change on an otherwise frozen row.
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _append_only_update(mapper, connection, target):
    entity_type = type(target).__name__
    _block(
        entity_type,
        target,
        "UPDATE",
        f"{entity_type} records are append-only and cannot be modified",
    )


def _append_only_delete(mapper, connection, target):
    entity_type = type(target).__name__
    _block(
        entity_type,
        target,
        "DELETE",
        f"{entity_type} records are append-only and cannot be deleted",
    )


def _never_delete(mapper, connection, target):
    entity_type = type(target).__name__
    _block(
        entity_type,
        target,
        "DELETE",
        f"{entity_type} records are retained for audit and cannot be deleted",
    )


def _check_dispatch_update(mapper, connection, target):
    """
    Allow the dispatched -> received transition, block everything after it.

    Same "was it already final" logic as any status-frozen record: if the
    status history shows the row was ``received`` before this flush, every
    non-audit field is frozen.
    """
    from materials_kernel.models.dispatch import DispatchStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        was_received = status_history.deleted[0] == DispatchStatus.RECEIVED.value
    elif not status_history.added:
        was_received = target.status == DispatchStatus.RECEIVED.value
    else:
        was_received = False

    if not was_received:
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "Dispatch",
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a received dispatch",
                field=attr.key,
            )


def _listeners():
    from materials_kernel.models.dispatch import Dispatch, DispatchLine
    from materials_kernel.models.location import LocationMovement
    from materials_kernel.models.material import Material
    from materials_kernel.models.movement import StockMovement
    from materials_kernel.models.request import MaterialRequest, WorkflowRecord

    return (
        (StockMovement, "before_update", _append_only_update),
        (StockMovement, "before_delete", _append_only_delete),
        (WorkflowRecord, "before_update", _append_only_update),
        (WorkflowRecord, "before_delete", _append_only_delete),
        (DispatchLine, "before_update", _append_only_update),
        (DispatchLine, "before_delete", _append_only_delete),
        (LocationMovement, "before_update", _append_only_update),
        (LocationMovement, "before_delete", _append_only_delete),
        (Dispatch, "before_update", _check_dispatch_update),
        (Dispatch, "before_delete", _never_delete),
        (MaterialRequest, "before_delete", _never_delete),
        (Material, "before_delete", _never_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener that is already registered is skipped.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
