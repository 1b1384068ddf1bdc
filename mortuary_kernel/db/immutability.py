"""
ORM-level append-only enforcement.

SQLAlchemy fires ``before_update`` / ``before_delete`` before SQL reaches the
database; the listeners here raise ``ImmutabilityViolationError`` and the
flush is aborted.

Protected entities:

    Entity              | When immutable           | Why
    --------------------|--------------------------|------------------------------
    Payment             | Always                   | Total payments never decrease
    ChargeHistoryEntry  | Always                   | Audit trail of accruals
    ExtraCharge         | Once persisted as paid   | Paid lines are settled

``updated_at`` / ``updated_by_id`` may still change on any row: they are
audit metadata, not billing data.

Usage:
    register_immutability_listeners()    # once at startup
    unregister_immutability_listeners()  # TESTS ONLY
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from mortuary_kernel.exceptions import ImmutabilityViolationError
from mortuary_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


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


def _check_payment_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "Payment",
            target,
            "UPDATE",
            "Payments are append-only and cannot be modified",
            field=changed[0],
        )


def _check_payment_delete(mapper, connection, target):
    _block("Payment", target, "DELETE", "Payments are append-only and cannot be deleted")


def _check_charge_history_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "ChargeHistoryEntry",
            target,
            "UPDATE",
            "Charge history is append-only and cannot be modified",
            field=changed[0],
        )


def _check_charge_history_delete(mapper, connection, target):
    _block(
        "ChargeHistoryEntry",
        target,
        "DELETE",
        "Charge history is append-only and cannot be deleted",
    )


def _was_paid(target) -> bool:
    """True when the row was already ``paid`` before this flush."""
    status_history = get_history(target, "status")
    if status_history.deleted:
        old = status_history.deleted[0]
    elif not status_history.added:
        old = target.status
    else:
        # prior value was never loaded
        return False
    return str(getattr(old, "value", old)) == "paid"


def _check_extra_charge_update(mapper, connection, target):
    if not _was_paid(target):
        return
    changed = _changed_fields(target)
    if changed:
        _block(
            "ExtraCharge",
            target,
            "UPDATE",
            "Paid extra charges cannot be modified",
            field=changed[0],
        )


def _check_extra_charge_delete(mapper, connection, target):
    if str(getattr(target.status, "value", target.status)) == "paid":
        _block("ExtraCharge", target, "DELETE", "Paid extra charges cannot be deleted")


def _listeners():
    from mortuary_kernel.models.charge_history import ChargeHistoryEntry
    from mortuary_kernel.models.extra_charge import ExtraCharge
    from mortuary_kernel.models.payment import Payment

    return [
        (Payment, "before_update", _check_payment_update),
        (Payment, "before_delete", _check_payment_delete),
        (ChargeHistoryEntry, "before_update", _check_charge_history_update),
        (ChargeHistoryEntry, "before_delete", _check_charge_history_delete),
        (ExtraCharge, "before_update", _check_extra_charge_update),
        (ExtraCharge, "before_delete", _check_extra_charge_delete),
    ]


def register_immutability_listeners():
    """Register all append-only listeners (idempotent)."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)
    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove the append-only listeners. TESTS ONLY."""
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
