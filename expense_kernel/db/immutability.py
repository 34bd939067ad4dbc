"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The store never issues an UPDATE or DELETE against an audit row, a closed
money assignment, a claim's assigned transaction number, or a decided
return request: every store write carries a pre-image filter that
excludes those rows.  This module catches the same mistakes when they are
made through ORM objects instead of store statements:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Core ``update()``/``delete()`` statements, which is how every store write
is issued, bypass mapper events entirely.  For those the store's
conditional filters apply, and the database triggers in db/triggers.py
reject any statement that still reaches a protected row.  These listeners
only guard ORM flushes.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable                 | Rule
-----------------------|--------------------------------|------------------------------
AuditLogModel          | ALWAYS (from creation)         | Append-only trail
ClaimModel             | transaction_number once set    | Number assigned exactly once
MoneyAssignmentModel   | After is_returned = true       | Closed exactly once
MoneyReturnRequestModel| After status leaves pending    | Decided exactly once

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url``.  To temporarily disable (TESTS ONLY):

    from expense_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from expense_kernel.exceptions import ImmutabilityViolationError
from expense_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
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


def _previous_value(target, attribute: str):
    """Value of ``attribute`` as last loaded from the database."""
    history = get_history(target, attribute)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


# Audit log


def _check_audit_log_immutability(mapper, connection, target):
    _blocked("AuditLog", target.id, "UPDATE", "Audit log entries cannot be modified")


def _check_audit_log_delete(mapper, connection, target):
    _blocked("AuditLog", target.id, "DELETE", "Audit log entries cannot be deleted")


# Claim transaction number


def _check_claim_transaction_number(mapper, connection, target):
    history = get_history(target, "transaction_number")
    if not history.has_changes():
        return
    previous = history.deleted[0] if history.deleted else None
    if previous is not None:
        _blocked(
            "Claim",
            target.id,
            "UPDATE",
            f"Transaction number {previous} is already assigned and cannot change",
        )


# Money assignments


def _check_money_assignment_immutability(mapper, connection, target):
    if _previous_value(target, "is_returned"):
        _blocked(
            "MoneyAssignment",
            target.id,
            "UPDATE",
            "Closed money assignments cannot be modified",
        )


def _check_money_assignment_delete(mapper, connection, target):
    if _previous_value(target, "is_returned"):
        _blocked(
            "MoneyAssignment",
            target.id,
            "DELETE",
            "Closed money assignments cannot be deleted",
        )


# Money return requests


def _check_return_request_immutability(mapper, connection, target):
    previous = _previous_value(target, "status")
    if previous is not None and previous != "pending":
        _blocked(
            "MoneyReturnRequest",
            target.id,
            "UPDATE",
            f"Return request was already {previous}",
        )


def _listeners():
    from expense_kernel.models.audit_log import AuditLogModel
    from expense_kernel.models.claim import ClaimModel
    from expense_kernel.models.money import (
        MoneyAssignmentModel,
        MoneyReturnRequestModel,
    )

    return [
        (AuditLogModel, "before_update", _check_audit_log_immutability),
        (AuditLogModel, "before_delete", _check_audit_log_delete),
        (ClaimModel, "before_update", _check_claim_transaction_number),
        (MoneyAssignmentModel, "before_update", _check_money_assignment_immutability),
        (MoneyAssignmentModel, "before_delete", _check_money_assignment_delete),
        (MoneyReturnRequestModel, "before_update", _check_return_request_immutability),
    ]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already registered is skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally perform a forbidden
    operation.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
