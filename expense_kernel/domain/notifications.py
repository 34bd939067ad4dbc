"""
Notification events and message templates.

The controller and the return service build a ``NotificationEvent`` after
each committed transition and hand it to the dispatcher.  Building the
event is pure; delivery is the dispatcher's concern.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from expense_kernel.domain.amounts import format_amount


class NotificationType(str, Enum):
    EXPENSE_SUBMITTED = "expense_submitted"
    EXPENSE_VERIFIED = "expense_verified"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    MONEY_RETURN_REQUESTED = "money_return_requested"
    MONEY_RETURN_APPROVED = "money_return_approved"
    MONEY_RETURN_REJECTED = "money_return_rejected"


@dataclass(frozen=True)
class NotificationEvent:
    """One message addressed to one or more accounts."""

    recipients: tuple[UUID, ...]
    type: NotificationType
    title: str
    message: str
    claim_id: UUID | None = None


def _event(
    recipients: UUID | Iterable[UUID],
    type_: NotificationType,
    title: str,
    message: str,
    claim_id: UUID | None = None,
) -> NotificationEvent:
    if isinstance(recipients, UUID):
        recipients = (recipients,)
    # Preserve order, drop duplicates (an admin may appear twice when routing)
    unique = tuple(dict.fromkeys(recipients))
    return NotificationEvent(unique, type_, title, message, claim_id)


def _with_reason(text: str, reason: str | None) -> str:
    return f"{text}. Reason: {reason}" if reason else text


# Claim lifecycle


def expense_submitted(
    recipients: UUID | Iterable[UUID],
    claim_id: UUID,
    claim_title: str,
    submitter_name: str,
) -> NotificationEvent:
    return _event(
        recipients,
        NotificationType.EXPENSE_SUBMITTED,
        "New Expense Claim",
        f'{submitter_name} has submitted a new expense: "{claim_title}"',
        claim_id,
    )


def expense_verified(
    owner_id: UUID,
    claim_id: UUID,
    claim_title: str,
    verifier_name: str,
) -> NotificationEvent:
    return _event(
        owner_id,
        NotificationType.EXPENSE_VERIFIED,
        "Expense Verified",
        f'Your expense "{claim_title}" has been verified by {verifier_name}',
        claim_id,
    )


def expense_awaiting_approval(
    admin_ids: Iterable[UUID],
    claim_id: UUID,
    claim_title: str,
    amount: Decimal,
    verifier_name: str,
    owner_name: str,
) -> NotificationEvent:
    return _event(
        admin_ids,
        NotificationType.EXPENSE_VERIFIED,
        "Expense Verified - Awaiting Approval",
        f'{verifier_name} has verified "{claim_title}" ({format_amount(amount)}) '
        f"from {owner_name}. Please review and approve.",
        claim_id,
    )


def expense_approved(
    owner_id: UUID,
    claim_id: UUID,
    claim_title: str,
    amount: Decimal,
    approver_name: str,
) -> NotificationEvent:
    return _event(
        owner_id,
        NotificationType.EXPENSE_APPROVED,
        "Expense Approved",
        f'Your expense "{claim_title}" ({format_amount(amount)}) '
        f"has been approved by {approver_name}",
        claim_id,
    )


def engineer_expense_approved(
    owner_id: UUID,
    claim_id: UUID,
    claim_title: str,
    amount: Decimal,
    admin_name: str,
) -> NotificationEvent:
    """Approval message for claims owned by an engineer (always admin-approved)."""
    return _event(
        owner_id,
        NotificationType.EXPENSE_APPROVED,
        "Expense Approved",
        f'Your expense "{claim_title}" ({format_amount(amount)}) has been '
        f"approved by admin {admin_name}. The amount has been deducted "
        f"from your balance.",
        claim_id,
    )


def expense_rejected(
    owner_id: UUID,
    claim_id: UUID,
    claim_title: str,
    rejector_name: str,
    comment: str | None = None,
) -> NotificationEvent:
    return _event(
        owner_id,
        NotificationType.EXPENSE_REJECTED,
        "Expense Rejected",
        _with_reason(
            f'Your expense "{claim_title}" has been rejected by {rejector_name}',
            comment,
        ),
        claim_id,
    )


# Money returns


def money_return_requested(
    cashier_id: UUID,
    requester_name: str,
    amount: Decimal,
) -> NotificationEvent:
    return _event(
        cashier_id,
        NotificationType.MONEY_RETURN_REQUESTED,
        "Money Return Request",
        f"{requester_name} wants to return {format_amount(amount)} to you. "
        f"Please approve or reject this request.",
    )


def money_return_approved(
    requester_id: UUID,
    cashier_name: str,
    amount: Decimal,
) -> NotificationEvent:
    return _event(
        requester_id,
        NotificationType.MONEY_RETURN_APPROVED,
        "Money Return Approved",
        f"Your return request of {format_amount(amount)} has been approved by "
        f"{cashier_name}. Amount deducted from your balance.",
    )


def money_return_rejected(
    requester_id: UUID,
    cashier_name: str,
    amount: Decimal,
    reason: str | None = None,
) -> NotificationEvent:
    return _event(
        requester_id,
        NotificationType.MONEY_RETURN_REJECTED,
        "Money Return Rejected",
        _with_reason(
            f"Your return request of {format_amount(amount)} has been rejected "
            f"by {cashier_name}",
            reason,
        ),
    )
