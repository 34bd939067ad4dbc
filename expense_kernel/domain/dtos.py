"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable snapshots of claims, accounts, money assignments, return
    requests and audit entries as they cross the store boundary, plus the
    result records returned by the ledger and the money return flow.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only
    from ``store/``; services and domain logic never see ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from expense_kernel.domain.assignment_matching import OpenAssignment
from expense_kernel.domain.lifecycle import ClaimStatus
from expense_kernel.domain.roles import RoleSet

if TYPE_CHECKING:
    from expense_kernel.models.account import AccountModel
    from expense_kernel.models.audit_log import AuditLogModel
    from expense_kernel.models.claim import ClaimModel
    from expense_kernel.models.money import (
        MoneyAssignmentModel,
        MoneyReturnRequestModel,
    )
    from expense_kernel.models.notification import NotificationModel


class ReturnRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Claim:
    id: UUID
    owner_id: UUID
    title: str
    amount: Decimal
    category: str
    status: ClaimStatus
    transaction_number: str | None = None
    assigned_reviewer_id: UUID | None = None
    purpose: str | None = None
    reviewer_comment: str | None = None
    admin_comment: str | None = None

    @classmethod
    def from_model(cls, model: ClaimModel) -> Claim:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            title=model.title,
            amount=Decimal(model.amount),
            category=model.category,
            status=ClaimStatus(model.status),
            transaction_number=model.transaction_number,
            assigned_reviewer_id=model.assigned_reviewer_id,
            purpose=model.purpose,
            reviewer_comment=model.reviewer_comment,
            admin_comment=model.admin_comment,
        )


@dataclass(frozen=True)
class Account:
    id: UUID
    name: str
    balance: Decimal
    roles: RoleSet
    reporting_engineer_id: UUID | None = None
    assigned_cashier_id: UUID | None = None
    cashier_assigned_engineer_id: UUID | None = None
    cashier_location_id: UUID | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> Account:
        return cls(
            id=model.id,
            name=model.name,
            balance=Decimal(model.balance),
            roles=model.role_set,
            reporting_engineer_id=model.reporting_engineer_id,
            assigned_cashier_id=model.assigned_cashier_id,
            cashier_assigned_engineer_id=model.cashier_assigned_engineer_id,
            cashier_location_id=model.cashier_location_id,
        )


@dataclass(frozen=True)
class MoneyAssignment:
    id: UUID
    cashier_id: UUID
    recipient_id: UUID
    amount: Decimal
    assigned_at: datetime
    is_returned: bool = False
    returned_at: datetime | None = None
    return_transaction_id: UUID | None = None

    def as_open(self) -> OpenAssignment:
        return OpenAssignment(self.id, self.amount, self.assigned_at)

    @classmethod
    def from_model(cls, model: MoneyAssignmentModel) -> MoneyAssignment:
        return cls(
            id=model.id,
            cashier_id=model.cashier_id,
            recipient_id=model.recipient_id,
            amount=Decimal(model.amount),
            assigned_at=model.assigned_at,
            is_returned=model.is_returned,
            returned_at=model.returned_at,
            return_transaction_id=model.return_transaction_id,
        )


@dataclass(frozen=True)
class MoneyReturnRequest:
    id: UUID
    requester_id: UUID
    cashier_id: UUID
    amount: Decimal
    status: ReturnRequestStatus
    requested_at: datetime
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    rejected_at: datetime | None = None
    rejected_by: UUID | None = None
    rejection_reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ReturnRequestStatus.PENDING

    @classmethod
    def from_model(cls, model: MoneyReturnRequestModel) -> MoneyReturnRequest:
        return cls(
            id=model.id,
            requester_id=model.requester_id,
            cashier_id=model.cashier_id,
            amount=Decimal(model.amount),
            status=ReturnRequestStatus(model.status),
            requested_at=model.requested_at,
            approved_at=model.approved_at,
            approved_by=model.approved_by,
            rejected_at=model.rejected_at,
            rejected_by=model.rejected_by,
            rejection_reason=model.rejection_reason,
        )


@dataclass(frozen=True)
class AuditLogEntry:
    id: UUID
    claim_id: UUID
    actor_id: UUID
    action: str
    comment: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, model: AuditLogModel) -> AuditLogEntry:
        return cls(
            id=model.id,
            claim_id=model.claim_id,
            actor_id=model.actor_id,
            action=model.action,
            comment=model.comment,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class StoredNotification:
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    claim_id: UUID | None
    is_read: bool
    created_at: datetime

    @classmethod
    def from_model(cls, model: NotificationModel) -> StoredNotification:
        return cls(
            id=model.id,
            user_id=model.user_id,
            type=model.type,
            title=model.title,
            message=model.message,
            claim_id=model.claim_id,
            is_read=model.is_read,
            created_at=model.created_at,
        )


# Results


@dataclass(frozen=True)
class BalanceChange:
    """A committed balance delta and the balance it produced."""

    account_id: UUID
    delta: Decimal
    balance: Decimal


@dataclass(frozen=True)
class TransferResult:
    debit: BalanceChange
    credit: BalanceChange


@dataclass(frozen=True)
class ReturnApplication:
    """Assignments closed by a money return and the uncovered remainder."""

    closed_assignment_ids: tuple[UUID, ...]
    remaining: Decimal


@dataclass(frozen=True)
class ReturnApproval:
    request: MoneyReturnRequest
    transfer: TransferResult
    application: ReturnApplication | None
