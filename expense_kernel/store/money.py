"""
Module: expense_kernel.store.money
Responsibility: Money assignment and money return request persistence.

Invariants enforced:
    - Closing an assignment is ``UPDATE ... WHERE id = :id AND
      is_returned = false``; an assignment closes at most once.
    - Deciding a return request is ``UPDATE ... WHERE id = :id AND
      status = 'pending'``; a request is decided at most once and only the
      fields of the chosen outcome are written.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from expense_kernel.domain.dtos import (
    MoneyAssignment,
    MoneyReturnRequest,
    ReturnRequestStatus,
)
from expense_kernel.models.money import MoneyAssignmentModel, MoneyReturnRequestModel
from expense_kernel.store.base import BaseStore


class MoneyStore(BaseStore):
    """Assignments and return requests."""

    # Assignments

    def insert_assignment(
        self,
        cashier_id: UUID,
        recipient_id: UUID,
        amount: Decimal,
        assigned_at: datetime,
    ) -> MoneyAssignment:
        with self._scope("assignment_insert") as session:
            model = MoneyAssignmentModel(
                cashier_id=cashier_id,
                recipient_id=recipient_id,
                amount=amount,
                assigned_at=assigned_at,
                is_returned=False,
            )
            session.add(model)
            session.flush()
            return MoneyAssignment.from_model(model)

    def get_assignment(self, assignment_id: UUID) -> MoneyAssignment | None:
        with self._scope("assignment_get") as session:
            model = session.get(MoneyAssignmentModel, assignment_id)
            return MoneyAssignment.from_model(model) if model else None

    def open_assignments(
        self,
        recipient_id: UUID,
        cashier_id: UUID | None = None,
    ) -> list[MoneyAssignment]:
        """Open assignments for a recipient, oldest first."""
        stmt = (
            select(MoneyAssignmentModel)
            .where(MoneyAssignmentModel.recipient_id == recipient_id)
            .where(MoneyAssignmentModel.is_returned.is_(False))
            .order_by(MoneyAssignmentModel.assigned_at, MoneyAssignmentModel.id)
        )
        if cashier_id is not None:
            stmt = stmt.where(MoneyAssignmentModel.cashier_id == cashier_id)

        with self._scope("assignment_open") as session:
            return [MoneyAssignment.from_model(m) for m in session.execute(stmt).scalars()]

    def close_assignment(
        self,
        assignment_id: UUID,
        returned_at: datetime,
        return_transaction_id: UUID | None,
    ) -> bool:
        stmt = (
            update(MoneyAssignmentModel)
            .where(MoneyAssignmentModel.id == assignment_id)
            .where(MoneyAssignmentModel.is_returned.is_(False))
            .values(
                is_returned=True,
                returned_at=returned_at,
                return_transaction_id=return_transaction_id,
            )
            .execution_options(synchronize_session=False)
        )
        with self._scope("assignment_close") as session:
            return session.execute(stmt).rowcount == 1

    # Return requests

    def insert_return_request(
        self,
        requester_id: UUID,
        cashier_id: UUID,
        amount: Decimal,
        requested_at: datetime,
    ) -> MoneyReturnRequest:
        with self._scope("return_request_insert") as session:
            model = MoneyReturnRequestModel(
                requester_id=requester_id,
                cashier_id=cashier_id,
                amount=amount,
                status=ReturnRequestStatus.PENDING.value,
                requested_at=requested_at,
            )
            session.add(model)
            session.flush()
            return MoneyReturnRequest.from_model(model)

    def get_return_request(self, request_id: UUID) -> MoneyReturnRequest | None:
        with self._scope("return_request_get") as session:
            model = session.get(MoneyReturnRequestModel, request_id)
            return MoneyReturnRequest.from_model(model) if model else None

    def _decide(self, operation: str, request_id: UUID, **values) -> bool:
        stmt = (
            update(MoneyReturnRequestModel)
            .where(MoneyReturnRequestModel.id == request_id)
            .where(MoneyReturnRequestModel.status == ReturnRequestStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._scope(operation) as session:
            return session.execute(stmt).rowcount == 1

    def mark_return_approved(
        self,
        request_id: UUID,
        approved_by: UUID,
        approved_at: datetime,
    ) -> bool:
        return self._decide(
            "return_request_approve",
            request_id,
            status=ReturnRequestStatus.APPROVED.value,
            approved_by=approved_by,
            approved_at=approved_at,
        )

    def mark_return_rejected(
        self,
        request_id: UUID,
        rejected_by: UUID,
        rejected_at: datetime,
        reason: str | None,
    ) -> bool:
        return self._decide(
            "return_request_reject",
            request_id,
            status=ReturnRequestStatus.REJECTED.value,
            rejected_by=rejected_by,
            rejected_at=rejected_at,
            rejection_reason=reason,
        )

    def pending_requests_for_cashier(self, cashier_id: UUID) -> list[MoneyReturnRequest]:
        """Pending requests addressed to a cashier, newest first."""
        with self._scope("return_request_pending_for_cashier") as session:
            rows = session.execute(
                select(MoneyReturnRequestModel)
                .where(MoneyReturnRequestModel.cashier_id == cashier_id)
                .where(
                    MoneyReturnRequestModel.status == ReturnRequestStatus.PENDING.value
                )
                .order_by(MoneyReturnRequestModel.requested_at.desc())
            ).scalars()
            return [MoneyReturnRequest.from_model(m) for m in rows]

    def requests_for_requester(self, requester_id: UUID) -> list[MoneyReturnRequest]:
        """Every request a recipient has made, newest first."""
        with self._scope("return_request_for_requester") as session:
            rows = session.execute(
                select(MoneyReturnRequestModel)
                .where(MoneyReturnRequestModel.requester_id == requester_id)
                .order_by(MoneyReturnRequestModel.requested_at.desc())
            ).scalars()
            return [MoneyReturnRequest.from_model(m) for m in rows]
