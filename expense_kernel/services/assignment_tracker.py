"""
MoneyAssignmentTracker -- cash handouts and FIFO return matching.

Responsibility:
    Records cash a cashier hands to a recipient and, when money comes
    back, closes the oldest fully covered assignments.

Invariants enforced:
    - Recording an assignment has no balance effect.
    - Assignments close oldest first, only when fully covered, and each
      closes at most once (conditional write on ``is_returned = false``).
    - If another return closes a planned assignment first, its amount is
      not subtracted and the plan is recomputed over what is still open.
"""

from decimal import Decimal
from uuid import UUID

from expense_kernel.domain.amounts import require_positive
from expense_kernel.domain.assignment_matching import match_return
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.dtos import MoneyAssignment, ReturnApplication
from expense_kernel.domain.roles import Role
from expense_kernel.exceptions import AccountNotFoundError, PermissionDeniedError
from expense_kernel.logging_config import get_logger
from expense_kernel.services.authorization import RoleResolver
from expense_kernel.store.money import MoneyStore

logger = get_logger("services.assignments")


class MoneyAssignmentTracker:
    def __init__(self, money: MoneyStore, roles: RoleResolver, clock: Clock):
        self._money = money
        self._roles = roles
        self._clock = clock

    def record_assignment(
        self,
        cashier_id: UUID,
        recipient_id: UUID,
        amount: Decimal,
    ) -> MoneyAssignment:
        amount = require_positive(amount)
        cashier_roles = self._roles.roles_of(cashier_id)
        if not (cashier_roles.is_cashier or cashier_roles.is_admin):
            raise PermissionDeniedError(
                str(cashier_id),
                "record_assignment",
                "Only cashiers or admins can assign money",
            )
        if not self._roles.roles_of(recipient_id):
            raise AccountNotFoundError(str(recipient_id))

        assignment = self._money.insert_assignment(
            cashier_id=cashier_id,
            recipient_id=recipient_id,
            amount=amount,
            assigned_at=self._clock.now(),
        )
        logger.info(
            "money_assigned",
            extra={
                "assignment_id": str(assignment.id),
                "cashier_id": str(cashier_id),
                "recipient_id": str(recipient_id),
                "amount": str(amount),
            },
        )
        return assignment

    def open_assignments(
        self,
        recipient_id: UUID,
        cashier_id: UUID | None = None,
    ) -> list[MoneyAssignment]:
        return self._money.open_assignments(recipient_id, cashier_id)

    def original_cashier_for(self, recipient_id: UUID) -> UUID | None:
        """Cashier of the recipient's oldest open assignment, if any."""
        open_rows = self._money.open_assignments(recipient_id)
        return open_rows[0].cashier_id if open_rows else None

    def apply_return(
        self,
        recipient_id: UUID,
        cashier_id: UUID,
        amount: Decimal,
        return_transaction_id: UUID | None = None,
    ) -> ReturnApplication:
        remaining = require_positive(amount)
        closed: list[UUID] = []
        returned_at = self._clock.now()

        while True:
            candidates = [
                a.as_open()
                for a in self._money.open_assignments(recipient_id, cashier_id)
            ]
            plan = match_return(candidates, remaining)
            if not plan.closed:
                break

            conflict = False
            for assignment in plan.closed:
                if self._money.close_assignment(
                    assignment.assignment_id, returned_at, return_transaction_id
                ):
                    closed.append(assignment.assignment_id)
                    remaining -= assignment.amount
                else:
                    logger.info(
                        "assignment_already_closed",
                        extra={"assignment_id": str(assignment.assignment_id)},
                    )
                    conflict = True
                    break
            if not conflict:
                break

        logger.info(
            "money_return_applied",
            extra={
                "recipient_id": str(recipient_id),
                "cashier_id": str(cashier_id),
                "amount": str(amount),
                "closed_count": len(closed),
                "remaining": str(remaining),
            },
        )
        return ReturnApplication(tuple(closed), remaining)
