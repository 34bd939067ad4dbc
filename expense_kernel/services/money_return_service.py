"""
MoneyReturnService -- recipients handing cash back to a cashier.

Responsibility:
    Creates, approves and rejects money return requests.  Approval moves
    the amount from the requester's balance to the cashier's and closes
    the requester's oldest fully covered assignments with that cashier.

Invariants enforced:
    - A request is decided exactly once (conditional write on
      ``status = 'pending'``).
    - The requester's balance is checked at creation and again at
      approval.  The approval debit also carries the ``balance >= amount``
      precondition, so a balance that drops between check and write is
      still caught.  An approval that finds the balance short rejects the
      request with a reason instead of failing silently.
    - No balance movement survives without its approval record: if the
      request cannot be marked approved after the transfer, both legs are
      reversed before the error surfaces.

Failure modes:
    - InvalidAmountError, AccountNotFoundError, ReturnRequestNotFoundError.
    - PermissionDeniedError when the deciding cashier is not the one the
      request is addressed to.
    - ReturnRequestNotPendingError when already decided.
    - InsufficientFundsError at creation or approval time.
    - DependencyFailureError / InconsistentStateError as in BalanceLedger.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import UUID

from expense_kernel.domain import notifications as templates
from expense_kernel.domain.amounts import require_positive
from expense_kernel.domain.clock import Clock
from expense_kernel.domain.dtos import (
    MoneyReturnRequest,
    ReturnApproval,
    ReturnRequestStatus,
)
from expense_kernel.domain.notifications import NotificationEvent
from expense_kernel.exceptions import (
    AccountNotFoundError,
    DependencyFailureError,
    InsufficientFundsError,
    PermissionDeniedError,
    ReturnRequestNotFoundError,
    ReturnRequestNotPendingError,
)
from expense_kernel.logging_config import LogContext, get_logger
from expense_kernel.services.assignment_tracker import MoneyAssignmentTracker
from expense_kernel.services.ledger_service import BalanceLedger
from expense_kernel.services.notification_dispatcher import NotificationDispatcher
from expense_kernel.store.accounts import AccountStore
from expense_kernel.store.money import MoneyStore

logger = get_logger("services.money_return")

INSUFFICIENT_AT_APPROVAL_REASON = "Insufficient balance at time of approval"


class MoneyReturnService:
    def __init__(
        self,
        money: MoneyStore,
        accounts: AccountStore,
        ledger: BalanceLedger,
        tracker: MoneyAssignmentTracker,
        notifications: NotificationDispatcher,
        clock: Clock,
    ):
        self._money = money
        self._accounts = accounts
        self._ledger = ledger
        self._tracker = tracker
        self._notifications = notifications
        self._clock = clock

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: UUID) -> MoneyReturnRequest:
        request = self._money.get_return_request(request_id)
        if request is None:
            raise ReturnRequestNotFoundError(str(request_id))
        return request

    def pending_requests_for_cashier(self, cashier_id: UUID) -> list[MoneyReturnRequest]:
        return self._money.pending_requests_for_cashier(cashier_id)

    def requests_for_requester(self, requester_id: UUID) -> list[MoneyReturnRequest]:
        return self._money.requests_for_requester(requester_id)

    # =========================================================================
    # Commands
    # =========================================================================

    def create_return_request(
        self,
        requester_id: UUID,
        cashier_id: UUID,
        amount: Decimal,
    ) -> MoneyReturnRequest:
        amount = require_positive(amount)
        requester = self._accounts.get(requester_id)
        if requester is None:
            raise AccountNotFoundError(str(requester_id))
        if self._accounts.get(cashier_id) is None:
            raise AccountNotFoundError(str(cashier_id))
        if amount > requester.balance:
            raise InsufficientFundsError(str(requester_id), requester.balance, amount)

        request = self._money.insert_return_request(
            requester_id, cashier_id, amount, self._clock.now()
        )
        with LogContext.bind(actor_id=requester_id):
            logger.info(
                "money_return_requested",
                extra={
                    "request_id": str(request.id),
                    "cashier_id": str(cashier_id),
                    "amount": str(amount),
                },
            )
        self._publish(
            lambda: templates.money_return_requested(
                cashier_id, requester.name or "User", amount
            )
        )
        return request

    def approve_return_request(self, request_id: UUID, cashier_id: UUID) -> ReturnApproval:
        request = self._pending_for(request_id, cashier_id, "approve")

        with LogContext.bind(actor_id=cashier_id, return_request_id=request.id):
            available = self._accounts.balance(request.requester_id)
            if available is None:
                raise AccountNotFoundError(str(request.requester_id))
            if request.amount > available:
                self._reject_insufficient(request, cashier_id, available)

            try:
                transfer = self._ledger.transfer(
                    request.requester_id,
                    cashier_id,
                    request.amount,
                    require_funds=True,
                )
            except InsufficientFundsError as exc:
                self._reject_insufficient(request, cashier_id, exc.available)

            approved_at = self._clock.now()
            try:
                marked = self._money.mark_return_approved(
                    request.id, cashier_id, approved_at
                )
            except DependencyFailureError as exc:
                self._undo_transfer(transfer, exc)
                raise
            if not marked:
                error = ReturnRequestNotPendingError(
                    str(request.id), self._current_status(request.id), "approve"
                )
                self._undo_transfer(transfer, error)
                raise error

            logger.info(
                "money_return_approved",
                extra={
                    "request_id": str(request.id),
                    "requester_id": str(request.requester_id),
                    "amount": str(request.amount),
                },
            )

            application = None
            try:
                application = self._tracker.apply_return(
                    request.requester_id,
                    cashier_id,
                    request.amount,
                    return_transaction_id=request.id,
                )
            except DependencyFailureError:
                # Approval and both balance legs stay committed
                logger.error(
                    "money_return_assignment_matching_failed",
                    extra={"request_id": str(request.id)},
                    exc_info=True,
                )

        self._publish(
            lambda: templates.money_return_approved(
                request.requester_id, self._name(cashier_id), request.amount
            )
        )
        return ReturnApproval(
            request=replace(
                request,
                status=ReturnRequestStatus.APPROVED,
                approved_at=approved_at,
                approved_by=cashier_id,
            ),
            transfer=transfer,
            application=application,
        )

    def reject_return_request(
        self,
        request_id: UUID,
        cashier_id: UUID,
        reason: str | None = None,
    ) -> MoneyReturnRequest:
        request = self._pending_for(request_id, cashier_id, "reject")
        rejected_at = self._clock.now()
        if not self._money.mark_return_rejected(
            request.id, cashier_id, rejected_at, reason or None
        ):
            raise ReturnRequestNotPendingError(
                str(request.id), self._current_status(request.id), "reject"
            )

        with LogContext.bind(actor_id=cashier_id, return_request_id=request.id):
            logger.info(
                "money_return_rejected",
                extra={"request_id": str(request.id), "reason": reason},
            )
        self._publish(
            lambda: templates.money_return_rejected(
                request.requester_id, self._name(cashier_id), request.amount, reason
            )
        )
        return replace(
            request,
            status=ReturnRequestStatus.REJECTED,
            rejected_at=rejected_at,
            rejected_by=cashier_id,
            rejection_reason=reason or None,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _pending_for(
        self,
        request_id: UUID,
        cashier_id: UUID,
        action: str,
    ) -> MoneyReturnRequest:
        request = self.get_request(request_id)
        if request.cashier_id != cashier_id:
            raise PermissionDeniedError(
                str(cashier_id),
                action,
                "Return request is addressed to a different cashier",
            )
        if not request.is_pending:
            raise ReturnRequestNotPendingError(
                str(request.id), request.status.value, action
            )
        return request

    def _current_status(self, request_id: UUID) -> str:
        current = self._money.get_return_request(request_id)
        return current.status.value if current else "missing"

    def _reject_insufficient(
        self,
        request: MoneyReturnRequest,
        cashier_id: UUID,
        available: Decimal,
    ) -> None:
        """Reject the request for lack of funds, then raise InsufficientFundsError."""
        rejected = self._money.mark_return_rejected(
            request.id, cashier_id, self._clock.now(), INSUFFICIENT_AT_APPROVAL_REASON
        )
        if not rejected:
            raise ReturnRequestNotPendingError(
                str(request.id), self._current_status(request.id), "approve"
            )
        logger.info(
            "money_return_rejected_insufficient_balance",
            extra={
                "request_id": str(request.id),
                "available": str(available),
                "requested": str(request.amount),
            },
        )
        self._publish(
            lambda: templates.money_return_rejected(
                request.requester_id,
                self._name(cashier_id),
                request.amount,
                INSUFFICIENT_AT_APPROVAL_REASON,
            )
        )
        raise InsufficientFundsError(str(request.requester_id), available, request.amount)

    def _undo_transfer(self, transfer, original: Exception) -> None:
        # Reverse in the opposite order of application
        self._ledger.compensate("money_return_approve", transfer.credit, original)
        self._ledger.compensate("money_return_approve", transfer.debit, original)
        logger.warning(
            "money_return_transfer_reversed",
            extra={"amount": str(-transfer.debit.delta)},
        )

    def _name(self, account_id: UUID) -> str:
        return self._accounts.names([account_id]).get(account_id, "Cashier")

    def _publish(self, build) -> None:
        try:
            event: NotificationEvent = build()
        except DependencyFailureError:
            logger.warning("notification_build_failed", exc_info=True)
            return
        self._notifications.dispatch(event)
