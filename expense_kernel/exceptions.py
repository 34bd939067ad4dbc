"""
Typed Exception Hierarchy for the Expense Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every outcome of a workflow operation that is not a success must be
renderable by the caller without parsing message strings.  Each exception
therefore carries:

  1. A class-level ``code`` (machine-readable, API-safe).
  2. Structured attributes (claim id, amount, limit, balance, ...).
  3. A human-readable message suitable for display.

Example:

    try:
        controller.approve(claim_id, engineer_id)
    except LimitExceededError as e:
        api_response(code=e.code, amount=e.amount, limit=e.limit)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ExpenseKernelError (base)
    |
    +-- PermissionDeniedError
    |
    +-- InvalidStateTransitionError
    |   +-- ClaimAlreadyApprovedError
    |   +-- ClaimAlreadyRejectedError
    |   +-- ReturnRequestNotPendingError
    |
    +-- LimitExceededError
    +-- InsufficientFundsError
    +-- InvalidAmountError
    |
    +-- NotFoundError
    |   +-- ClaimNotFoundError
    |   +-- AccountNotFoundError
    |   +-- ReturnRequestNotFoundError
    |
    +-- DependencyFailureError
    +-- InconsistentStateError
    |
    +-- ImmutabilityViolationError

===============================================================================
PROPAGATION
===============================================================================

Everything except ``DependencyFailureError`` and ``InconsistentStateError``
is an expected, user-facing business outcome.

``DependencyFailureError`` means a store or resolver call failed for
reasons outside the business rules; the raising operation has already run
its compensation path before surfacing it.

``InconsistentStateError`` means the compensation itself failed (or a
committed transition could not be audited).  It is never merged with the
original error: both are attached so operations can alert on it.
"""

from decimal import Decimal


class ExpenseKernelError(Exception):
    """
    Base exception for all expense kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "EXPENSE_KERNEL_ERROR"


# Authorization


class PermissionDeniedError(ExpenseKernelError):
    """Actor lacks the role, ownership or assignment the action requires."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(reason)


# State transitions


class InvalidStateTransitionError(ExpenseKernelError):
    """Entity is not in a state from which the requested action is legal."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_id: str,
        current_status: str,
        action: str,
        message: str | None = None,
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message
            or f"Cannot {action} {entity_id}: current status is '{current_status}'"
        )


class ClaimAlreadyApprovedError(InvalidStateTransitionError):
    """The claim is already approved; no further transition is possible."""

    code: str = "CLAIM_ALREADY_APPROVED"

    def __init__(self, claim_id: str, action: str):
        message = (
            "Approved expenses cannot be rejected"
            if action == "reject"
            else "This expense is already approved"
        )
        super().__init__(claim_id, "approved", action, message)


class ClaimAlreadyRejectedError(InvalidStateTransitionError):
    """The claim is already rejected."""

    code: str = "CLAIM_ALREADY_REJECTED"

    def __init__(self, claim_id: str, action: str):
        super().__init__(
            claim_id, "rejected", action, "This expense is already rejected"
        )


class ReturnRequestNotPendingError(InvalidStateTransitionError):
    """The money return request has already been decided."""

    code: str = "RETURN_REQUEST_NOT_PENDING"

    def __init__(self, request_id: str, current_status: str, action: str):
        super().__init__(
            request_id,
            current_status,
            action,
            f"Return request {request_id} was already {current_status}",
        )


# Money rules


class LimitExceededError(ExpenseKernelError):
    """An engineer tried to approve a claim above the approval limit."""

    code: str = "LIMIT_EXCEEDED"

    def __init__(self, claim_id: str, amount: Decimal, limit: Decimal):
        self.claim_id = claim_id
        self.amount = amount
        self.limit = limit
        super().__init__(
            f"This expense ({amount}) exceeds the engineer approval limit of "
            f"{limit}. Please verify this expense instead. It will be sent to "
            f"admin for final approval."
        )


class InsufficientFundsError(ExpenseKernelError):
    """The requested amount exceeds the account's current balance."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, available: Decimal, requested: Decimal):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance. Requested {requested}, "
            f"available {available}"
        )


class InvalidAmountError(ExpenseKernelError):
    """Monetary amount must be strictly positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Amount must be greater than zero, got {amount}")


# Lookups


class NotFoundError(ExpenseKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ClaimNotFoundError(NotFoundError):
    code: str = "CLAIM_NOT_FOUND"

    def __init__(self, claim_id: str):
        self.claim_id = claim_id
        super().__init__(f"Expense claim not found: {claim_id}")


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class ReturnRequestNotFoundError(NotFoundError):
    code: str = "RETURN_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Return request not found: {request_id}")


# Infrastructure


class DependencyFailureError(ExpenseKernelError):
    """
    A store, resolver or configuration call failed outside business rules.

    Raised after the operation's compensation path (if any) has completed.
    """

    code: str = "DEPENDENCY_FAILURE"

    def __init__(self, operation: str, cause: str, message: str | None = None):
        self.operation = operation
        self.cause = cause
        super().__init__(message or f"{operation} failed: {cause}")


class InconsistentStateError(ExpenseKernelError):
    """
    A compensating write failed, leaving a partial side effect behind.

    Carries both the original failure and the compensation failure so the
    two are never merged.  Intended for operational alerting.
    """

    code: str = "INCONSISTENT_STATE"

    def __init__(
        self,
        operation: str,
        original_error: str,
        compensation_error: str,
    ):
        self.operation = operation
        self.original_error = original_error
        self.compensation_error = compensation_error
        super().__init__(
            f"{operation} left inconsistent state: {original_error}; "
            f"compensation failed: {compensation_error}"
        )


class ImmutabilityViolationError(ExpenseKernelError):
    """
    Attempted to modify or delete an immutable record.

    Audit log entries, closed money assignments and assigned transaction
    numbers can never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
