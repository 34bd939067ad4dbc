"""
BalanceLedger -- signed balance mutations with compensation.

Responsibility:
    Debits, credits and two-legged transfers on account balances.

Architecture position:
    Kernel > Services.  Called by the lifecycle controller (debit on
    approval) and the money return service (transfer on return).

Invariants enforced:
    - Every balance change is one atomic ``balance = balance + :delta``
      statement (AccountStore.apply_delta).  Concurrent debits never lose
      an update.
    - A plain debit is never blocked by insufficient funds; balances may
      go negative.  ``require_funds=True`` adds a ``balance >= amount``
      precondition to the same statement (used by money returns).
    - transfer: debit(from) then credit(to).  If the credit fails the
      debit is reversed before the error surfaces.  No partial transfer
      survives a call.

Failure modes:
    - InvalidAmountError for amount <= 0.
    - AccountNotFoundError when no account row matched.
    - InsufficientFundsError when ``require_funds`` and the balance is
      short at write time.
    - DependencyFailureError from the store.
    - InconsistentStateError when reversing the debit leg also fails.
"""

from decimal import Decimal
from uuid import UUID

from expense_kernel.domain.amounts import require_positive
from expense_kernel.domain.dtos import BalanceChange, TransferResult
from expense_kernel.exceptions import (
    AccountNotFoundError,
    DependencyFailureError,
    ExpenseKernelError,
    InconsistentStateError,
    InsufficientFundsError,
)
from expense_kernel.logging_config import get_logger
from expense_kernel.store.accounts import AccountStore

logger = get_logger("services.ledger")


class BalanceLedger:
    def __init__(self, accounts: AccountStore):
        self._accounts = accounts

    def _apply(
        self,
        account_id: UUID,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> BalanceChange:
        new_balance = self._accounts.apply_delta(account_id, delta, minimum_balance)
        if new_balance is None:
            current = self._accounts.balance(account_id)
            if current is None:
                raise AccountNotFoundError(str(account_id))
            raise InsufficientFundsError(str(account_id), current, -delta)

        logger.info(
            "ledger_delta_applied",
            extra={
                "account_id": str(account_id),
                "delta": str(delta),
                "balance": str(new_balance),
            },
        )
        return BalanceChange(account_id, delta, new_balance)

    def debit(
        self,
        account_id: UUID,
        amount: Decimal,
        require_funds: bool = False,
    ) -> BalanceChange:
        amount = require_positive(amount)
        return self._apply(
            account_id, -amount, minimum_balance=amount if require_funds else None
        )

    def credit(self, account_id: UUID, amount: Decimal) -> BalanceChange:
        amount = require_positive(amount)
        return self._apply(account_id, amount)

    def transfer(
        self,
        from_id: UUID,
        to_id: UUID,
        amount: Decimal,
        require_funds: bool = False,
    ) -> TransferResult:
        amount = require_positive(amount)
        debit = self.debit(from_id, amount, require_funds=require_funds)
        try:
            credit = self.credit(to_id, amount)
        except ExpenseKernelError as exc:
            self.compensate(
                "ledger_transfer",
                debit,
                original=exc,
            )
            raise
        logger.info(
            "ledger_transfer_completed",
            extra={
                "from_account_id": str(from_id),
                "to_account_id": str(to_id),
                "amount": str(amount),
            },
        )
        return TransferResult(debit=debit, credit=credit)

    def reverse(self, change: BalanceChange) -> BalanceChange:
        """Apply the inverse of a committed change."""
        return self._apply(change.account_id, -change.delta)

    def compensate(
        self,
        operation: str,
        change: BalanceChange,
        original: Exception,
    ) -> None:
        """
        Reverse a committed leg after a later step of ``operation`` failed.

        Raises InconsistentStateError (chained to the reversal failure) if
        the reversal itself cannot be written.
        """
        logger.warning(
            "ledger_compensation_started",
            extra={
                "operation": operation,
                "account_id": str(change.account_id),
                "delta": str(change.delta),
                "original_error": str(original),
            },
        )
        try:
            self.reverse(change)
        except (DependencyFailureError, AccountNotFoundError) as comp_exc:
            logger.critical(
                "ledger_compensation_failed",
                extra={
                    "operation": operation,
                    "account_id": str(change.account_id),
                    "delta": str(change.delta),
                },
                exc_info=True,
            )
            raise InconsistentStateError(
                operation, str(original), str(comp_exc)
            ) from comp_exc
