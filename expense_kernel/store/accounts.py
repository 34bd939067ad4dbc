"""
Module: expense_kernel.store.accounts
Responsibility: Account, role and balance persistence.

Invariants enforced:
    - Balances change only through ``apply_delta``: one atomic
      ``UPDATE accounts SET balance = balance + :delta WHERE id = :id``
      with an optional ``AND balance >= :minimum`` precondition.  There is
      no read-modify-write of a balance anywhere in the kernel.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from expense_kernel.domain.dtos import Account
from expense_kernel.domain.roles import Role, RoleSet
from expense_kernel.logging_config import get_logger
from expense_kernel.models.account import AccountModel, AccountRoleModel
from expense_kernel.store.base import BaseStore

logger = get_logger("store.accounts")


class AccountStore(BaseStore):
    """Reads accounts and applies atomic balance deltas."""

    def create(
        self,
        name: str,
        roles: Iterable[Role | str] = (Role.EMPLOYEE,),
        balance: Decimal = Decimal("0"),
        email: str | None = None,
        reporting_engineer_id: UUID | None = None,
        assigned_cashier_id: UUID | None = None,
        cashier_assigned_engineer_id: UUID | None = None,
        cashier_location_id: UUID | None = None,
    ) -> Account:
        """
        Insert an account with its roles.

        Provisioning accounts belongs to identity management outside the
        kernel; this exists for bootstrapping and tests.
        """
        with self._scope("account_create") as session:
            model = AccountModel(
                name=name,
                email=email,
                balance=balance,
                reporting_engineer_id=reporting_engineer_id,
                assigned_cashier_id=assigned_cashier_id,
                cashier_assigned_engineer_id=cashier_assigned_engineer_id,
                cashier_location_id=cashier_location_id,
            )
            model.roles = [
                AccountRoleModel(role=Role(r).value) for r in dict.fromkeys(roles)
            ]
            session.add(model)
            session.flush()
            return Account.from_model(model)

    def get(self, account_id: UUID) -> Account | None:
        with self._scope("account_get") as session:
            model = session.get(AccountModel, account_id)
            return Account.from_model(model) if model else None

    def roles_of(self, account_id: UUID) -> RoleSet:
        with self._scope("account_roles") as session:
            rows = session.execute(
                select(AccountRoleModel.role)
                .where(AccountRoleModel.account_id == account_id)
            ).scalars()
            return RoleSet.of(rows)

    def ids_with_role(self, role: Role) -> list[UUID]:
        with self._scope("account_ids_with_role") as session:
            return list(
                session.execute(
                    select(AccountRoleModel.account_id)
                    .where(AccountRoleModel.role == role.value)
                    .order_by(AccountRoleModel.created_at, AccountRoleModel.account_id)
                ).scalars()
            )

    def names(self, account_ids: Iterable[UUID]) -> dict[UUID, str]:
        ids = list({i for i in account_ids if i is not None})
        if not ids:
            return {}
        with self._scope("account_names") as session:
            rows = session.execute(
                select(AccountModel.id, AccountModel.name)
                .where(AccountModel.id.in_(ids))
            ).all()
            return {row.id: row.name for row in rows}

    def balance(self, account_id: UUID) -> Decimal | None:
        with self._scope("account_balance") as session:
            value = session.execute(
                select(AccountModel.balance).where(AccountModel.id == account_id)
            ).scalar_one_or_none()
            return Decimal(value) if value is not None else None

    def apply_delta(
        self,
        account_id: UUID,
        delta: Decimal,
        minimum_balance: Decimal | None = None,
    ) -> Decimal | None:
        """
        Atomically add ``delta`` to an account balance.

        With ``minimum_balance`` the update only applies when the current
        balance is at least that value.

        Returns:
            The new balance, or None when no row matched (unknown account
            or precondition not met).
        """
        stmt = (
            update(AccountModel)
            .where(AccountModel.id == account_id)
            .values(balance=AccountModel.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if minimum_balance is not None:
            stmt = stmt.where(AccountModel.balance >= minimum_balance)

        with self._scope("account_apply_delta") as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                return None
            new_balance = session.execute(
                select(AccountModel.balance).where(AccountModel.id == account_id)
            ).scalar_one()
            return Decimal(new_balance)
