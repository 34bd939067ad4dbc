"""
Module: expense_kernel.models.account
Responsibility: ORM persistence for participant accounts and their roles.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/roles.py only.

Invariants enforced:
    - Roles are a set: UNIQUE(account_id, role), one row per held role.
    - balance is signed and may go negative; it is only ever changed by an
      atomic ``balance = balance + :delta`` statement (store/accounts.py).
    - The hierarchy links (reporting engineer, assigned cashier, the
      cashier's engineer and location) are used for routing only.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_kernel.db.base import TrackedBase, UUIDString
from expense_kernel.domain.roles import Role, RoleSet


class AccountModel(TrackedBase):
    """A participant profile with a signed balance."""

    __tablename__ = "accounts"

    __table_args__ = (
        Index("idx_accounts_reporting_engineer", "reporting_engineer_id"),
        Index("idx_accounts_assigned_cashier", "assigned_cashier_id"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    reporting_engineer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True
    )
    assigned_cashier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True
    )
    # Set on cashier accounts only
    cashier_assigned_engineer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True
    )
    cashier_location_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    roles: Mapped[list[AccountRoleModel]] = relationship(
        back_populates="account",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def role_set(self) -> RoleSet:
        return RoleSet.of(r.role for r in self.roles)

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.id})>"


class AccountRoleModel(TrackedBase):
    """One role held by one account."""

    __tablename__ = "account_roles"

    __table_args__ = (
        UniqueConstraint("account_id", "role", name="uq_account_roles_account_role"),
        CheckConstraint(
            "role IN ('employee', 'engineer', 'cashier', 'admin')",
            name="ck_account_roles_valid_role",
        ),
        Index("idx_account_roles_role", "role"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    account: Mapped[AccountModel] = relationship(back_populates="roles")

    @property
    def role_enum(self) -> Role:
        return Role(self.role)
