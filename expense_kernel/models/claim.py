"""
Module: expense_kernel.models.claim
Responsibility: ORM persistence for expense claims.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status is one of the four lifecycle values (DB check constraint).
    - transaction_number is UNIQUE, assigned when the row is inserted in
      status ``submitted``, and write-once (ORM listener in
      db/immutability.py).
    - amount is strictly positive.

Failure modes:
    - IntegrityError on a duplicate transaction number.
    - ImmutabilityViolationError when an assigned transaction number is
      changed through the ORM.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TrackedBase, UUIDString


class ClaimModel(TrackedBase):
    """A reimbursement claim."""

    __tablename__ = "expense_claims"

    __table_args__ = (
        CheckConstraint(
            "status IN ('submitted', 'verified', 'approved', 'rejected')",
            name="ck_expense_claims_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_expense_claims_positive_amount"),
        Index("idx_expense_claims_owner", "owner_id"),
        Index("idx_expense_claims_status", "status"),
        Index("idx_expense_claims_reviewer", "assigned_reviewer_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted")

    assigned_reviewer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True
    )
    reviewer_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_number: Mapped[str | None] = mapped_column(
        String(20), unique=True, nullable=True
    )

    def __repr__(self) -> str:
        return f"<Claim {self.transaction_number} {self.status} {self.amount}>"
