"""
Module: expense_kernel.models.money
Responsibility: ORM persistence for cash assignments and money return
    requests.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An assignment is open (``is_returned = false``) or closed exactly
      once; closing is a conditional write on ``is_returned = false`` and a
      closed row is immutable (db/immutability.py).
    - A return request leaves ``pending`` exactly once.  On exit either
      approved_at + approved_by or rejected_at + rejected_by are set.
    - Covering index on (recipient_id, cashier_id, assigned_at) for the
      FIFO scan.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import TrackedBase, UUIDString


class MoneyAssignmentModel(TrackedBase):
    """Cash handed out by a cashier to a recipient."""

    __tablename__ = "money_assignments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_money_assignments_positive_amount"),
        Index(
            "idx_money_assignments_fifo",
            "recipient_id",
            "cashier_id",
            "assigned_at",
        ),
        Index("idx_money_assignments_open", "recipient_id", "is_returned"),
    )

    cashier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    recipient_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)

    is_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    return_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )


class MoneyReturnRequestModel(TrackedBase):
    """A recipient's request to hand cash back to a cashier."""

    __tablename__ = "money_return_requests"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_money_return_requests_positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_money_return_requests_valid_status",
        ),
        Index("idx_money_return_requests_cashier", "cashier_id", "status"),
        Index("idx_money_return_requests_requester", "requester_id"),
    )

    requester_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    cashier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
