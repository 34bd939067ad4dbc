"""
Module: expense_kernel.models.audit_log
Responsibility: Append-only audit trail of claim actions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are inserted, never updated or deleted by the kernel
      (ORM listeners in db/immutability.py raise ImmutabilityViolationError).
    - created_at comes from the injected clock, not the database.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString


class AuditLogModel(Base):
    """One recorded action on a claim."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_logs_claim", "claim_id", "seq"),
    )

    # Allocated from the "audit_log" sequence; orders entries with equal timestamps
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    claim_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("expense_claims.id"), nullable=False
    )
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} claim={self.claim_id}>"
