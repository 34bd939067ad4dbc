"""
Module: expense_kernel.models.sequence
Responsibility: Named counter rows backing ``SequenceService``.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.  Values are
    advanced only by an atomic ``current_value = current_value + 1``.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "expense_transaction_number")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
