"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly increasing numbers for claim transaction numbers
    and audit log ordering.  Uses a dedicated counter table advanced by a
    single atomic ``UPDATE ... SET current_value = current_value + 1``
    so concurrent allocations serialize on the counter row.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ClaimStore (transaction numbers) and AuditStore (audit
    ordering) inside their own short transactions.

Invariants enforced:
    - Monotonicity: the counter row is the sole source of the next value.
      The SQL aggregate-max-plus-one anti-pattern is never used.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: two first-ever allocations racing to create the same
      counter row.  ``initialize_sequences`` seeds the well-known counters
      at table creation so this only affects ad hoc sequence names.
"""

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from expense_kernel.logging_config import get_logger
from expense_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    # Well-known sequence names
    TRANSACTION_NUMBER = "expense_transaction_number"
    AUDIT_LOG = "audit_log"

    TRANSACTION_NUMBER_WIDTH = 5

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this sequence name.
            - The counter row stays write-locked until the caller's
              transaction completes.
        """
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            # First use of an unseeded sequence
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
            value = 1
        else:
            value = self._session.execute(
                select(SequenceCounter.current_value)
                .where(SequenceCounter.name == sequence_name)
            ).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def next_transaction_number(self) -> str:
        """Allocate the next claim transaction number, e.g. ``"00001"``."""
        value = self.next_value(self.TRANSACTION_NUMBER)
        return str(value).zfill(self.TRANSACTION_NUMBER_WIDTH)

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def initialize_sequences(self) -> None:
        """
        Initialize all well-known sequences.

        Called during database setup to ensure sequences exist.
        """
        for name in [self.TRANSACTION_NUMBER, self.AUDIT_LOG]:
            existing = self._session.execute(
                select(SequenceCounter)
                .where(SequenceCounter.name == name)
            ).scalar_one_or_none()

            if existing is None:
                self._session.add(SequenceCounter(name=name, current_value=0))

        self._session.flush()
