"""
FIFO matching of a money return against open cash assignments.

Pure function, no I/O.  The tracker service loads the open assignments
for one (recipient, cashier) pair, asks ``match_return`` which ones the
returned amount closes, and then closes them one by one.

Policy
------
Assignments are scanned oldest first (``assigned_at`` ascending, ``id``
as a stable tie-break).  An assignment is closed only when the remaining
return amount covers it in full.  A partially covered assignment is left
open and untouched and the scan moves on to the next one; there is no
partial closure.  The scan stops when nothing remains or the list is
exhausted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

_ZERO = Decimal("0")


@dataclass(frozen=True)
class OpenAssignment:
    """The fields of an open assignment the matcher needs."""

    assignment_id: UUID
    amount: Decimal
    assigned_at: datetime


@dataclass(frozen=True)
class ReturnMatch:
    """Result of matching a return amount against open assignments."""

    closed: tuple[OpenAssignment, ...]
    skipped: tuple[OpenAssignment, ...]
    remaining: Decimal

    @property
    def closed_ids(self) -> tuple[UUID, ...]:
        return tuple(a.assignment_id for a in self.closed)

    @property
    def closed_total(self) -> Decimal:
        return sum((a.amount for a in self.closed), _ZERO)


def fifo_order(assignments: Iterable[OpenAssignment]) -> list[OpenAssignment]:
    return sorted(assignments, key=lambda a: (a.assigned_at, str(a.assignment_id)))


def match_return(
    assignments: Iterable[OpenAssignment],
    amount: Decimal,
) -> ReturnMatch:
    """
    Decide which assignments a return of ``amount`` closes.

    Returns the closed assignments in the order they were closed, the
    assignments passed over because they were only partially covered,
    and the uncovered remainder.
    """
    remaining = amount
    closed: list[OpenAssignment] = []
    skipped: list[OpenAssignment] = []

    for assignment in fifo_order(assignments):
        if remaining <= _ZERO:
            break
        if assignment.amount <= remaining:
            closed.append(assignment)
            remaining -= assignment.amount
        else:
            skipped.append(assignment)

    return ReturnMatch(
        closed=tuple(closed),
        skipped=tuple(skipped),
        remaining=remaining,
    )
