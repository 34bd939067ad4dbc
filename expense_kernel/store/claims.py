"""
Module: expense_kernel.store.claims
Responsibility: Claim persistence with pre-image filtered status writes.

Invariants enforced:
    - A claim is inserted directly in status ``submitted`` and its
      transaction number is allocated in that same transaction.  No later
      statement writes ``transaction_number``.
    - ``update_details`` only writes descriptive columns, and only while
      the claim is ``submitted``.
    - ``transition`` is the only status write: ``UPDATE expense_claims SET
      status = :to ... WHERE id = :id AND status IN (:pre_image)``.  Two
      concurrent transitions from the same pre-image cannot both match.
"""

from collections.abc import Collection
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from expense_kernel.domain.dtos import Claim
from expense_kernel.domain.lifecycle import ClaimStatus
from expense_kernel.logging_config import get_logger
from expense_kernel.models.claim import ClaimModel
from expense_kernel.services.sequence_service import SequenceService
from expense_kernel.store.base import BaseStore

logger = get_logger("store.claims")

# Columns an edit may set while the claim is submitted
_DETAIL_FIELDS = frozenset({"title", "amount", "category", "purpose"})

# Columns a transition may set besides status
_TRANSITION_FIELDS = frozenset({
    "assigned_reviewer_id",
    "reviewer_comment",
    "admin_comment",
})


class ClaimStore(BaseStore):
    """Claim reads and conditional status writes."""

    def insert_submitted(
        self,
        owner_id: UUID,
        title: str,
        amount: Decimal,
        category: str,
        purpose: str | None = None,
    ) -> Claim:
        with self._scope("claim_insert") as session:
            number = SequenceService(session).next_transaction_number()
            model = ClaimModel(
                owner_id=owner_id,
                title=title,
                amount=amount,
                category=category,
                purpose=purpose,
                status=ClaimStatus.SUBMITTED.value,
                transaction_number=number,
            )
            session.add(model)
            session.flush()
            return Claim.from_model(model)

    def get(self, claim_id: UUID) -> Claim | None:
        with self._scope("claim_get") as session:
            model = session.get(ClaimModel, claim_id)
            return Claim.from_model(model) if model else None

    def for_owner(self, owner_id: UUID) -> list[Claim]:
        with self._scope("claim_for_owner") as session:
            rows = session.execute(
                select(ClaimModel)
                .where(ClaimModel.owner_id == owner_id)
                .order_by(ClaimModel.transaction_number)
            ).scalars()
            return [Claim.from_model(m) for m in rows]

    def transition(
        self,
        claim_id: UUID,
        pre_image: Collection[ClaimStatus],
        to_status: ClaimStatus,
        **fields,
    ) -> bool:
        """
        Move a claim to ``to_status`` if its status is in ``pre_image``.

        Returns:
            True if exactly this call moved the claim; False if the claim
            was absent or no longer in the pre-image.
        """
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Claim transition cannot set {sorted(unknown)}")

        stmt = (
            update(ClaimModel)
            .where(ClaimModel.id == claim_id)
            .where(ClaimModel.status.in_([s.value for s in pre_image]))
            .values(status=to_status.value, **fields)
            .execution_options(synchronize_session=False)
        )
        with self._scope("claim_transition") as session:
            matched = session.execute(stmt).rowcount == 1

        logger.debug(
            "claim_status_write",
            extra={
                "claim_id": str(claim_id),
                "pre_image": sorted(s.value for s in pre_image),
                "to_status": to_status.value,
                "matched": matched,
            },
        )
        return matched

    def update_details(self, claim_id: UUID, **fields) -> bool:
        """
        Write descriptive fields of a claim that is still ``submitted``.

        Returns:
            True if the claim was updated; False if it was absent or had
            left ``submitted``.
        """
        unknown = set(fields) - _DETAIL_FIELDS
        if unknown:
            raise ValueError(f"Claim update cannot set {sorted(unknown)}")

        stmt = (
            update(ClaimModel)
            .where(ClaimModel.id == claim_id)
            .where(ClaimModel.status == ClaimStatus.SUBMITTED.value)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        with self._scope("claim_update_details") as session:
            matched = session.execute(stmt).rowcount == 1

        logger.debug(
            "claim_detail_write",
            extra={"claim_id": str(claim_id), "fields": sorted(fields), "matched": matched},
        )
        return matched
