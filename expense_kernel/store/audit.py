"""
Module: expense_kernel.store.audit
Responsibility: Append-only audit log persistence.  There is no update or
    delete method; reads return entries in append order.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from expense_kernel.domain.dtos import AuditLogEntry
from expense_kernel.models.audit_log import AuditLogModel
from expense_kernel.services.sequence_service import SequenceService
from expense_kernel.store.base import BaseStore


class AuditStore(BaseStore):
    def append(
        self,
        claim_id: UUID,
        actor_id: UUID,
        action: str,
        comment: str | None,
        created_at: datetime,
    ) -> AuditLogEntry:
        with self._scope("audit_append") as session:
            model = AuditLogModel(
                seq=SequenceService(session).next_value(SequenceService.AUDIT_LOG),
                claim_id=claim_id,
                actor_id=actor_id,
                action=action,
                comment=comment,
                created_at=created_at,
            )
            session.add(model)
            session.flush()
            return AuditLogEntry.from_model(model)

    def trail(self, claim_id: UUID) -> list[AuditLogEntry]:
        """All entries for a claim, oldest first."""
        with self._scope("audit_trail") as session:
            rows = session.execute(
                select(AuditLogModel)
                .where(AuditLogModel.claim_id == claim_id)
                .order_by(AuditLogModel.seq)
            ).scalars()
            return [AuditLogEntry.from_model(m) for m in rows]
