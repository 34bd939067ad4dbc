"""
AuditRecorder -- appends claim audit entries.

Entries are immutable once written (store has no update path, ORM
listeners block modification).  Timestamps come from the injected clock.
"""

from uuid import UUID

from expense_kernel.domain.clock import Clock
from expense_kernel.domain.dtos import AuditLogEntry
from expense_kernel.domain.lifecycle import AuditAction
from expense_kernel.logging_config import get_logger
from expense_kernel.store.audit import AuditStore

logger = get_logger("services.audit")


class AuditRecorder:
    def __init__(self, store: AuditStore, clock: Clock):
        self._store = store
        self._clock = clock

    def record(
        self,
        claim_id: UUID,
        actor_id: UUID,
        action: AuditAction | str,
        comment: str | None = None,
    ) -> AuditLogEntry:
        tag = AuditAction(action).value
        entry = self._store.append(
            claim_id=claim_id,
            actor_id=actor_id,
            action=tag,
            comment=comment,
            created_at=self._clock.now(),
        )
        logger.info(
            "audit_recorded",
            extra={
                "claim_id": str(claim_id),
                "actor_id": str(actor_id),
                "action": tag,
            },
        )
        return entry

    def trail(self, claim_id: UUID) -> list[AuditLogEntry]:
        return self._store.trail(claim_id)
