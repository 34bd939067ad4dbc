"""
Module: expense_kernel.store.notifications
Responsibility: Notification outbox rows, one per recipient.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from expense_kernel.domain.dtos import StoredNotification
from expense_kernel.models.notification import NotificationModel
from expense_kernel.store.base import BaseStore


class NotificationStore(BaseStore):
    def insert(
        self,
        user_id: UUID,
        type_: str,
        title: str,
        message: str,
        claim_id: UUID | None,
        created_at: datetime,
    ) -> None:
        with self._scope("notification_insert") as session:
            session.add(
                NotificationModel(
                    user_id=user_id,
                    type=type_,
                    title=title,
                    message=message,
                    claim_id=claim_id,
                    is_read=False,
                    created_at=created_at,
                )
            )

    def for_user(self, user_id: UUID) -> list[StoredNotification]:
        """Notifications for one account, newest first."""
        with self._scope("notification_for_user") as session:
            rows = session.execute(
                select(NotificationModel)
                .where(NotificationModel.user_id == user_id)
                .order_by(NotificationModel.created_at.desc())
            ).scalars()
            return [StoredNotification.from_model(m) for m in rows]

    def unread_count(self, user_id: UUID) -> int:
        with self._scope("notification_unread_count") as session:
            return session.execute(
                select(func.count())
                .select_from(NotificationModel)
                .where(NotificationModel.user_id == user_id)
                .where(NotificationModel.is_read.is_(False))
            ).scalar_one()
