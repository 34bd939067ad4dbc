"""
Notification dispatch.

Responsibility:
    Hands notification events to a sink after each committed transition.
    Delivery is fire-and-forget: a failure for one recipient is logged and
    swallowed, and the remaining recipients are still attempted.  Nothing
    here ever raises into the workflow that published the event, and
    nothing is retried.
"""

from typing import Protocol
from uuid import UUID

from expense_kernel.domain.clock import Clock
from expense_kernel.domain.notifications import NotificationEvent
from expense_kernel.logging_config import get_logger
from expense_kernel.store.notifications import NotificationStore

logger = get_logger("services.notifications")


class NotificationSink(Protocol):
    def notify(
        self,
        account_id: UUID,
        type: str,
        title: str,
        message: str,
        claim_id: UUID | None = None,
    ) -> None: ...


class OutboxNotificationSink:
    """Writes each notification to the ``notifications`` outbox table."""

    def __init__(self, store: NotificationStore, clock: Clock):
        self._store = store
        self._clock = clock

    def notify(
        self,
        account_id: UUID,
        type: str,
        title: str,
        message: str,
        claim_id: UUID | None = None,
    ) -> None:
        self._store.insert(
            user_id=account_id,
            type_=type,
            title=title,
            message=message,
            claim_id=claim_id,
            created_at=self._clock.now(),
        )


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink, enabled: bool = True):
        self._sink = sink
        self._enabled = enabled

    def dispatch(self, event: NotificationEvent) -> int:
        """
        Deliver ``event`` to each recipient independently.

        Returns:
            Number of recipients the sink accepted.
        """
        if not self._enabled:
            logger.debug(
                "notification_dispatch_disabled",
                extra={"notification_type": event.type.value},
            )
            return 0

        delivered = 0
        for recipient in event.recipients:
            try:
                self._sink.notify(
                    recipient,
                    event.type.value,
                    event.title,
                    event.message,
                    event.claim_id,
                )
            except Exception:
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "recipient_id": str(recipient),
                        "notification_type": event.type.value,
                    },
                    exc_info=True,
                )
                continue
            delivered += 1

        logger.debug(
            "notification_dispatched",
            extra={
                "notification_type": event.type.value,
                "recipients": len(event.recipients),
                "delivered": delivered,
            },
        )
        return delivered
