"""
approval_kernel.services.notification_service -- Best-effort notification
dispatch.

Responsibility:
    Delivers the notifications produced by workflow transitions to one or
    more sinks.  Delivery is a side effect: a failing sink is logged and
    skipped, never surfaced to the workflow.

Architecture position:
    Kernel > Services.  The only place in the kernel that swallows
    exceptions.

Failure modes:
    - None propagate.  ``notification_failed`` is logged at WARNING with
      the sink's exception attached.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import Notification
from approval_kernel.logging_config import get_logger
from approval_kernel.models.notification import NotificationModel

logger = get_logger("services.notification")


class NotificationSink(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class DatabaseNotificationSink:
    """
    Writes notifications to the ``notifications`` table.

    Each insert runs in its own savepoint so a failed insert does not
    poison the caller's transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def send(self, notification: Notification) -> None:
        with self._session.begin_nested():
            self._session.add(NotificationModel(
                user_id=notification.user_id,
                type=notification.type.value,
                title=notification.title,
                message=notification.message,
                entity_type=notification.entity_type,
                entity_id=notification.entity_id,
                is_read=False,
                created_at=self._clock.now(),
            ))
            self._session.flush()


class InMemoryNotificationSink:
    """Keeps sent notifications in a list."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def for_user(self, user_id) -> list[Notification]:
        return [n for n in self.sent if n.user_id == user_id]

    def clear(self) -> None:
        self.sent.clear()


class NotificationDispatcher:
    """Fans notifications out to sinks; never raises."""

    def __init__(self, sinks: Sequence[NotificationSink] = ()):
        self._sinks = list(sinks)

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def dispatch(self, notifications: Iterable[Notification]) -> int:
        """
        Deliver every notification to every sink.

        Returns:
            Number of successful (notification, sink) deliveries.
        """
        delivered = 0
        for notification in notifications:
            for sink in self._sinks:
                try:
                    sink.send(notification)
                except Exception:
                    logger.warning(
                        "notification_failed",
                        exc_info=True,
                        extra={
                            "sink": type(sink).__name__,
                            "recipient_id": str(notification.user_id),
                            "notification_type": notification.type.value,
                            "entity_id": str(notification.entity_id),
                        },
                    )
                    continue
                delivered += 1
                logger.info(
                    "notification_sent",
                    extra={
                        "sink": type(sink).__name__,
                        "recipient_id": str(notification.user_id),
                        "notification_type": notification.type.value,
                    },
                )
        return delivered
