"""
Module: approval_kernel.models.notification
Responsibility: ORM persistence for user notifications written by
    DatabaseNotificationSink.  Not part of workflow correctness.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Notification


class NotificationModel(Base):
    """One message for one user."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> Notification:
        from approval_kernel.domain.workflow import Notification, NotificationType

        return Notification(
            user_id=self.user_id,
            type=NotificationType(self.type),
            title=self.title,
            message=self.message,
            entity_type=self.entity_type or "approval_request",
            entity_id=self.entity_id,
        )
