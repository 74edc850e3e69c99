"""
Module: approval_kernel.models.action
Responsibility: ORM persistence for the append-only approval action trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - Append-only: ORM listeners reject UPDATE and DELETE of action rows.
    - (request_id, seq) is unique; ``seq`` totally orders a request's trail
      even when timestamps tie.
    - ``resulting_status`` records the request status after the action, so
      the trail alone can be replayed.

Failure modes:
    - ImmutabilityViolationError on any UPDATE or DELETE via the ORM.
    - IntegrityError on duplicate (request_id, seq).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UTCDateTime, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalAction
    from approval_kernel.models.request import ApprovalRequestModel


class ApprovalActionModel(Base):
    """Persistent audit record of one decision.  Append-only."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_approval_actions_seq"),
        CheckConstraint(
            "action_type IN ('SUBMIT', 'APPROVE', 'DECLINE', 'SEND_BACK', "
            "'RESUBMIT', 'CANCEL')",
            name="ck_approval_actions_type",
        ),
        CheckConstraint("level >= 0", name="ck_approval_actions_level"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    next_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    was_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    response_time_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    form_data_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    resulting_status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    request: Mapped[ApprovalRequestModel] = relationship(
        "ApprovalRequestModel", back_populates="actions",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction {self.action_type} request={self.request_id} "
            f"seq={self.seq} level={self.level}>"
        )

    def to_dto(self) -> ApprovalAction:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ActionType,
            ApprovalAction as ApprovalActionDTO,
            RequestStatus,
        )

        return ApprovalActionDTO(
            id=self.id,
            request_id=self.request_id,
            seq=self.seq,
            action_type=ActionType(self.action_type),
            level=self.level,
            actor_id=self.actor_id,
            resulting_status=RequestStatus(self.resulting_status),
            comment=self.comment,
            previous_approver_id=self.previous_approver_id,
            next_approver_id=self.next_approver_id,
            was_overdue=self.was_overdue,
            response_time_hours=self.response_time_hours,
            form_data_snapshot=(
                dict(self.form_data_snapshot)
                if self.form_data_snapshot is not None else None
            ),
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability for Actions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    """Prevent updates to approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    """Prevent deletion of approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot delete",
    )
