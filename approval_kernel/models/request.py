"""
Module: approval_kernel.models.request
Responsibility: ORM persistence for approval requests (workflow instances).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - request_number is unique.
    - status is one of the RequestStatus values (check constraint).
    - 0 <= current_level <= total_levels (check constraint).
    - Scope columns are both null or both set (check constraint).
    - ``version`` is the mapper's version_id_col: an UPDATE that finds a
      different version raises StaleDataError, which the workflow service
      turns into ConcurrentModificationError.

Failure modes:
    - IntegrityError on duplicate request_number (retried by the service).
    - StaleDataError when another transaction updated the row first.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalRequest, Scope
    from approval_kernel.models.action import ApprovalActionModel
    from approval_kernel.models.template import ApprovalTemplateModel


class ApprovalRequestModel(TimestampedBase):
    """Persistent approval request.

    Contract:
        Mutated only by ApprovalWorkflowService.  The mutable columns are a
        projection of the request's action trail.  Only DRAFT rows are
        ever deleted.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PENDING', 'APPROVED', 'DECLINED', "
            "'SENT_BACK', 'CANCELLED')",
            name="ck_approval_requests_status",
        ),
        CheckConstraint(
            "current_level >= 0 AND current_level <= total_levels",
            name="ck_approval_requests_level_range",
        ),
        CheckConstraint(
            "(project_id IS NULL AND cohort_id IS NULL) OR "
            "(project_id IS NOT NULL AND cohort_id IS NOT NULL)",
            name="ck_approval_requests_scope",
        ),
        # Inbox and stuck-request queries
        Index("ix_approval_requests_approver_status", "current_approver_id", "status"),
        Index("ix_approval_requests_requester", "requester_id", "created_at"),
        Index("ix_approval_requests_status_deadline", "status", "sla_deadline"),
    )

    request_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_templates.id"),
        nullable=False,
        index=True,
    )
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cohort_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    form_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    attachments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_levels: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sla_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    template: Mapped[ApprovalTemplateModel] = relationship("ApprovalTemplateModel")
    actions: Mapped[list[ApprovalActionModel]] = relationship(
        "ApprovalActionModel",
        back_populates="request",
        order_by="ApprovalActionModel.seq",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} status={self.status} "
            f"level={self.current_level}/{self.total_levels}>"
        )

    @property
    def scope(self) -> Scope:
        from approval_kernel.domain.workflow import Scope

        return Scope(self.project_id, self.cohort_id)

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ApprovalRequest as ApprovalRequestDTO,
            RequestStatus,
        )

        return ApprovalRequestDTO(
            id=self.id,
            request_number=self.request_number,
            template_id=self.template_id,
            requester_id=self.requester_id,
            scope=self.scope,
            form_data=dict(self.form_data or {}),
            attachments=tuple(self.attachments or ()),
            status=RequestStatus(self.status),
            current_level=self.current_level,
            total_levels=self.total_levels,
            current_approver_id=self.current_approver_id,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            sla_deadline=self.sla_deadline,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )
