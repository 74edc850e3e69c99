"""
Module: approval_kernel.models.level
Responsibility: ORM persistence for scoped approval levels and their
    ordered approver candidates (LevelConfig).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Scope columns are both null (global) or both set (check constraint).
    - level_number >= 1.
    - A candidate row stores exactly the columns its kind needs (check
      constraint mirroring ApproverCandidate validation).
    - Level numbers are unique per (template, scope).  The unique
      constraint covers specific scopes; NULLs never collide in SQL, so
      TemplateService also checks the global scope.

Failure modes:
    - IntegrityError on duplicate level number within a specific scope.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import (
        ApproverCandidate,
        LevelDefinition,
        Scope,
    )
    from approval_kernel.models.template import ApprovalTemplateModel


class ApprovalLevelModel(Base):
    """One stage of a template's chain within a scope."""

    __tablename__ = "approval_levels"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "project_id", "cohort_id", "level_number",
            name="uq_approval_levels_scope_number",
        ),
        CheckConstraint(
            "(project_id IS NULL AND cohort_id IS NULL) OR "
            "(project_id IS NOT NULL AND cohort_id IS NOT NULL)",
            name="ck_approval_levels_scope",
        ),
        CheckConstraint("level_number >= 1", name="ck_approval_levels_number"),
        Index(
            "ix_approval_levels_lookup",
            "template_id", "project_id", "cohort_id", "is_active",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cohort_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    level_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    sla_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalate_after_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalate_to_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    template: Mapped[ApprovalTemplateModel] = relationship(
        "ApprovalTemplateModel", back_populates="levels",
    )
    approvers: Mapped[list[LevelApproverModel]] = relationship(
        "LevelApproverModel",
        back_populates="level",
        cascade="all, delete-orphan",
        order_by="LevelApproverModel.sort_order",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalLevel {self.level_number} template={self.template_id} "
            f"scope={self.project_id}/{self.cohort_id}>"
        )

    @property
    def scope(self) -> Scope:
        from approval_kernel.domain.workflow import Scope

        return Scope(self.project_id, self.cohort_id)

    def to_dto(self) -> LevelDefinition:
        from approval_kernel.domain.workflow import LevelDefinition

        return LevelDefinition(
            id=self.id,
            level_number=self.level_number,
            candidates=tuple(a.to_dto() for a in self.approvers),
            level_name=self.level_name,
            sla_hours=self.sla_hours,
            escalate_after_hours=self.escalate_after_hours,
            escalate_to_user_id=self.escalate_to_user_id,
            is_active=self.is_active,
            scope=self.scope,
        )


class LevelApproverModel(Base):
    """One approver candidate of a level.  ``sort_order`` is precedence."""

    __tablename__ = "approval_level_approvers"

    __table_args__ = (
        CheckConstraint(
            "(approver_kind = 'USER' AND user_id IS NOT NULL AND role IS NULL) OR "
            "(approver_kind = 'ROLE' AND role IS NOT NULL AND user_id IS NULL) OR "
            "(approver_kind = 'REQUESTER_SUPERVISOR' AND user_id IS NULL AND role IS NULL)",
            name="ck_level_approvers_mode",
        ),
    )

    level_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_levels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    level: Mapped[ApprovalLevelModel] = relationship(
        "ApprovalLevelModel", back_populates="approvers",
    )

    def to_dto(self) -> ApproverCandidate:
        from approval_kernel.domain.workflow import ApproverCandidate, ApproverKind

        return ApproverCandidate(
            kind=ApproverKind(self.approver_kind),
            user_id=self.user_id,
            role=self.role,
            sort_order=self.sort_order,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: ApproverCandidate) -> LevelApproverModel:
        return cls(
            approver_kind=dto.kind.value,
            user_id=dto.user_id,
            role=dto.role,
            sort_order=dto.sort_order,
            is_active=dto.is_active,
        )
