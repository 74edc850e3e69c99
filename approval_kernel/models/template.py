"""
Module: approval_kernel.models.template
Responsibility: ORM persistence for workflow templates and their form
    field descriptors (TemplateCatalog).
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto()).

Invariants enforced:
    - Template names are unique.
    - Field names are unique within a template.
    - field_kind is one of the FieldKind tags (DB check constraint).

Failure modes:
    - IntegrityError on duplicate template name or field name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TimestampedBase, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalTemplate, FieldDescriptor
    from approval_kernel.models.level import ApprovalLevelModel


class ApprovalTemplateModel(TimestampedBase):
    """Persistent workflow definition.

    Contract:
        Soft-deactivated (``is_active=False``) instead of deleted once any
        request references it.
    """

    __tablename__ = "approval_templates"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    color: Mapped[str | None] = mapped_column(String(30), nullable=True)
    default_sla_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    fields: Mapped[list[FormFieldModel]] = relationship(
        "FormFieldModel",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="FormFieldModel.sort_order",
    )
    levels: Mapped[list[ApprovalLevelModel]] = relationship(
        "ApprovalLevelModel",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ApprovalLevelModel.level_number",
    )

    def __repr__(self) -> str:
        return f"<ApprovalTemplate {self.name} active={self.is_active}>"

    def to_dto(
        self,
        include_fields: bool = True,
        include_levels: bool = False,
    ) -> ApprovalTemplate:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import ApprovalTemplate as TemplateDTO

        return TemplateDTO(
            id=self.id,
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            icon=self.icon,
            color=self.color,
            default_sla_hours=self.default_sla_hours,
            is_active=self.is_active,
            fields=tuple(f.to_dto() for f in self.fields) if include_fields else (),
            levels=tuple(lvl.to_dto() for lvl in self.levels) if include_levels else (),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class FormFieldModel(Base):
    """One field descriptor of a template's form."""

    __tablename__ = "approval_form_fields"

    __table_args__ = (
        UniqueConstraint("template_id", "field_name", name="uq_form_fields_name"),
        CheckConstraint(
            "field_kind IN ('TEXT', 'TEXTAREA', 'NUMBER', 'DATE', 'SELECT', "
            "'RADIO', 'CHECKBOX', 'FILE', 'EMAIL', 'PHONE')",
            name="ck_form_fields_kind",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    field_label: Mapped[str] = mapped_column(String(200), nullable=False)
    field_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="TEXT")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    options: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    placeholder: Mapped[str | None] = mapped_column(String(200), nullable=True)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    validation: Mapped[str | None] = mapped_column(String(500), nullable=True)
    default_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depends_on_field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    depends_on_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    template: Mapped[ApprovalTemplateModel] = relationship(
        "ApprovalTemplateModel", back_populates="fields",
    )

    def __repr__(self) -> str:
        return f"<FormField {self.field_name} kind={self.field_kind}>"

    def to_dto(self) -> FieldDescriptor:
        from approval_kernel.domain.workflow import FieldDescriptor, FieldKind

        return FieldDescriptor(
            id=self.id,
            name=self.field_name,
            label=self.field_label,
            kind=FieldKind(self.field_kind),
            required=self.is_required,
            options=tuple(self.options or ()),
            placeholder=self.placeholder,
            help_text=self.help_text,
            validation=self.validation,
            default_value=self.default_value,
            sort_order=self.sort_order,
            depends_on_field=self.depends_on_field,
            depends_on_value=self.depends_on_value,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: FieldDescriptor, template_id: UUID) -> FormFieldModel:
        return cls(
            template_id=template_id,
            field_name=dto.name,
            field_label=dto.label,
            field_kind=dto.kind.value,
            is_required=dto.required,
            options=list(dto.options),
            placeholder=dto.placeholder,
            help_text=dto.help_text,
            validation=dto.validation,
            default_value=dto.default_value,
            sort_order=dto.sort_order,
            depends_on_field=dto.depends_on_field,
            depends_on_value=dto.depends_on_value,
            is_active=dto.is_active,
        )
