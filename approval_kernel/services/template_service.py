"""
approval_kernel.services.template_service -- Template catalog and level
configuration management.

Responsibility:
    Creates, edits, lists and retires workflow templates, replaces their
    form field descriptors, and replaces the level chain of one scope.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Template names are unique (DuplicateTemplateNameError).
    - A template referenced by any request is never hard-deleted; delete
      soft-deactivates it instead.  Its name can no longer change.
    - Within one (template, scope), level numbers are unique and run
      1..n.  Field names are unique within a template.

Failure modes:
    - TemplateNotFoundError for an unknown template id.
    - InvalidTemplateError, InvalidLevelConfigurationError for malformed
      definitions.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    GLOBAL_SCOPE,
    ApprovalTemplate,
    FieldDescriptor,
    FieldKind,
    LevelDefinition,
    Scope,
)
from approval_kernel.exceptions import (
    DuplicateTemplateNameError,
    InvalidLevelConfigurationError,
    InvalidTemplateError,
    TemplateNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.level import ApprovalLevelModel, LevelApproverModel
from approval_kernel.models.template import ApprovalTemplateModel, FormFieldModel
from approval_kernel.selectors.level_selector import LevelSelector
from approval_kernel.selectors.request_selector import RequestSelector

logger = get_logger("services.template")

_UNSET: Any = object()

_CHOICE_KINDS = frozenset({FieldKind.SELECT, FieldKind.RADIO})


def _validate_fields(fields: Sequence[FieldDescriptor]) -> None:
    names: set[str] = set()
    for f in fields:
        if not f.name or not f.label:
            raise InvalidTemplateError("every field needs a name and a label")
        if f.name in names:
            raise InvalidTemplateError(f"duplicate field name '{f.name}'")
        names.add(f.name)
        if f.kind in _CHOICE_KINDS and not f.options:
            raise InvalidTemplateError(f"field '{f.name}' needs options")
        if f.validation:
            try:
                re.compile(f.validation)
            except re.error as exc:
                raise InvalidTemplateError(
                    f"field '{f.name}' has an invalid pattern: {exc}"
                ) from exc
    for f in fields:
        if f.depends_on_field and f.depends_on_field not in names:
            raise InvalidTemplateError(
                f"field '{f.name}' depends on unknown field '{f.depends_on_field}'"
            )


def _validate_levels(template_id: str, levels: Sequence[LevelDefinition]) -> None:
    numbers = sorted(lvl.level_number for lvl in levels)
    if len(set(numbers)) != len(numbers):
        raise InvalidLevelConfigurationError(template_id, "duplicate level number")
    if numbers != list(range(1, len(numbers) + 1)):
        raise InvalidLevelConfigurationError(
            template_id, f"levels must be numbered 1..{len(numbers)}, got {numbers}"
        )
    for lvl in levels:
        if lvl.sla_hours is not None and lvl.sla_hours <= 0:
            raise InvalidLevelConfigurationError(
                template_id, f"level {lvl.level_number} sla_hours must be positive"
            )


def _group_by_scope(levels: Iterable[LevelDefinition]) -> dict[Scope, list[LevelDefinition]]:
    grouped: dict[Scope, list[LevelDefinition]] = {}
    for lvl in levels:
        grouped.setdefault(lvl.scope, []).append(lvl)
    return grouped


class TemplateService:
    """Write side of the template catalog and its level configuration."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._levels = LevelSelector(session)
        self._requests = RequestSelector(session)

    # -----------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------

    def _load(self, template_id: UUID) -> ApprovalTemplateModel:
        model = self._session.execute(
            select(ApprovalTemplateModel)
            .options(
                selectinload(ApprovalTemplateModel.fields),
                selectinload(ApprovalTemplateModel.levels)
                .selectinload(ApprovalLevelModel.approvers),
            )
            .where(ApprovalTemplateModel.id == template_id)
        ).scalar_one_or_none()
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _name_taken(self, name: str, exclude_id: UUID | None = None) -> bool:
        stmt = select(ApprovalTemplateModel.id).where(ApprovalTemplateModel.name == name)
        if exclude_id is not None:
            stmt = stmt.where(ApprovalTemplateModel.id != exclude_id)
        return self._session.execute(stmt).first() is not None

    # -----------------------------------------------------------------
    # Template lifecycle
    # -----------------------------------------------------------------

    def create_template(
        self,
        name: str,
        display_name: str,
        description: str | None = None,
        icon: str | None = None,
        color: str | None = None,
        default_sla_hours: int | None = None,
        fields: Sequence[FieldDescriptor] = (),
        levels: Sequence[LevelDefinition] = (),
        is_active: bool = True,
    ) -> ApprovalTemplate:
        """
        Create a template with its fields and levels (each level carries
        its own scope).

        Raises:
            InvalidTemplateError: Missing name / display name, bad fields.
            DuplicateTemplateNameError: Name already used.
            InvalidLevelConfigurationError: Bad numbering within a scope.
        """
        name = (name or "").strip()
        display_name = (display_name or "").strip()
        if not name or not display_name:
            raise InvalidTemplateError("name and display_name are required")
        if default_sla_hours is not None and default_sla_hours <= 0:
            raise InvalidTemplateError("default_sla_hours must be positive")
        if self._name_taken(name):
            raise DuplicateTemplateNameError(name)
        _validate_fields(fields)
        grouped = _group_by_scope(levels)
        for scope_levels in grouped.values():
            _validate_levels(name, scope_levels)

        now = self._clock.now()
        model = ApprovalTemplateModel(
            name=name,
            display_name=display_name,
            description=description,
            icon=icon,
            color=color,
            default_sla_hours=default_sla_hours,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        for f in fields:
            model.fields.append(FormFieldModel.from_dto(f, model.id))
        for scope, scope_levels in grouped.items():
            for lvl in scope_levels:
                model.levels.append(self._level_model(model.id, scope, lvl))
        self._session.flush()

        logger.info(
            "template_created",
            extra={
                "template_id": str(model.id),
                "template_name": model.name,
                "field_count": len(fields),
                "level_count": len(levels),
            },
        )
        return model.to_dto(include_fields=True, include_levels=True)

    def update_template(
        self,
        template_id: UUID,
        *,
        name: str = _UNSET,
        display_name: str = _UNSET,
        description: str | None = _UNSET,
        icon: str | None = _UNSET,
        color: str | None = _UNSET,
        default_sla_hours: int | None = _UNSET,
        is_active: bool = _UNSET,
    ) -> ApprovalTemplate:
        """Edit template metadata.  Only the given keywords change."""
        model = self._load(template_id)
        changed: list[str] = []

        if name is not _UNSET:
            name = (name or "").strip()
            if not name:
                raise InvalidTemplateError("name is required")
        if name is not _UNSET and name != model.name:
            if self._requests.count_for_template(model.id):
                raise InvalidTemplateError(
                    "a template referenced by requests cannot be renamed"
                )
            if self._name_taken(name, exclude_id=model.id):
                raise DuplicateTemplateNameError(name)
            model.name = name
            changed.append("name")
        if display_name is not _UNSET:
            display_name = (display_name or "").strip()
            if not display_name:
                raise InvalidTemplateError("display_name is required")
            model.display_name = display_name
            changed.append("display_name")
        if default_sla_hours is not _UNSET:
            if default_sla_hours is not None and default_sla_hours <= 0:
                raise InvalidTemplateError("default_sla_hours must be positive")
            model.default_sla_hours = default_sla_hours
            changed.append("default_sla_hours")
        for attr, value in (
            ("description", description),
            ("icon", icon),
            ("color", color),
            ("is_active", is_active),
        ):
            if value is not _UNSET:
                setattr(model, attr, value)
                changed.append(attr)

        model.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "template_updated",
            extra={"template_id": str(model.id), "changed": changed},
        )
        return model.to_dto(include_fields=True, include_levels=True)

    def delete_template(self, template_id: UUID) -> bool:
        """
        Hard-delete an unreferenced template, otherwise deactivate it.

        Returns:
            True if the template row was deleted, False if it was
            soft-deactivated.
        """
        model = self._load(template_id)
        referenced = self._requests.count_for_template(model.id)
        if referenced:
            model.is_active = False
            model.updated_at = self._clock.now()
            self._session.flush()
            logger.info(
                "template_deactivated",
                extra={"template_id": str(model.id), "request_count": referenced},
            )
            return False

        self._session.delete(model)
        self._session.flush()
        logger.info("template_deleted", extra={"template_id": str(template_id)})
        return True

    # -----------------------------------------------------------------
    # Fields and levels
    # -----------------------------------------------------------------

    def replace_template_fields(
        self,
        template_id: UUID,
        fields: Sequence[FieldDescriptor],
    ) -> tuple[FieldDescriptor, ...]:
        """Replace every field descriptor of a template."""
        model = self._load(template_id)
        _validate_fields(fields)

        model.fields.clear()
        self._session.flush()
        for f in fields:
            model.fields.append(FormFieldModel.from_dto(f, model.id))
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "template_fields_replaced",
            extra={"template_id": str(model.id), "field_count": len(fields)},
        )
        return tuple(f.to_dto() for f in model.fields)

    def _level_model(
        self,
        template_id: UUID,
        scope: Scope,
        level: LevelDefinition,
    ) -> ApprovalLevelModel:
        return ApprovalLevelModel(
            template_id=template_id,
            project_id=scope.project_id,
            cohort_id=scope.cohort_id,
            level_number=level.level_number,
            level_name=level.level_name,
            sla_hours=level.sla_hours,
            escalate_after_hours=level.escalate_after_hours,
            escalate_to_user_id=level.escalate_to_user_id,
            is_active=level.is_active,
            approvers=[LevelApproverModel.from_dto(c) for c in level.candidates],
        )

    def replace_template_levels(
        self,
        template_id: UUID,
        levels: Sequence[LevelDefinition],
        scope: Scope = GLOBAL_SCOPE,
    ) -> list[LevelDefinition]:
        """
        Replace the level chain of one scope.  Other scopes are untouched.

        The ``scope`` argument wins over any scope set on the definitions.
        An empty ``levels`` removes the scope (specific scopes then fall
        back to the global chain).
        """
        model = self._load(template_id)
        _validate_levels(str(template_id), levels)

        stale = [lvl for lvl in model.levels if lvl.scope == scope]
        for lvl in stale:
            model.levels.remove(lvl)
        self._session.flush()

        for lvl in levels:
            model.levels.append(self._level_model(model.id, scope, lvl))
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "template_levels_replaced",
            extra={
                "template_id": str(model.id),
                "scope": str(scope),
                "removed": len(stale),
                "level_count": len(levels),
            },
        )
        return self._levels.levels_for_scope(model.id, scope, active_only=False)

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_template(
        self,
        template_id: UUID,
        include_fields: bool = True,
        include_levels: bool = True,
    ) -> ApprovalTemplate:
        return self._load(template_id).to_dto(
            include_fields=include_fields, include_levels=include_levels,
        )

    def get_template_by_name(self, name: str) -> ApprovalTemplate | None:
        model = self._session.execute(
            select(ApprovalTemplateModel).where(ApprovalTemplateModel.name == name)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_templates(
        self,
        active_only: bool = True,
        include_fields: bool = False,
        include_levels: bool = False,
    ) -> list[ApprovalTemplate]:
        stmt = select(ApprovalTemplateModel).order_by(ApprovalTemplateModel.display_name)
        if active_only:
            stmt = stmt.where(ApprovalTemplateModel.is_active.is_(True))
        if include_fields:
            stmt = stmt.options(selectinload(ApprovalTemplateModel.fields))
        if include_levels:
            stmt = stmt.options(
                selectinload(ApprovalTemplateModel.levels)
                .selectinload(ApprovalLevelModel.approvers)
            )
        models = self._session.execute(stmt).scalars().all()
        return [
            m.to_dto(include_fields=include_fields, include_levels=include_levels)
            for m in models
        ]

    def list_fields(
        self,
        template_id: UUID,
        active_only: bool = False,
    ) -> list[FieldDescriptor]:
        model = self._load(template_id)
        return [
            f.to_dto() for f in model.fields
            if f.is_active or not active_only
        ]

    def list_levels(
        self,
        template_id: UUID,
        scope: Scope | None = None,
    ) -> list[LevelDefinition]:
        self._load(template_id)
        return self._levels.list_levels(template_id, scope)

    # -----------------------------------------------------------------
    # Bootstrap
    # -----------------------------------------------------------------

    def bootstrap(self, seeds: Iterable[Any]) -> list[ApprovalTemplate]:
        """
        Create every seeded template whose name does not exist yet.

        Each seed exposes name, display_name, description, icon, color,
        default_sla_hours, fields and levels.

        Returns:
            The templates that were created (existing names are skipped).
        """
        created: list[ApprovalTemplate] = []
        for seed in seeds:
            if self._name_taken(seed.name):
                logger.info(
                    "template_seed_skipped",
                    extra={"template_name": seed.name},
                )
                continue
            created.append(self.create_template(
                name=seed.name,
                display_name=seed.display_name,
                description=seed.description,
                icon=seed.icon,
                color=seed.color,
                default_sla_hours=seed.default_sla_hours,
                fields=seed.fields,
                levels=seed.levels,
            ))
        return created
