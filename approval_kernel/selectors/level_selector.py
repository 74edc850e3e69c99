"""
Module: approval_kernel.selectors.level_selector
Responsibility: Read access to scoped level configuration (LevelConfig
    read side), including the specific-scope-then-global fallback used by
    approver resolution.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Fallback happens only when the specific scope has no active level
      at all; a specific scope with levels never mixes in global ones.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from approval_kernel.domain.workflow import GLOBAL_SCOPE, LevelDefinition, Scope
from approval_kernel.logging_config import get_logger
from approval_kernel.models.level import ApprovalLevelModel
from approval_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.level")


class LevelSelector(BaseSelector):
    """Queries over approval_levels and their candidates."""

    def _scope_filter(self, stmt, scope: Scope):
        if scope.is_global:
            return stmt.where(
                ApprovalLevelModel.project_id.is_(None),
                ApprovalLevelModel.cohort_id.is_(None),
            )
        return stmt.where(
            ApprovalLevelModel.project_id == scope.project_id,
            ApprovalLevelModel.cohort_id == scope.cohort_id,
        )

    def levels_for_scope(
        self,
        template_id: UUID,
        scope: Scope = GLOBAL_SCOPE,
        active_only: bool = True,
    ) -> list[LevelDefinition]:
        """Levels defined for exactly ``scope``, ordered by level number."""
        stmt = (
            select(ApprovalLevelModel)
            .options(selectinload(ApprovalLevelModel.approvers))
            .where(ApprovalLevelModel.template_id == template_id)
            .order_by(ApprovalLevelModel.level_number)
        )
        stmt = self._scope_filter(stmt, scope)
        if active_only:
            stmt = stmt.where(ApprovalLevelModel.is_active.is_(True))
        levels = self.session.execute(stmt).scalars().all()
        return [lvl.to_dto() for lvl in levels]

    def effective_levels(
        self,
        template_id: UUID,
        scope: Scope = GLOBAL_SCOPE,
    ) -> tuple[list[LevelDefinition], Scope]:
        """
        Active levels that apply to ``scope``.

        Returns:
            (levels, scope_used).  ``scope_used`` is GLOBAL_SCOPE when a
            specific scope had no levels and the global chain was used.
        """
        levels = self.levels_for_scope(template_id, scope)
        if levels or scope.is_global:
            return levels, scope

        logger.info(
            "scope_fallback_to_global",
            extra={"template_id": str(template_id), "scope": str(scope)},
        )
        return self.levels_for_scope(template_id, GLOBAL_SCOPE), GLOBAL_SCOPE

    def list_levels(
        self,
        template_id: UUID,
        scope: Scope | None = None,
    ) -> list[LevelDefinition]:
        """All levels (active or not) of a template, optionally for one scope."""
        if scope is not None:
            return self.levels_for_scope(template_id, scope, active_only=False)
        levels = self.session.execute(
            select(ApprovalLevelModel)
            .options(selectinload(ApprovalLevelModel.approvers))
            .where(ApprovalLevelModel.template_id == template_id)
            .order_by(
                ApprovalLevelModel.project_id.is_not(None),
                ApprovalLevelModel.project_id,
                ApprovalLevelModel.cohort_id,
                ApprovalLevelModel.level_number,
            )
        ).scalars().all()
        return [lvl.to_dto() for lvl in levels]
