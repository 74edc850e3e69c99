"""
approval_kernel.services.approver_resolver -- ApproverResolver.

Responsibility:
    Loads the level chain that applies to (template, scope), falling back
    to the global chain, looks up the requester in the user directory and
    runs the pure first-match resolution.

Architecture position:
    Kernel > Services.  Reads only; never flushes.

Invariants enforced:
    - Invoked fresh on every level transition; nothing is cached, so
      configuration edits affect levels a request has not reached yet.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.directory import UserDirectory
from approval_kernel.domain.resolver import ApproverResolution, resolve_approver
from approval_kernel.domain.workflow import GLOBAL_SCOPE, Scope
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.level_selector import LevelSelector

logger = get_logger("services.resolver")


class ApproverResolver:
    """Resolves the concrete approver of a level."""

    def __init__(self, session: Session, directory: UserDirectory):
        self._levels = LevelSelector(session)
        self._directory = directory

    def resolve(
        self,
        template_id: UUID,
        scope: Scope | None,
        level_number: int,
        requester_id: UUID,
    ) -> ApproverResolution:
        """
        Resolve ``(approver_id | None, total_levels)`` for one level.

        A specific scope with no active levels uses the global chain.
        """
        levels, scope_used = self._levels.effective_levels(
            template_id, scope or GLOBAL_SCOPE,
        )
        requester = self._directory.get_user(requester_id)
        resolution = resolve_approver(levels, level_number, requester, self._directory)

        extra = {
            "template_id": str(template_id),
            "scope": str(scope_used),
            "level_number": level_number,
            "total_levels": resolution.total_levels,
        }
        if resolution.resolved:
            logger.info(
                "approver_resolved",
                extra={
                    **extra,
                    "approver_id": str(resolution.approver_id),
                    "candidate_kind": resolution.candidate.kind.value,
                },
            )
        else:
            logger.info("approver_unresolved", extra=extra)
        return resolution
