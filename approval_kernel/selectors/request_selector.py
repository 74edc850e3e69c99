"""
Module: approval_kernel.selectors.request_selector
Responsibility: Read access to approval requests and their action trail:
    detail, paginated listings, operational queries (stuck and overdue
    requests) for an external escalation scheduler.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Listings are ordered newest first (created_at, then request_number)
      so paging is stable.
    - Action history is ordered by ``seq``.
"""

from collections.abc import Iterator
from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, func, select

from approval_kernel.domain.workflow import (
    ApprovalAction,
    ApprovalRequest,
    Page,
    RequestStatus,
    RequestView,
)
from approval_kernel.models.action import ApprovalActionModel
from approval_kernel.models.request import ApprovalRequestModel
from approval_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector):
    """Queries over approval_requests and approval_actions."""

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        model = self.session.get(ApprovalRequestModel, request_id)
        return model.to_dto() if model is not None else None

    def get_by_number(self, request_number: str) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_number == request_number)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def history(self, request_id: UUID) -> list[ApprovalAction]:
        """Every action of a request in ``seq`` order."""
        actions = self.session.execute(
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.seq)
        ).scalars().all()
        return [a.to_dto() for a in actions]

    def last_action(self, request_id: UUID) -> ApprovalAction | None:
        model = self.session.execute(
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def last_actor_below_level(self, request_id: UUID, level: int) -> UUID | None:
        """Actor of the most recent action recorded at a level below ``level``."""
        return self.session.execute(
            select(ApprovalActionModel.actor_id)
            .where(
                ApprovalActionModel.request_id == request_id,
                ApprovalActionModel.level < level,
            )
            .order_by(ApprovalActionModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def has_acted(self, request_id: UUID, user_id: UUID) -> bool:
        return bool(self.session.execute(
            select(exists().where(
                ApprovalActionModel.request_id == request_id,
                ApprovalActionModel.actor_id == user_id,
            ))
        ).scalar())

    def list_requests(
        self,
        viewer_id: UUID,
        view: RequestView = RequestView.MINE,
        status: RequestStatus | None = None,
        template_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """
        One page of requests for a viewer.

        ``MINE`` filters on requester, ``PENDING_FOR_ME`` on pending
        requests whose current approver is the viewer, ``ALL`` applies no
        viewer filter (the caller checks the viewer may see everything).
        """
        page = max(1, page)
        limit = max(1, limit)

        conditions = []
        if view == RequestView.MINE:
            conditions.append(ApprovalRequestModel.requester_id == viewer_id)
        elif view == RequestView.PENDING_FOR_ME:
            conditions.append(ApprovalRequestModel.current_approver_id == viewer_id)
            conditions.append(ApprovalRequestModel.status == RequestStatus.PENDING.value)
        if status is not None:
            conditions.append(ApprovalRequestModel.status == status.value)
        if template_id is not None:
            conditions.append(ApprovalRequestModel.template_id == template_id)

        total = self.session.execute(
            select(func.count(ApprovalRequestModel.id)).where(*conditions)
        ).scalar_one()

        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(*conditions)
            .order_by(
                ApprovalRequestModel.created_at.desc(),
                ApprovalRequestModel.request_number.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return Page(
            items=tuple(m.to_dto() for m in models),
            total=total,
            page=page,
            limit=limit,
        )

    def stuck_requests(self) -> list[ApprovalRequest]:
        """PENDING requests nobody can act on."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                ApprovalRequestModel.current_approver_id.is_(None),
            )
            .order_by(ApprovalRequestModel.submitted_at, ApprovalRequestModel.request_number)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def overdue_requests(self, as_of: datetime) -> list[ApprovalRequest]:
        """PENDING requests whose SLA deadline lies before ``as_of``."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                ApprovalRequestModel.sla_deadline.is_not(None),
                ApprovalRequestModel.sla_deadline < as_of,
            )
            .order_by(ApprovalRequestModel.sla_deadline, ApprovalRequestModel.request_number)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def count_for_template(self, template_id: UUID) -> int:
        return self.session.execute(
            select(func.count(ApprovalRequestModel.id))
            .where(ApprovalRequestModel.template_id == template_id)
        ).scalar_one()

    def iter_request_ids(self) -> Iterator[UUID]:
        """All request ids in request-number order."""
        yield from self.session.execute(
            select(ApprovalRequestModel.id).order_by(ApprovalRequestModel.request_number)
        ).scalars()
