"""
Workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the multi-level approval engine.  Defines the
request lifecycle state machine, action types, scope, the tagged-variant
field descriptor, approver candidates, level definitions, immutable
request/action snapshots, and audit replay.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  May
import only from ``approval_kernel.exceptions``.

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* A ``Scope`` is either global (no project, no cohort) or specific
  (both set).  Anything else raises ``InvalidScopeError``.
* An ``ApproverCandidate`` uses exactly one resolution mode.
* ``replay_actions`` derives status / level / approver from the action
  trail alone; the stored request is a projection of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from approval_kernel.exceptions import (
    InvalidApproverCandidateError,
    InvalidRequestTransitionError,
    InvalidScopeError,
)


# =========================================================================
# Request Status Lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    SENT_BACK = "SENT_BACK"
    CANCELLED = "CANCELLED"


# PENDING -> PENDING is a level advance.  DRAFT / SENT_BACK -> APPROVED is
# a submission whose scope has no levels at all.
REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
    }),
    RequestStatus.PENDING: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.DECLINED,
        RequestStatus.SENT_BACK,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.SENT_BACK: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.DECLINED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.DECLINED,
    RequestStatus.CANCELLED,
})

EDITABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.SENT_BACK,
})


def can_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return to_status in REQUEST_TRANSITIONS.get(from_status, frozenset())


def check_transition(
    request_id: UUID | str,
    from_status: RequestStatus,
    to_status: RequestStatus,
) -> None:
    """Raise InvalidRequestTransitionError unless the edge exists."""
    if not can_transition(from_status, to_status):
        raise InvalidRequestTransitionError(
            str(request_id), from_status.value, to_status.value
        )


class ActionType(str, Enum):
    """Kinds of audit rows appended to a request's trail."""

    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    DECLINE = "DECLINE"
    SEND_BACK = "SEND_BACK"
    RESUBMIT = "RESUBMIT"
    CANCEL = "CANCEL"


APPROVER_ACTIONS: frozenset[ActionType] = frozenset({
    ActionType.APPROVE,
    ActionType.DECLINE,
    ActionType.SEND_BACK,
})

COMMENT_REQUIRED_ACTIONS: frozenset[ActionType] = frozenset({
    ActionType.DECLINE,
    ActionType.SEND_BACK,
})


class ApproverKind(str, Enum):
    """Resolution mode of an approver candidate."""

    REQUESTER_SUPERVISOR = "REQUESTER_SUPERVISOR"
    USER = "USER"
    ROLE = "ROLE"


class FieldKind(str, Enum):
    """Form field kinds.  Validation is generic over these tags."""

    TEXT = "TEXT"
    TEXTAREA = "TEXTAREA"
    NUMBER = "NUMBER"
    DATE = "DATE"
    SELECT = "SELECT"
    RADIO = "RADIO"
    CHECKBOX = "CHECKBOX"
    FILE = "FILE"
    EMAIL = "EMAIL"
    PHONE = "PHONE"


class RequestView(str, Enum):
    """Listing filters for ``list_requests``."""

    MINE = "MINE"
    PENDING_FOR_ME = "PENDING_FOR_ME"
    ALL = "ALL"


class NotificationType(str, Enum):
    APPROVAL_ASSIGNED = "APPROVAL_ASSIGNED"
    APPROVAL_APPROVED = "APPROVAL_APPROVED"
    APPROVAL_FINAL = "APPROVAL_FINAL"
    APPROVAL_DECLINED = "APPROVAL_DECLINED"
    APPROVAL_SENT_BACK = "APPROVAL_SENT_BACK"
    APPROVAL_RESUBMITTED = "APPROVAL_RESUBMITTED"
    APPROVAL_CANCELLED = "APPROVAL_CANCELLED"


# =========================================================================
# Configuration value objects
# =========================================================================


@dataclass(frozen=True)
class Scope:
    """Project + cohort context a level configuration applies to.

    Both null means global; both set means specific.
    """

    project_id: UUID | None = None
    cohort_id: UUID | None = None

    def __post_init__(self) -> None:
        if (self.project_id is None) != (self.cohort_id is None):
            raise InvalidScopeError(
                str(self.project_id) if self.project_id else None,
                str(self.cohort_id) if self.cohort_id else None,
            )

    @property
    def is_global(self) -> bool:
        return self.project_id is None

    def __str__(self) -> str:
        if self.is_global:
            return "global"
        return f"{self.project_id}/{self.cohort_id}"


GLOBAL_SCOPE = Scope()


@dataclass(frozen=True)
class FieldDescriptor:
    """A single form field on a template.

    ``kind`` is a tag; there is one descriptor type for every kind.
    ``depends_on_field`` / ``depends_on_value`` make the field apply only
    when the controlling field holds the given value.
    """

    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    options: tuple[str, ...] = ()
    placeholder: str | None = None
    help_text: str | None = None
    validation: str | None = None
    default_value: str | None = None
    sort_order: int = 0
    depends_on_field: str | None = None
    depends_on_value: str | None = None
    is_active: bool = True
    id: UUID | None = None


@dataclass(frozen=True)
class ApproverCandidate:
    """One configured way of resolving a level's approver.

    ``sort_order`` defines precedence; only the first resolvable
    candidate of a level is used.
    """

    kind: ApproverKind
    user_id: UUID | None = None
    role: str | None = None
    sort_order: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.kind == ApproverKind.USER:
            if self.user_id is None or self.role is not None:
                raise InvalidApproverCandidateError(
                    "USER candidate needs user_id and no role"
                )
        elif self.kind == ApproverKind.ROLE:
            if not self.role or self.user_id is not None:
                raise InvalidApproverCandidateError(
                    "ROLE candidate needs role and no user_id"
                )
        elif self.user_id is not None or self.role is not None:
            raise InvalidApproverCandidateError(
                "REQUESTER_SUPERVISOR candidate takes neither user_id nor role"
            )

    @classmethod
    def supervisor(cls, sort_order: int = 0) -> ApproverCandidate:
        return cls(ApproverKind.REQUESTER_SUPERVISOR, sort_order=sort_order)

    @classmethod
    def fixed_user(cls, user_id: UUID, sort_order: int = 0) -> ApproverCandidate:
        return cls(ApproverKind.USER, user_id=user_id, sort_order=sort_order)

    @classmethod
    def for_role(cls, role: str, sort_order: int = 0) -> ApproverCandidate:
        return cls(ApproverKind.ROLE, role=role, sort_order=sort_order)


@dataclass(frozen=True)
class LevelDefinition:
    """One ordered stage of an approval chain within a scope.

    ``sla_hours`` and the escalation fields are hooks for an external
    scheduler; the request deadline itself comes from the template.
    """

    level_number: int
    candidates: tuple[ApproverCandidate, ...] = ()
    level_name: str | None = None
    sla_hours: int | None = None
    escalate_after_hours: int | None = None
    escalate_to_user_id: UUID | None = None
    is_active: bool = True
    scope: Scope = GLOBAL_SCOPE
    id: UUID | None = None


@dataclass(frozen=True)
class ApprovalTemplate:
    """Immutable snapshot of a workflow definition."""

    id: UUID
    name: str
    display_name: str
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    default_sla_hours: int | None = None
    is_active: bool = True
    fields: tuple[FieldDescriptor, ...] = ()
    levels: tuple[LevelDefinition, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =========================================================================
# Request and Action Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalAction:
    """One audit row.  Immutable once written."""

    id: UUID
    request_id: UUID
    seq: int
    action_type: ActionType
    level: int
    actor_id: UUID
    resulting_status: RequestStatus
    comment: str | None = None
    previous_approver_id: UUID | None = None
    next_approver_id: UUID | None = None
    was_overdue: bool = False
    response_time_hours: float | None = None
    form_data_snapshot: dict[str, Any] | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request."""

    id: UUID
    request_number: str
    template_id: UUID
    requester_id: UUID
    scope: Scope = GLOBAL_SCOPE
    form_data: dict[str, Any] = field(default_factory=dict)
    attachments: tuple[str, ...] = ()
    status: RequestStatus = RequestStatus.DRAFT
    current_level: int = 0
    total_levels: int = 0
    current_approver_id: UUID | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    sla_deadline: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_stuck(self) -> bool:
        """Pending with nobody able to act on it."""
        return self.status == RequestStatus.PENDING and self.current_approver_id is None

    def can_act(self, user_id: UUID | None) -> bool:
        return (
            user_id is not None
            and self.status == RequestStatus.PENDING
            and self.current_approver_id == user_id
        )


@dataclass(frozen=True)
class RequestDetail:
    """A request together with its trail and the viewer's rights."""

    request: ApprovalRequest
    actions: tuple[ApprovalAction, ...] = ()
    can_approve: bool = False


@dataclass(frozen=True)
class Page:
    """One page of a listing."""

    items: tuple[Any, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class Notification:
    """A fire-and-forget message for one user."""

    user_id: UUID
    type: NotificationType
    title: str
    message: str
    entity_type: str = "approval_request"
    entity_id: UUID | None = None


# =========================================================================
# Audit replay
# =========================================================================


@dataclass(frozen=True)
class ReplayedState:
    """Projection of a request derived from its action trail."""

    status: RequestStatus = RequestStatus.DRAFT
    current_level: int = 0
    current_approver_id: UUID | None = None
    action_count: int = 0


def _level_after(action: ApprovalAction) -> int:
    if action.action_type in (ActionType.SUBMIT, ActionType.RESUBMIT):
        return 1 if action.resulting_status == RequestStatus.PENDING else 0
    if action.action_type == ActionType.APPROVE:
        if action.resulting_status == RequestStatus.PENDING:
            return action.level + 1
        return action.level
    if action.action_type == ActionType.SEND_BACK:
        return max(0, action.level - 1)
    return action.level


def replay_actions(actions: Iterable[ApprovalAction]) -> ReplayedState:
    """Fold an action trail (any order) into the request projection.

    Actions are applied in ``seq`` order.  A request with no actions
    replays to the initial DRAFT state.
    """
    state = ReplayedState()
    for action in sorted(actions, key=lambda a: a.seq):
        state = ReplayedState(
            status=action.resulting_status,
            current_level=_level_after(action),
            current_approver_id=action.next_approver_id,
            action_count=state.action_count + 1,
        )
    return state
