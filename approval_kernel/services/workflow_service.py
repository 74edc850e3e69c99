"""
approval_kernel.services.workflow_service -- Approval request lifecycle.

Responsibility:
    Owns the lifecycle of an approval request: creation, submission,
    approve / decline / send back, update-and-resubmit, cancellation and
    draft deletion.  Every transition appends exactly one action row,
    recomputes the SLA deadline where needed and queues notifications.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and sibling services.  Flushes, never commits: the caller wraps each
    call in ``session_scope()`` so a transition is all or nothing.

Invariants enforced:
    - Transitions follow REQUEST_TRANSITIONS.
    - 0 <= current_level <= total_levels; total_levels is frozen at each
      (re)submission.
    - Per-request mutual exclusion: the request row is loaded with
      ``SELECT ... FOR UPDATE`` and guarded by the mapper version column.
      A concurrent loser fails with an InvalidStateError or
      AuthorizationError, never a silent no-op.
    - Notifications are dispatched only after the transition has been
      flushed, are discarded when it fails, and their own failures never
      reach the caller.

Failure modes:
    - NotFoundError, ValidationError, AuthorizationError,
      InvalidStateError, ConflictError subclasses (see exceptions.py).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.directory import PermissionOracle, UserDirectory
from approval_kernel.domain.forms import validate_form_data
from approval_kernel.domain.workflow import (
    APPROVER_ACTIONS,
    COMMENT_REQUIRED_ACTIONS,
    EDITABLE_STATUSES,
    GLOBAL_SCOPE,
    TERMINAL_STATUSES,
    ActionType,
    ApprovalAction,
    ApprovalRequest,
    Notification,
    NotificationType,
    Page,
    ReplayedState,
    RequestDetail,
    RequestStatus,
    RequestView,
    Scope,
    check_transition,
    replay_actions,
)
from approval_kernel.exceptions import (
    AccessDeniedError,
    CommentRequiredError,
    ConcurrentModificationError,
    InvalidActionError,
    InvalidRequestTransitionError,
    NotCurrentApproverError,
    NotRequesterError,
    RequestNotDraftError,
    RequestNotEditableError,
    RequestNotFoundError,
    RequestNotPendingError,
    RequestNumberConflictError,
    TemplateInactiveError,
    TemplateNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.action import ApprovalActionModel
from approval_kernel.models.request import ApprovalRequestModel
from approval_kernel.models.template import ApprovalTemplateModel
from approval_kernel.selectors.request_selector import RequestSelector
from approval_kernel.services.approver_resolver import ApproverResolver
from approval_kernel.services.notification_service import NotificationDispatcher
from approval_kernel.services.sequence_service import RequestNumberGenerator

logger = get_logger("services.workflow")

PERMISSION_MODULE = "APPROVALS"
READ_PERMISSION = "READ"
READ_ALL_PERMISSION = "READ_ALL"

SUBMIT_COMMENT = "Request submitted"
RESUBMIT_COMMENT = "Request resubmitted"
CANCEL_COMMENT = "Request cancelled by requester"


@dataclass(frozen=True)
class WorkflowOptions:
    """Tunables of the workflow service (see approval_config.EngineSettings)."""

    request_number_prefix: str = "REQ"
    sequence_width: int = 5
    max_number_retries: int = 3
    default_page_size: int = 20
    max_page_size: int = 100


@dataclass(frozen=True)
class AuditVerification:
    """Stored projection of a request compared with its replayed trail."""

    request_id: UUID
    request_number: str
    expected: ReplayedState
    actual: ReplayedState

    @property
    def mismatches(self) -> tuple[str, ...]:
        diffs = []
        for attr in ("status", "current_level", "current_approver_id"):
            if getattr(self.expected, attr) != getattr(self.actual, attr):
                diffs.append(attr)
        return tuple(diffs)

    @property
    def consistent(self) -> bool:
        return not self.mismatches


def _as_action(action: ActionType | str) -> ActionType:
    if isinstance(action, ActionType):
        parsed = action
    else:
        try:
            parsed = ActionType(str(action).upper())
        except ValueError:
            raise InvalidActionError(str(action)) from None
    if parsed not in APPROVER_ACTIONS:
        raise InvalidActionError(parsed.value)
    return parsed


class ApprovalWorkflowService:
    """
    RequestStateMachine.

    Usage:
        with session_scope() as session:
            workflow = ApprovalWorkflowService(session, directory)
            request = workflow.create_request(template_id, requester_id)
    """

    def __init__(
        self,
        session: Session,
        directory: UserDirectory,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        permission_oracle: PermissionOracle | None = None,
        options: WorkflowOptions | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._oracle = permission_oracle
        self._options = options or WorkflowOptions()
        self._resolver = ApproverResolver(session, directory)
        self._requests = RequestSelector(session)
        self._numbers = RequestNumberGenerator(
            session,
            self._clock,
            prefix=self._options.request_number_prefix,
            width=self._options.sequence_width,
        )
        self._outbox: list[Notification] = []

    # =====================================================================
    # Loading and persistence helpers
    # =====================================================================

    def _load_template(self, template_id: UUID) -> ApprovalTemplateModel:
        model = self._session.get(ApprovalTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _lock_request(self, request_id: UUID) -> ApprovalRequestModel:
        """Load a request for mutation, holding its row lock."""
        model = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _insert_with_number(self, model: ApprovalRequestModel) -> None:
        """Insert a new request under a freshly allocated number.

        A number already taken (rows written outside the counter) is
        retried a bounded number of times.
        """
        period = self._numbers.current_period()
        attempts = self._options.max_number_retries
        for attempt in range(1, attempts + 1):
            model.request_number = self._numbers.next_number(period)
            savepoint = self._session.begin_nested()
            try:
                self._session.add(model)
                self._session.flush()
            except IntegrityError as exc:
                savepoint.rollback()
                if "request_number" not in str(exc.orig):
                    raise
                logger.warning(
                    "request_number_conflict_retry",
                    extra={
                        "request_number": model.request_number,
                        "attempt": attempt,
                        "max_attempts": attempts,
                    },
                )
                continue
            savepoint.commit()
            return
        raise RequestNumberConflictError(period, attempts)

    def _next_seq(self, request_id: UUID) -> int:
        # Safe under the request row lock; (request_id, seq) is unique.
        current = self._session.execute(
            select(func.coalesce(func.max(ApprovalActionModel.seq), 0))
            .where(ApprovalActionModel.request_id == request_id)
        ).scalar_one()
        return current + 1

    def _timing(
        self,
        model: ApprovalRequestModel,
        now: datetime,
    ) -> tuple[bool, float | None]:
        """(was_overdue, response_time_hours) measured before mutation."""
        was_overdue = model.sla_deadline is not None and now > model.sla_deadline
        last = self._requests.last_action(model.id)
        if last is None or last.created_at is None:
            return was_overdue, None
        hours = (now - last.created_at).total_seconds() / 3600
        return was_overdue, hours

    def _append_action(
        self,
        model: ApprovalRequestModel,
        action_type: ActionType,
        level: int,
        actor_id: UUID,
        now: datetime,
        *,
        comment: str | None = None,
        previous_approver_id: UUID | None = None,
        was_overdue: bool = False,
        response_time_hours: float | None = None,
        snapshot: dict[str, Any] | None = None,
    ) -> ApprovalActionModel:
        action = ApprovalActionModel(
            request_id=model.id,
            seq=self._next_seq(model.id),
            action_type=action_type.value,
            level=level,
            actor_id=actor_id,
            comment=comment,
            previous_approver_id=previous_approver_id,
            next_approver_id=model.current_approver_id,
            was_overdue=was_overdue,
            response_time_hours=response_time_hours,
            form_data_snapshot=snapshot,
            resulting_status=model.status,
            created_at=now,
        )
        self._session.add(action)
        return action

    def _deadline(self, template: ApprovalTemplateModel, now: datetime) -> datetime | None:
        if not template.default_sla_hours:
            return None
        return now + timedelta(hours=template.default_sla_hours)

    def _set_status(self, model: ApprovalRequestModel, target: RequestStatus) -> None:
        check_transition(model.id, RequestStatus(model.status), target)
        model.status = target.value

    # =====================================================================
    # Notifications
    # =====================================================================

    def _notify(
        self,
        user_id: UUID | None,
        kind: NotificationType,
        title: str,
        message: str,
        model: ApprovalRequestModel,
    ) -> None:
        if user_id is None:
            return
        self._outbox.append(Notification(
            user_id=user_id,
            type=kind,
            title=title,
            message=message,
            entity_type="approval_request",
            entity_id=model.id,
        ))

    def _flush_outbox(self) -> None:
        pending, self._outbox = self._outbox, []
        if pending:
            self._dispatcher.dispatch(pending)

    @contextmanager
    def _operation(self, request_id: UUID | None, **fields: Any) -> Iterator[None]:
        """
        Scope of one public operation.

        Starts with an empty outbox and empties it again on failure, so
        notifications of a rolled-back transition are never dispatched.
        A lost version check surfaces as ConcurrentModificationError
        whichever statement autoflushed it.
        """
        self._outbox = []
        try:
            with LogContext.bind(request_id=request_id, **fields):
                yield
        except StaleDataError as exc:
            self._outbox = []
            raise ConcurrentModificationError(str(request_id)) from exc
        except Exception:
            self._outbox = []
            raise

    # =====================================================================
    # Submission
    # =====================================================================

    def _submit(
        self,
        model: ApprovalRequestModel,
        template: ApprovalTemplateModel,
        actor_id: UUID,
        action_type: ActionType,
        now: datetime,
    ) -> None:
        """Route a DRAFT or SENT_BACK request to level 1 (chain restarts)."""
        was_overdue, response_time = self._timing(model, now)
        previous_approver_id = model.current_approver_id

        resolution = self._resolver.resolve(
            template.id, model.scope, 1, model.requester_id,
        )
        model.total_levels = resolution.total_levels
        model.submitted_at = now
        model.updated_at = now

        if resolution.total_levels == 0:
            self._set_status(model, RequestStatus.APPROVED)
            model.current_level = 0
            model.current_approver_id = None
            model.sla_deadline = None
            model.completed_at = now
        else:
            self._set_status(model, RequestStatus.PENDING)
            model.current_level = 1
            model.current_approver_id = resolution.approver_id
            model.sla_deadline = self._deadline(template, now)
            model.completed_at = None

        self._append_action(
            model,
            action_type,
            0,
            actor_id,
            now,
            comment=RESUBMIT_COMMENT if action_type == ActionType.RESUBMIT else SUBMIT_COMMENT,
            previous_approver_id=previous_approver_id,
            was_overdue=was_overdue,
            response_time_hours=response_time,
            snapshot=dict(model.form_data or {}),
        )

        display = template.display_name
        number = model.request_number
        if model.status == RequestStatus.APPROVED.value:
            self._notify(
                model.requester_id,
                NotificationType.APPROVAL_FINAL,
                "Request Approved",
                f"Your {display} request (#{number}) has been fully approved",
                model,
            )
        elif action_type == ActionType.RESUBMIT:
            self._notify(
                model.current_approver_id,
                NotificationType.APPROVAL_RESUBMITTED,
                "Request Resubmitted",
                f"{display} request (#{number}) has been resubmitted",
                model,
            )
        else:
            self._notify(
                model.current_approver_id,
                NotificationType.APPROVAL_ASSIGNED,
                "New Approval Request",
                f"You have a new {display} request (#{number}) to review",
                model,
            )

        logger.info(
            "request_resubmitted" if action_type == ActionType.RESUBMIT else "request_submitted",
            extra={
                "request_number": number,
                "status": model.status,
                "total_levels": model.total_levels,
                "approver_id": str(model.current_approver_id),
            },
        )

    # =====================================================================
    # Public operations
    # =====================================================================

    def create_request(
        self,
        template_id: UUID,
        requester_id: UUID,
        scope: Scope | None = None,
        form_data: dict[str, Any] | None = None,
        attachments: list[str] | None = None,
        submit_now: bool = True,
    ) -> ApprovalRequest:
        """
        Create a request as DRAFT, or submit it immediately.

        Raises:
            TemplateNotFoundError / TemplateInactiveError: Bad template.
            MissingRequiredFieldsError / InvalidFieldValuesError: When
                submitting with incomplete form data.
            RequestNumberConflictError: Number retries exhausted.
        """
        scope = scope or GLOBAL_SCOPE
        with self._operation(None, actor_id=requester_id, template_id=template_id):
            template = self._load_template(template_id)
            if not template.is_active:
                raise TemplateInactiveError(str(template_id))
            if submit_now:
                validate_form_data([f.to_dto() for f in template.fields], form_data)

            now = self._clock.now()
            model = ApprovalRequestModel(
                template_id=template.id,
                requester_id=requester_id,
                project_id=scope.project_id,
                cohort_id=scope.cohort_id,
                form_data=dict(form_data or {}),
                attachments=list(attachments or []),
                status=RequestStatus.DRAFT.value,
                current_level=0,
                total_levels=0,
                created_at=now,
                updated_at=now,
            )
            self._insert_with_number(model)

            with LogContext.bind(request_id=model.id):
                logger.info(
                    "request_created",
                    extra={
                        "request_number": model.request_number,
                        "scope": str(scope),
                        "submit_now": submit_now,
                    },
                )
                if submit_now:
                    self._submit(model, template, requester_id, ActionType.SUBMIT, now)
                    self._session.flush()

            self._flush_outbox()
            return model.to_dto()

    def submit(self, request_id: UUID, actor_id: UUID) -> ApprovalRequest:
        """Submit a DRAFT as-is (required fields are validated)."""
        with self._operation(request_id, actor_id=actor_id):
            model = self._lock_request(request_id)
            if model.requester_id != actor_id:
                raise NotRequesterError(str(request_id), str(actor_id))
            if model.status != RequestStatus.DRAFT.value:
                raise RequestNotDraftError(str(request_id), model.status)
            template = model.template
            validate_form_data([f.to_dto() for f in template.fields], model.form_data)

            self._submit(model, template, actor_id, ActionType.SUBMIT, self._clock.now())
            self._session.flush()
            self._flush_outbox()
            return model.to_dto()

    def act(
        self,
        request_id: UUID,
        actor_id: UUID,
        action: ActionType | str,
        comment: str | None = None,
    ) -> ApprovalRequest:
        """
        Apply an approver decision: APPROVE, DECLINE or SEND_BACK.

        Checks run in order: action kind, actor is the current approver,
        request is PENDING, comment present for DECLINE / SEND_BACK.

        Raises:
            InvalidActionError, NotCurrentApproverError,
            RequestNotPendingError, CommentRequiredError,
            ConcurrentModificationError.
        """
        action = _as_action(action)
        with self._operation(request_id, actor_id=actor_id):
            model = self._lock_request(request_id)
            if model.current_approver_id != actor_id:
                raise NotCurrentApproverError(str(request_id), str(actor_id))
            if model.status != RequestStatus.PENDING.value:
                raise RequestNotPendingError(str(request_id), model.status)
            if action in COMMENT_REQUIRED_ACTIONS and not (comment and comment.strip()):
                raise CommentRequiredError(action.value)

            now = self._clock.now()
            was_overdue, response_time = self._timing(model, now)
            level_at = model.current_level
            previous_approver_id = model.current_approver_id
            template = model.template
            display = template.display_name
            number = model.request_number

            if action == ActionType.APPROVE:
                self._apply_approve(model, template, level_at, now)
            elif action == ActionType.DECLINE:
                self._set_status(model, RequestStatus.DECLINED)
                model.current_approver_id = None
                model.completed_at = now
                model.sla_deadline = None
                self._notify(
                    model.requester_id,
                    NotificationType.APPROVAL_DECLINED,
                    "Request Declined",
                    f"Your {display} request (#{number}) has been declined: {comment}",
                    model,
                )
            else:
                target = self._requests.last_actor_below_level(model.id, level_at)
                self._set_status(model, RequestStatus.SENT_BACK)
                model.current_level = max(0, level_at - 1)
                model.current_approver_id = target or model.requester_id
                model.sla_deadline = None
                self._notify(
                    model.current_approver_id,
                    NotificationType.APPROVAL_SENT_BACK,
                    "Request Sent Back",
                    f"{display} request (#{number}) has been sent back: {comment}",
                    model,
                )

            model.updated_at = now
            self._append_action(
                model,
                action,
                level_at,
                actor_id,
                now,
                comment=comment,
                previous_approver_id=previous_approver_id,
                was_overdue=was_overdue,
                response_time_hours=response_time,
            )
            self._session.flush()

            logger.info(
                "request_action_applied",
                extra={
                    "request_number": number,
                    "action": action.value,
                    "level": level_at,
                    "status": model.status,
                    "next_approver_id": str(model.current_approver_id),
                    "was_overdue": was_overdue,
                },
            )
            self._flush_outbox()
            return model.to_dto()

    def _apply_approve(
        self,
        model: ApprovalRequestModel,
        template: ApprovalTemplateModel,
        level_at: int,
        now: datetime,
    ) -> None:
        next_level = level_at + 1
        approver_id = None
        if next_level <= model.total_levels:
            approver_id = self._resolver.resolve(
                template.id, model.scope, next_level, model.requester_id,
            ).approver_id

        display = template.display_name
        number = model.request_number
        if approver_id is None:
            self._set_status(model, RequestStatus.APPROVED)
            model.current_approver_id = None
            model.completed_at = now
            model.sla_deadline = None
            self._notify(
                model.requester_id,
                NotificationType.APPROVAL_FINAL,
                "Request Approved",
                f"Your {display} request (#{number}) has been fully approved",
                model,
            )
            return

        self._set_status(model, RequestStatus.PENDING)
        model.current_level = next_level
        model.current_approver_id = approver_id
        model.sla_deadline = self._deadline(template, now)
        self._notify(
            model.requester_id,
            NotificationType.APPROVAL_APPROVED,
            "Approval Progress",
            f"Your {display} request has been approved at level {level_at}",
            model,
        )
        self._notify(
            approver_id,
            NotificationType.APPROVAL_ASSIGNED,
            "New Approval Request",
            f"You have a new {display} request (#{number}) to review",
            model,
        )

    def update_and_resubmit(
        self,
        request_id: UUID,
        actor_id: UUID,
        form_data: dict[str, Any] | None = None,
        attachments: list[str] | None = None,
        submit_now: bool = False,
    ) -> ApprovalRequest:
        """
        Overwrite form data / attachments of a DRAFT or SENT_BACK request
        and optionally (re)submit it.  Resubmission restarts at level 1.

        Raises:
            NotRequesterError, RequestNotEditableError,
            MissingRequiredFieldsError, InvalidFieldValuesError.
        """
        with self._operation(request_id, actor_id=actor_id):
            model = self._lock_request(request_id)
            if model.requester_id != actor_id:
                raise NotRequesterError(str(request_id), str(actor_id))
            if RequestStatus(model.status) not in EDITABLE_STATUSES:
                raise RequestNotEditableError(str(request_id), model.status)

            now = self._clock.now()
            prior_status = RequestStatus(model.status)
            model.form_data = dict(form_data or {})
            model.attachments = list(attachments or [])
            model.updated_at = now

            if submit_now:
                template = model.template
                validate_form_data([f.to_dto() for f in template.fields], model.form_data)
                action_type = (
                    ActionType.RESUBMIT
                    if prior_status == RequestStatus.SENT_BACK
                    else ActionType.SUBMIT
                )
                self._submit(model, template, actor_id, action_type, now)

            self._session.flush()
            if not submit_now:
                logger.info(
                    "request_updated",
                    extra={"request_number": model.request_number, "status": model.status},
                )
            self._flush_outbox()
            return model.to_dto()

    def cancel(self, request_id: UUID, actor_id: UUID) -> ApprovalRequest | None:
        """
        Cancel a request.  A DRAFT is deleted outright (returns None);
        otherwise the request becomes CANCELLED with a CANCEL action.

        Raises:
            NotRequesterError, InvalidRequestTransitionError (terminal).
        """
        with self._operation(request_id, actor_id=actor_id):
            model = self._lock_request(request_id)
            if model.requester_id != actor_id:
                raise NotRequesterError(str(request_id), str(actor_id))

            if model.status == RequestStatus.DRAFT.value:
                self._delete(model)
                return None

            status = RequestStatus(model.status)
            if status in TERMINAL_STATUSES:
                raise InvalidRequestTransitionError(
                    str(request_id), status.value, RequestStatus.CANCELLED.value,
                )

            now = self._clock.now()
            was_overdue, response_time = self._timing(model, now)
            previous_approver_id = model.current_approver_id

            self._set_status(model, RequestStatus.CANCELLED)
            model.current_approver_id = None
            model.sla_deadline = None
            model.completed_at = now
            model.updated_at = now
            self._append_action(
                model,
                ActionType.CANCEL,
                model.current_level,
                actor_id,
                now,
                comment=CANCEL_COMMENT,
                previous_approver_id=previous_approver_id,
                was_overdue=was_overdue,
                response_time_hours=response_time,
            )
            self._session.flush()

            if status == RequestStatus.PENDING:
                self._notify(
                    previous_approver_id,
                    NotificationType.APPROVAL_CANCELLED,
                    "Request Cancelled",
                    f"{model.template.display_name} request (#{model.request_number}) "
                    f"has been cancelled by the requester",
                    model,
                )
            logger.info(
                "request_cancelled",
                extra={"request_number": model.request_number, "from_status": status.value},
            )
            self._flush_outbox()
            return model.to_dto()

    def delete_draft(self, request_id: UUID, actor_id: UUID) -> None:
        """Physically delete a DRAFT.  Submitted requests are never deleted."""
        with self._operation(request_id, actor_id=actor_id):
            model = self._lock_request(request_id)
            if model.requester_id != actor_id:
                raise NotRequesterError(str(request_id), str(actor_id))
            if model.status != RequestStatus.DRAFT.value:
                raise RequestNotDraftError(str(request_id), model.status)
            self._delete(model)

    def _delete(self, model: ApprovalRequestModel) -> None:
        number = model.request_number
        self._session.delete(model)
        self._session.flush()
        logger.info("draft_deleted", extra={"request_number": number})

    # =====================================================================
    # Reads
    # =====================================================================

    def get_request(
        self,
        request_id: UUID,
        viewer_id: UUID | None = None,
    ) -> RequestDetail:
        """
        A request with its full action history.

        When ``viewer_id`` is given, the viewer must be the requester, the
        current approver, a past actor, or hold APPROVALS/READ.
        """
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        actions = tuple(self._requests.history(request_id))

        if viewer_id is not None and not self._may_view(request, actions, viewer_id):
            raise AccessDeniedError(
                str(viewer_id), f"not a participant of request {request.request_number}",
            )
        return RequestDetail(
            request=request,
            actions=actions,
            can_approve=request.can_act(viewer_id),
        )

    def _may_view(
        self,
        request: ApprovalRequest,
        actions: tuple[ApprovalAction, ...],
        viewer_id: UUID,
    ) -> bool:
        if viewer_id in (request.requester_id, request.current_approver_id):
            return True
        if any(a.actor_id == viewer_id for a in actions):
            return True
        return self._oracle is not None and self._oracle.check(
            viewer_id, PERMISSION_MODULE, READ_PERMISSION,
        )

    def list_requests(
        self,
        viewer_id: UUID,
        view: RequestView = RequestView.MINE,
        status: RequestStatus | None = None,
        template_id: UUID | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page:
        """Paginated listing; ``ALL`` needs APPROVALS/READ_ALL when an oracle is set."""
        if view == RequestView.ALL and self._oracle is not None:
            if not self._oracle.check(viewer_id, PERMISSION_MODULE, READ_ALL_PERMISSION):
                raise AccessDeniedError(str(viewer_id), "may not list all requests")
        limit = limit or self._options.default_page_size
        limit = min(limit, self._options.max_page_size)
        return self._requests.list_requests(
            viewer_id, view, status=status, template_id=template_id, page=page, limit=limit,
        )

    def list_stuck_requests(self) -> list[ApprovalRequest]:
        return self._requests.stuck_requests()

    def list_overdue_requests(self, as_of: datetime | None = None) -> list[ApprovalRequest]:
        return self._requests.overdue_requests(as_of or self._clock.now())

    def verify_audit_trail(self, request_id: UUID) -> AuditVerification:
        """Replay the action trail and compare it with the stored request."""
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        actions = self._requests.history(request_id)
        expected = replay_actions(actions)
        actual = ReplayedState(
            status=request.status,
            current_level=request.current_level,
            current_approver_id=request.current_approver_id,
            action_count=len(actions),
        )
        result = AuditVerification(request.id, request.request_number, expected, actual)
        if not result.consistent:
            logger.warning(
                "audit_trail_mismatch",
                extra={
                    "request_number": request.request_number,
                    "mismatches": list(result.mismatches),
                },
            )
        return result
