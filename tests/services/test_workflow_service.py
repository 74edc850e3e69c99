"""
Tests for ApprovalWorkflowService -- the request state machine.

Covers:
- single fixed-user level, submit then approve
- send back to the requester, update and resubmit
- project/cohort override chain
- unresolvable role leaves a stuck request
- multi-level progress, send back to the previous approver
- zero-level auto-finalization and configuration drift after submission
- act(): authorization, status and comment checks, SLA flags
- submit(), update_and_resubmit(), cancel(), delete_draft()
- get_request() access rules, list_requests() views and paging
- operational queries, audit-trail verification, notifications
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.directory import UserRecord
from approval_kernel.domain.workflow import (
    ActionType,
    ApproverCandidate,
    NotificationType,
    RequestStatus,
    RequestView,
    Scope,
)
from approval_kernel.exceptions import (
    AccessDeniedError,
    AuthorizationError,
    CommentRequiredError,
    ConcurrentModificationError,
    InvalidActionError,
    InvalidRequestTransitionError,
    InvalidStateError,
    MissingRequiredFieldsError,
    NotCurrentApproverError,
    NotRequesterError,
    RequestNotDraftError,
    RequestNotEditableError,
    RequestNotFoundError,
    RequestNotPendingError,
    TemplateInactiveError,
    TemplateNotFoundError,
    ValidationError,
)
from approval_kernel.models.request import ApprovalRequestModel
from approval_kernel.services.notification_service import NotificationDispatcher
from approval_kernel.services.workflow_service import ApprovalWorkflowService
from tests.conftest import LEAVE_FORM, chain


def history(workflow, request_id):
    return workflow.get_request(request_id).actions


def kinds(actions):
    return [a.action_type for a in actions]


# ---------------------------------------------------------------------------
# Core flows
# ---------------------------------------------------------------------------


class TestSingleLevelApproval:
    """Single global level, fixed user U1, 24h SLA."""

    def test_submit_routes_to_level_one(self, workflow, single_level_template, cast, deterministic_clock):
        request = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM,
        )
        now = deterministic_clock.now()
        assert request.status == RequestStatus.PENDING
        assert request.current_level == 1
        assert request.total_levels == 1
        assert request.current_approver_id == cast.u1
        assert request.submitted_at == now
        assert request.sla_deadline == now + timedelta(hours=24)
        assert request.request_number == "REQ-202505-00001"

        (submit,) = history(workflow, request.id)
        assert submit.action_type == ActionType.SUBMIT
        assert submit.level == 0
        assert submit.actor_id == cast.requester
        assert submit.next_approver_id == cast.u1
        assert submit.resulting_status == RequestStatus.PENDING
        assert submit.form_data_snapshot == LEAVE_FORM
        assert submit.comment == "Request submitted"

    def test_approve_finalizes(self, workflow, single_level_template, cast, deterministic_clock, sink):
        request = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM,
        )
        deterministic_clock.advance(hours=2)
        approved = workflow.act(request.id, cast.u1, ActionType.APPROVE)

        assert approved.status == RequestStatus.APPROVED
        assert approved.current_approver_id is None
        assert approved.completed_at == deterministic_clock.now()
        assert approved.sla_deadline is None
        assert approved.current_level == 1

        actions = history(workflow, request.id)
        assert kinds(actions) == [ActionType.SUBMIT, ActionType.APPROVE]
        approve = actions[1]
        assert approve.level == 1
        assert approve.previous_approver_id == cast.u1
        assert approve.next_approver_id is None
        assert approve.response_time_hours == pytest.approx(2.0)
        assert approve.was_overdue is False

        types = [n.type for n in sink.sent]
        assert types == [NotificationType.APPROVAL_ASSIGNED, NotificationType.APPROVAL_FINAL]
        assert sink.sent[0].user_id == cast.u1
        assert sink.sent[1].user_id == cast.requester
        assert sink.sent[1].title == "Request Approved"
        assert request.request_number in sink.sent[1].message


class TestSendBackAndResubmit:
    """Send back to the requester, then update and resubmit."""

    def test_send_back_then_resubmit(self, workflow, single_level_template, cast, sink):
        request = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM,
        )
        sent_back = workflow.act(request.id, cast.u1, ActionType.SEND_BACK, comment="fix dates")

        assert sent_back.status == RequestStatus.SENT_BACK
        assert sent_back.current_level == 0
        assert sent_back.current_approver_id == cast.requester
        assert sent_back.sla_deadline is None
        assert sink.for_user(cast.requester)[-1].type == NotificationType.APPROVAL_SENT_BACK
        assert "fix dates" in sink.for_user(cast.requester)[-1].message

        new_form = dict(LEAVE_FORM, start_date="2025-05-19")
        resubmitted = workflow.update_and_resubmit(
            request.id, cast.requester, form_data=new_form, submit_now=True,
        )
        assert resubmitted.status == RequestStatus.PENDING
        assert resubmitted.current_level == 1
        assert resubmitted.current_approver_id == cast.u1
        assert resubmitted.form_data == new_form

        actions = history(workflow, request.id)
        assert kinds(actions) == [ActionType.SUBMIT, ActionType.SEND_BACK, ActionType.RESUBMIT]
        resubmit = actions[2]
        assert resubmit.level == 0
        assert resubmit.form_data_snapshot == new_form
        assert sink.sent[-1].type == NotificationType.APPROVAL_RESUBMITTED
        assert sink.sent[-1].user_id == cast.u1


class TestScopedOverrideChain:
    """A project/cohort override chain replaces the global chain."""

    def test_scope_override(self, workflow, make_template, cast):
        scope = Scope(uuid4(), uuid4())
        template = make_template(
            chain(ApproverCandidate.fixed_user(cast.u1), ApproverCandidate.fixed_user(cast.hr))
            + chain(ApproverCandidate.fixed_user(cast.u2), scope=scope)
        )
        request = workflow.create_request(
            template.id, cast.requester, scope=scope, form_data=LEAVE_FORM,
        )
        assert request.scope == scope
        assert request.total_levels == 1
        assert request.current_approver_id == cast.u2

        approved = workflow.act(request.id, cast.u2, ActionType.APPROVE)
        assert approved.status == RequestStatus.APPROVED

    def test_scope_without_override_uses_global_chain(self, workflow, make_template, cast, captured_logs):
        template = make_template(
            chain(ApproverCandidate.fixed_user(cast.u1), ApproverCandidate.fixed_user(cast.u2))
        )
        request = workflow.create_request(
            template.id, cast.requester, scope=Scope(uuid4(), uuid4()), form_data=LEAVE_FORM,
        )
        assert request.total_levels == 2
        assert request.current_approver_id == cast.u1
        assert any(r["message"] == "scope_fallback_to_global" for r in captured_logs())


class TestStuckRequests:
    """A role nobody eligible holds leaves the request stuck."""

    def test_unresolvable_first_level(self, workflow, make_template, directory, cast, sink):
        directory.add(UserRecord(id=uuid4(), role="GHOST", is_active=False))
        template = make_template(chain(ApproverCandidate.for_role("GHOST")))

        request = workflow.create_request(template.id, cast.requester, form_data=LEAVE_FORM)

        assert request.status == RequestStatus.PENDING
        assert request.current_approver_id is None
        assert request.total_levels == 1
        assert request.is_stuck
        assert sink.sent == []
        assert [r.id for r in workflow.list_stuck_requests()] == [request.id]

        with pytest.raises(NotCurrentApproverError):
            workflow.act(request.id, cast.u1, ActionType.APPROVE)


# ---------------------------------------------------------------------------
# Multi-level chains
# ---------------------------------------------------------------------------


class TestMultiLevel:

    def test_progress_through_two_levels(self, workflow, two_level_template, cast, sink, deterministic_clock):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        deterministic_clock.advance(hours=1)

        progressed = workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert progressed.status == RequestStatus.PENDING
        assert progressed.current_level == 2
        assert progressed.current_approver_id == cast.u2
        assert progressed.sla_deadline == deterministic_clock.now() + timedelta(hours=24)

        progress_notes = sink.for_user(cast.requester)
        assert progress_notes[-1].type == NotificationType.APPROVAL_APPROVED
        assert progress_notes[-1].message.endswith("approved at level 1")
        assert sink.for_user(cast.u2)[-1].type == NotificationType.APPROVAL_ASSIGNED

        with pytest.raises(NotCurrentApproverError):
            workflow.act(request.id, cast.u1, ActionType.APPROVE)

        final = workflow.act(request.id, cast.u2, ActionType.APPROVE)
        assert final.status == RequestStatus.APPROVED
        assert final.current_level == 2

    def test_send_back_returns_to_previous_approver(self, workflow, two_level_template, cast):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)

        sent_back = workflow.act(request.id, cast.u2, ActionType.SEND_BACK, comment="need receipt")
        assert sent_back.status == RequestStatus.SENT_BACK
        assert sent_back.current_level == 1
        assert sent_back.current_approver_id == cast.u1

        send_back = history(workflow, request.id)[-1]
        assert send_back.level == 2
        assert send_back.previous_approver_id == cast.u2
        assert send_back.next_approver_id == cast.u1

    def test_resubmission_restarts_at_level_one(self, workflow, two_level_template, cast):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)
        workflow.act(request.id, cast.u2, ActionType.SEND_BACK, comment="redo")

        again = workflow.update_and_resubmit(
            request.id, cast.requester, form_data=LEAVE_FORM, submit_now=True,
        )
        assert again.current_level == 1
        assert again.current_approver_id == cast.u1

    def test_decline(self, workflow, two_level_template, cast, sink, deterministic_clock):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        declined = workflow.act(request.id, cast.u1, "decline", comment="no budget")

        assert declined.status == RequestStatus.DECLINED
        assert declined.current_approver_id is None
        assert declined.completed_at == deterministic_clock.now()
        assert declined.current_level == 1
        last = sink.sent[-1]
        assert last.type == NotificationType.APPROVAL_DECLINED
        assert last.user_id == cast.requester
        assert last.message.endswith("no budget")

    def test_supervisor_then_role(self, workflow, make_template, cast):
        template = make_template(chain(
            ApproverCandidate.supervisor(),
            ApproverCandidate.for_role("HR_MANAGER"),
        ))
        request = workflow.create_request(template.id, cast.requester, form_data=LEAVE_FORM)
        assert request.current_approver_id == cast.supervisor
        progressed = workflow.act(request.id, cast.supervisor, ActionType.APPROVE)
        assert progressed.current_approver_id == cast.hr


class TestChainEdgeCases:

    def test_zero_levels_auto_finalize(self, workflow, make_template, cast, sink):
        template = make_template(())
        request = workflow.create_request(template.id, cast.requester, form_data=LEAVE_FORM)

        assert request.status == RequestStatus.APPROVED
        assert request.current_level == 0
        assert request.total_levels == 0
        assert request.completed_at is not None
        (submit,) = history(workflow, request.id)
        assert submit.action_type == ActionType.SUBMIT
        assert submit.resulting_status == RequestStatus.APPROVED
        assert [n.type for n in sink.sent] == [NotificationType.APPROVAL_FINAL]

    def test_unresolvable_next_level_finalizes(self, workflow, make_template, cast):
        template = make_template(chain(
            ApproverCandidate.fixed_user(cast.u1),
            ApproverCandidate.for_role("NOBODY"),
        ))
        request = workflow.create_request(template.id, cast.requester, form_data=LEAVE_FORM)
        assert request.total_levels == 2

        final = workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert final.status == RequestStatus.APPROVED
        assert final.current_level == 1

    def test_levels_removed_after_submission_finalize(
        self, workflow, template_service, two_level_template, cast,
    ):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        template_service.replace_template_levels(
            two_level_template.id, chain(ApproverCandidate.fixed_user(cast.u1)),
        )
        final = workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert final.status == RequestStatus.APPROVED
        assert final.total_levels == 2

    def test_levels_added_after_submission_do_not_extend(
        self, workflow, template_service, single_level_template, cast,
    ):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        template_service.replace_template_levels(
            single_level_template.id,
            chain(ApproverCandidate.fixed_user(cast.u1), ApproverCandidate.fixed_user(cast.u2)),
        )
        final = workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert final.status == RequestStatus.APPROVED
        assert final.total_levels == 1

    def test_later_level_reflects_current_configuration(
        self, workflow, template_service, two_level_template, cast,
    ):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        template_service.replace_template_levels(
            two_level_template.id,
            chain(ApproverCandidate.fixed_user(cast.u1), ApproverCandidate.fixed_user(cast.hr)),
        )
        progressed = workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert progressed.current_approver_id == cast.hr

    def test_no_sla_means_no_deadline(self, workflow, make_template, cast):
        template = make_template(chain(ApproverCandidate.fixed_user(cast.u1)), sla=None)
        request = workflow.create_request(template.id, cast.requester, form_data=LEAVE_FORM)
        assert request.sla_deadline is None


# ---------------------------------------------------------------------------
# act() guards and SLA
# ---------------------------------------------------------------------------


class TestActGuards:

    @pytest.fixture
    def pending(self, workflow, single_level_template, cast):
        return workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)

    def test_only_current_approver(self, workflow, pending, cast):
        with pytest.raises(NotCurrentApproverError) as exc_info:
            workflow.act(pending.id, cast.outsider, ActionType.APPROVE)
        assert isinstance(exc_info.value, AuthorizationError)
        assert len(history(workflow, pending.id)) == 1

    @pytest.mark.parametrize("action", [ActionType.SUBMIT, ActionType.CANCEL, "RESUBMIT", "bogus"])
    def test_rejects_non_approver_actions(self, workflow, pending, cast, action):
        with pytest.raises(InvalidActionError):
            workflow.act(pending.id, cast.u1, action)

    @pytest.mark.parametrize("action", [ActionType.DECLINE, ActionType.SEND_BACK])
    @pytest.mark.parametrize("comment", [None, "", "   "])
    def test_comment_required(self, workflow, pending, cast, action, comment):
        with pytest.raises(CommentRequiredError) as exc_info:
            workflow.act(pending.id, cast.u1, action, comment=comment)
        assert isinstance(exc_info.value, ValidationError)

    def test_approve_without_comment_is_fine(self, workflow, pending, cast):
        assert workflow.act(pending.id, cast.u1, ActionType.APPROVE).status == RequestStatus.APPROVED

    def test_terminal_request_rejects_further_actions(self, workflow, pending, cast):
        workflow.act(pending.id, cast.u1, ActionType.APPROVE)
        with pytest.raises(NotCurrentApproverError):
            workflow.act(pending.id, cast.u1, ActionType.APPROVE)
        with pytest.raises(RequestNotEditableError):
            workflow.update_and_resubmit(pending.id, cast.requester, form_data=LEAVE_FORM, submit_now=True)

    def test_not_pending(self, workflow, two_level_template, cast):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)
        workflow.act(request.id, cast.u2, ActionType.SEND_BACK, comment="back to you")
        with pytest.raises(RequestNotPendingError) as exc_info:
            workflow.act(request.id, cast.u1, ActionType.APPROVE)
        assert isinstance(exc_info.value, InvalidStateError)

    def test_unknown_request(self, workflow, cast):
        with pytest.raises(RequestNotFoundError):
            workflow.act(uuid4(), cast.u1, ActionType.APPROVE)

    def test_overdue_flag(self, workflow, pending, cast, deterministic_clock):
        deterministic_clock.advance(hours=25)
        workflow.act(pending.id, cast.u1, ActionType.APPROVE)
        approve = history(workflow, pending.id)[-1]
        assert approve.was_overdue is True
        assert approve.response_time_hours == pytest.approx(25.0)

    def test_not_overdue_at_exact_deadline(self, workflow, pending, cast, deterministic_clock):
        deterministic_clock.advance(hours=24)
        workflow.act(pending.id, cast.u1, ActionType.APPROVE)
        assert history(workflow, pending.id)[-1].was_overdue is False


# ---------------------------------------------------------------------------
# create / submit / update
# ---------------------------------------------------------------------------


class TestCreateAndSubmit:

    def test_create_draft(self, workflow, single_level_template, cast, sink):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={"reason": "later"},
            attachments=["files/a.pdf"], submit_now=False,
        )
        assert draft.status == RequestStatus.DRAFT
        assert draft.current_level == 0
        assert draft.current_approver_id is None
        assert draft.sla_deadline is None
        assert draft.attachments == ("files/a.pdf",)
        assert draft.request_number == "REQ-202505-00001"
        assert history(workflow, draft.id) == ()
        assert sink.sent == []

    def test_missing_required_fields(self, workflow, single_level_template, cast):
        with pytest.raises(MissingRequiredFieldsError) as exc_info:
            workflow.create_request(single_level_template.id, cast.requester, form_data={})
        assert exc_info.value.field_labels == ["Leave Type", "Start Date"]

    def test_unknown_template(self, workflow, cast):
        with pytest.raises(TemplateNotFoundError):
            workflow.create_request(uuid4(), cast.requester, form_data=LEAVE_FORM)

    def test_inactive_template(self, workflow, template_service, single_level_template, cast):
        template_service.update_template(single_level_template.id, is_active=False)
        with pytest.raises(TemplateInactiveError):
            workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)

    def test_submit_draft(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM, submit_now=False,
        )
        submitted = workflow.submit(draft.id, cast.requester)
        assert submitted.status == RequestStatus.PENDING
        assert submitted.current_approver_id == cast.u1
        assert submitted.request_number == draft.request_number
        assert kinds(history(workflow, draft.id)) == [ActionType.SUBMIT]

    def test_submit_checks_required_fields(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={}, submit_now=False,
        )
        with pytest.raises(MissingRequiredFieldsError):
            workflow.submit(draft.id, cast.requester)

    def test_submit_only_by_requester(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM, submit_now=False,
        )
        with pytest.raises(NotRequesterError):
            workflow.submit(draft.id, cast.u1)

    def test_submit_only_drafts(self, workflow, single_level_template, cast):
        pending = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        with pytest.raises(RequestNotDraftError):
            workflow.submit(pending.id, cast.requester)

    def test_update_draft_without_submitting(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={"reason": "x"}, submit_now=False,
        )
        updated = workflow.update_and_resubmit(
            draft.id, cast.requester, form_data=LEAVE_FORM, attachments=["b.pdf"],
        )
        assert updated.status == RequestStatus.DRAFT
        assert updated.form_data == LEAVE_FORM
        assert updated.attachments == ("b.pdf",)
        assert history(workflow, draft.id) == ()

    def test_update_overwrites_form_data(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data=LEAVE_FORM,
            attachments=["a.pdf"], submit_now=False,
        )
        updated = workflow.update_and_resubmit(draft.id, cast.requester)
        assert updated.form_data == {}
        assert updated.attachments == ()

    def test_draft_submitted_through_update_records_submit(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={}, submit_now=False,
        )
        workflow.update_and_resubmit(draft.id, cast.requester, form_data=LEAVE_FORM, submit_now=True)
        assert kinds(history(workflow, draft.id)) == [ActionType.SUBMIT]

    def test_update_rules(self, workflow, single_level_template, cast):
        pending = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        with pytest.raises(RequestNotEditableError):
            workflow.update_and_resubmit(pending.id, cast.requester, form_data=LEAVE_FORM)
        with pytest.raises(NotRequesterError):
            workflow.update_and_resubmit(pending.id, cast.u1, form_data=LEAVE_FORM)

    def test_resubmit_validates_fields(self, workflow, single_level_template, cast):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.SEND_BACK, comment="fix")
        with pytest.raises(MissingRequiredFieldsError):
            workflow.update_and_resubmit(request.id, cast.requester, form_data={}, submit_now=True)


# ---------------------------------------------------------------------------
# cancel / delete
# ---------------------------------------------------------------------------


class TestCancelAndDelete:

    def test_cancel_draft_deletes_it(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={}, submit_now=False,
        )
        assert workflow.cancel(draft.id, cast.requester) is None
        with pytest.raises(RequestNotFoundError):
            workflow.get_request(draft.id)

    def test_cancel_pending(self, workflow, single_level_template, cast, sink, deterministic_clock):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        cancelled = workflow.cancel(request.id, cast.requester)

        assert cancelled.status == RequestStatus.CANCELLED
        assert cancelled.current_approver_id is None
        assert cancelled.sla_deadline is None
        assert cancelled.completed_at == deterministic_clock.now()
        cancel = history(workflow, request.id)[-1]
        assert cancel.action_type == ActionType.CANCEL
        assert cancel.level == 1
        assert cancel.comment == "Request cancelled by requester"
        assert cancel.previous_approver_id == cast.u1
        assert sink.sent[-1].type == NotificationType.APPROVAL_CANCELLED
        assert sink.sent[-1].user_id == cast.u1

    def test_cancel_sent_back_does_not_notify(self, workflow, single_level_template, cast, sink):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.SEND_BACK, comment="fix")
        sent = len(sink.sent)
        assert workflow.cancel(request.id, cast.requester).status == RequestStatus.CANCELLED
        assert len(sink.sent) == sent

    def test_cancel_terminal_rejected(self, workflow, single_level_template, cast):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)
        with pytest.raises(InvalidRequestTransitionError):
            workflow.cancel(request.id, cast.requester)

    def test_cancel_only_by_requester(self, workflow, single_level_template, cast):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        with pytest.raises(NotRequesterError):
            workflow.cancel(request.id, cast.u1)

    def test_delete_draft(self, workflow, single_level_template, cast):
        draft = workflow.create_request(
            single_level_template.id, cast.requester, form_data={}, submit_now=False,
        )
        workflow.delete_draft(draft.id, cast.requester)
        with pytest.raises(RequestNotFoundError):
            workflow.get_request(draft.id)

    def test_delete_submitted_request_rejected(self, workflow, single_level_template, cast):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        with pytest.raises(RequestNotDraftError):
            workflow.delete_draft(request.id, cast.requester)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestGetRequest:

    @pytest.fixture
    def pending(self, workflow, two_level_template, cast):
        return workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)

    def test_requester_and_current_approver(self, workflow, pending, cast):
        as_requester = workflow.get_request(pending.id, viewer_id=cast.requester)
        as_approver = workflow.get_request(pending.id, viewer_id=cast.u1)
        assert as_requester.can_approve is False
        assert as_approver.can_approve is True
        assert as_approver.request.id == pending.id

    def test_past_actor_keeps_access(self, workflow, pending, cast):
        workflow.act(pending.id, cast.u1, ActionType.APPROVE)
        detail = workflow.get_request(pending.id, viewer_id=cast.u1)
        assert detail.can_approve is False
        assert len(detail.actions) == 2

    def test_outsider_denied(self, workflow, pending, cast):
        with pytest.raises(AccessDeniedError):
            workflow.get_request(pending.id, viewer_id=cast.outsider)

    def test_permission_oracle_grants_read(self, workflow, pending, cast):
        assert workflow.get_request(pending.id, viewer_id=cast.auditor).request.id == pending.id

    def test_without_viewer_no_access_check(self, workflow, pending):
        assert workflow.get_request(pending.id).can_approve is False


class TestListRequests:

    @pytest.fixture
    def three_requests(self, workflow, single_level_template, cast, deterministic_clock):
        created = []
        for _ in range(3):
            created.append(workflow.create_request(
                single_level_template.id, cast.requester, form_data=LEAVE_FORM,
            ))
            deterministic_clock.advance(60)
        return created

    def test_mine_newest_first(self, workflow, three_requests, cast):
        page = workflow.list_requests(cast.requester, RequestView.MINE)
        assert page.total == 3
        assert [r.id for r in page.items] == [r.id for r in reversed(three_requests)]

    def test_pending_for_me(self, workflow, three_requests, cast):
        workflow.act(three_requests[0].id, cast.u1, ActionType.APPROVE)
        page = workflow.list_requests(cast.u1, RequestView.PENDING_FOR_ME)
        assert page.total == 2
        assert workflow.list_requests(cast.u2, RequestView.PENDING_FOR_ME).total == 0

    def test_status_filter(self, workflow, three_requests, cast):
        workflow.act(three_requests[0].id, cast.u1, ActionType.APPROVE)
        page = workflow.list_requests(cast.requester, status=RequestStatus.APPROVED)
        assert [r.id for r in page.items] == [three_requests[0].id]

    def test_paging(self, workflow, three_requests, cast):
        first = workflow.list_requests(cast.requester, page=1, limit=2)
        second = workflow.list_requests(cast.requester, page=2, limit=2)
        assert first.pages == 2
        assert len(first.items) == 2
        assert len(second.items) == 1
        assert {r.id for r in first.items + second.items} == {r.id for r in three_requests}

    def test_limit_is_clamped(self, workflow, three_requests, cast):
        assert workflow.list_requests(cast.requester, limit=500).limit == 100
        assert workflow.list_requests(cast.requester).limit == 20

    def test_all_view_needs_read_all(self, workflow, three_requests, cast):
        with pytest.raises(AccessDeniedError):
            workflow.list_requests(cast.outsider, RequestView.ALL)
        assert workflow.list_requests(cast.auditor, RequestView.ALL).total == 3

    def test_template_filter(self, workflow, make_template, three_requests, cast):
        other = make_template(chain(ApproverCandidate.fixed_user(cast.u1)))
        workflow.create_request(other.id, cast.requester, form_data=LEAVE_FORM)
        assert workflow.list_requests(cast.requester, template_id=other.id).total == 1


class TestOperationalQueries:

    def test_overdue(self, workflow, single_level_template, cast, deterministic_clock):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        assert workflow.list_overdue_requests() == []
        deterministic_clock.advance(hours=25)
        assert [r.id for r in workflow.list_overdue_requests()] == [request.id]
        as_of = deterministic_clock.now() - timedelta(hours=2)
        assert workflow.list_overdue_requests(as_of) == []


# ---------------------------------------------------------------------------
# Audit trail and notifications
# ---------------------------------------------------------------------------


class TestAuditTrail:

    def test_replay_matches_projection(self, workflow, two_level_template, cast):
        request = workflow.create_request(two_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)
        workflow.act(request.id, cast.u2, ActionType.SEND_BACK, comment="again")
        workflow.update_and_resubmit(request.id, cast.requester, form_data=LEAVE_FORM, submit_now=True)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)

        result = workflow.verify_audit_trail(request.id)
        assert result.consistent
        assert result.expected.action_count == 5
        assert [a.seq for a in history(workflow, request.id)] == [1, 2, 3, 4, 5]

    def test_tampered_projection_is_reported(self, workflow, session, single_level_template, cast, captured_logs):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        model = session.get(ApprovalRequestModel, request.id)
        model.status = RequestStatus.DECLINED.value
        session.flush()

        result = workflow.verify_audit_trail(request.id)
        assert not result.consistent
        assert result.mismatches == ("status",)
        assert any(r["message"] == "audit_trail_mismatch" for r in captured_logs())

    def test_unknown_request(self, workflow):
        with pytest.raises(RequestNotFoundError):
            workflow.verify_audit_trail(uuid4())


class TestNotifications:

    def test_failing_sink_does_not_fail_the_transition(
        self, session, directory, deterministic_clock, single_level_template, cast, sink, captured_logs,
    ):
        class BrokenSink:
            def send(self, notification):
                raise RuntimeError("smtp down")

        workflow = ApprovalWorkflowService(
            session,
            directory,
            clock=deterministic_clock,
            dispatcher=NotificationDispatcher([BrokenSink(), sink]),
        )
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)

        assert request.status == RequestStatus.PENDING
        assert len(sink.sent) == 1
        failures = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert len(failures) == 1
        assert failures[0]["level"] == "WARNING"


def fail_next_flush(session, exc):
    @event.listens_for(session, "before_flush", once=True)
    def _fail(sess, flush_context, instances):
        raise exc


class TestFailedTransitions:
    """A transition that dies mid-way leaves no trace once rolled back."""

    @pytest.fixture
    def two_pending(self, workflow, session, single_level_template, cast, sink):
        first = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        second = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        session.commit()
        sink.sent.clear()
        return first, second

    def test_notifications_of_failed_transition_are_dropped(self, workflow, session, two_pending, cast, sink):
        first, second = two_pending
        fail_next_flush(session, RuntimeError("disk full"))
        with pytest.raises(RuntimeError):
            workflow.act(first.id, cast.u1, ActionType.APPROVE)
        session.rollback()
        assert sink.sent == []

        workflow.act(second.id, cast.u1, ActionType.APPROVE)
        assert [(n.type, n.entity_id) for n in sink.sent] == [
            (NotificationType.APPROVAL_FINAL, second.id),
        ]
        assert workflow.get_request(first.id).request.status == RequestStatus.PENDING

    def test_lost_version_check_is_typed(self, workflow, session, two_pending, cast, sink):
        first, _ = two_pending
        fail_next_flush(session, StaleDataError("version mismatch"))
        with pytest.raises(ConcurrentModificationError) as exc_info:
            workflow.act(first.id, cast.u1, ActionType.APPROVE)
        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.request_id == str(first.id)
        assert isinstance(exc_info.value.__cause__, StaleDataError)
        session.rollback()
        assert sink.sent == []


class TestLogging:

    def test_transition_events(self, workflow, single_level_template, cast, captured_logs):
        request = workflow.create_request(single_level_template.id, cast.requester, form_data=LEAVE_FORM)
        workflow.act(request.id, cast.u1, ActionType.APPROVE)

        messages = [r["message"] for r in captured_logs()]
        for event in ("request_created", "request_submitted", "approver_resolved",
                      "request_number_allocated", "request_action_applied", "notification_sent"):
            assert event in messages

        applied = next(r for r in captured_logs() if r["message"] == "request_action_applied")
        assert applied["request_id"] == str(request.id)
        assert applied["actor_id"] == str(cast.u1)
