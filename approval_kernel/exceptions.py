"""
Typed exception hierarchy for the approval workflow engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (a web layer, the admin CLI, tests) map engine failures to
responses.  They must be able to do that by TYPE and by a stable CODE,
never by parsing a message string.

Every exception here:
  1. Belongs to one of five recoverable categories (or immutability).
  2. Has a ``code`` class attribute (machine-readable, API-safe).
  3. Carries its context as structured attributes.

    try:
        workflow.act(request_id, actor_id, ActionType.DECLINE, comment="")
    except CommentRequiredError as e:
        respond(400, code=e.code, action=e.action)
    except AuthorizationError as e:
        respond(403, code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowError (base)
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- TemplateInactiveError
    |   +-- RequestNotFoundError
    |
    +-- ValidationError
    |   +-- MissingRequiredFieldsError
    |   +-- InvalidFieldValuesError
    |   +-- CommentRequiredError
    |   +-- InvalidActionError
    |   +-- InvalidScopeError
    |   +-- InvalidLevelConfigurationError
    |   +-- InvalidApproverCandidateError
    |   +-- InvalidTemplateError
    |
    +-- AuthorizationError
    |   +-- NotCurrentApproverError
    |   +-- NotRequesterError
    |   +-- AccessDeniedError
    |
    +-- InvalidStateError
    |   +-- RequestNotPendingError
    |   +-- RequestNotEditableError
    |   +-- RequestNotDraftError
    |   +-- InvalidRequestTransitionError
    |   +-- ConcurrentModificationError
    |
    +-- ConflictError
    |   +-- DuplicateTemplateNameError
    |   +-- RequestNumberConflictError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|-----------------------------------
Not found     | TEMPLATE_NOT_FOUND            | Unknown template id
              | TEMPLATE_INACTIVE             | Request created on inactive template
              | REQUEST_NOT_FOUND             | Unknown request id
--------------|-------------------------------|-----------------------------------
Validation    | MISSING_REQUIRED_FIELDS       | Required form fields left empty
              | INVALID_FIELD_VALUES          | Value does not fit its field kind
              | COMMENT_REQUIRED              | Decline / send back without comment
              | INVALID_ACTION                | act() called with SUBMIT, CANCEL, ...
              | INVALID_SCOPE                 | Only one of project / cohort set
              | INVALID_LEVEL_CONFIGURATION   | Duplicate or non-positive level no.
              | INVALID_APPROVER_CANDIDATE    | Candidate mixes resolution modes
              | INVALID_TEMPLATE              | Missing name / display name
--------------|-------------------------------|-----------------------------------
Authorization | NOT_CURRENT_APPROVER          | Actor is not the current approver
              | NOT_REQUESTER                 | Actor is not the requester
              | ACCESS_DENIED                 | Viewer may not read the request
--------------|-------------------------------|-----------------------------------
State         | REQUEST_NOT_PENDING           | act() on a non-pending request
              | REQUEST_NOT_EDITABLE          | Update on a non draft/sent-back one
              | REQUEST_NOT_DRAFT             | Delete / first submit of a non-draft
              | INVALID_REQUEST_TRANSITION    | Transition not in the table
              | CONCURRENT_MODIFICATION       | Lost the optimistic version check
--------------|-------------------------------|-----------------------------------
Conflict      | DUPLICATE_TEMPLATE_NAME       | Template name already taken
              | REQUEST_NUMBER_CONFLICT       | Number retries exhausted
--------------|-------------------------------|-----------------------------------
Immutability  | IMMUTABILITY_VIOLATION        | UPDATE / DELETE of an action row
"""


class WorkflowError(Exception):
    """
    Base exception for all approval workflow errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_ERROR"


# Not-found exceptions


class NotFoundError(WorkflowError):
    """Base exception for unknown templates, requests and levels."""

    code: str = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Approval template not found: {template_id}")


class TemplateInactiveError(NotFoundError):
    """Template exists but has been deactivated."""

    code: str = "TEMPLATE_INACTIVE"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Approval template is inactive: {template_id}")


class RequestNotFoundError(NotFoundError):
    """Approval request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


# Validation exceptions


class ValidationError(WorkflowError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class MissingRequiredFieldsError(ValidationError):
    """Required form fields were missing or empty at submission."""

    code: str = "MISSING_REQUIRED_FIELDS"

    def __init__(self, field_labels: list[str]):
        self.field_labels = list(field_labels)
        super().__init__(
            f"Missing required fields: {', '.join(self.field_labels)}"
        )


class InvalidFieldValuesError(ValidationError):
    """One or more form values do not fit their field descriptor."""

    code: str = "INVALID_FIELD_VALUES"

    def __init__(self, problems: dict[str, str]):
        self.problems = dict(problems)
        detail = "; ".join(f"{label}: {reason}" for label, reason in self.problems.items())
        super().__init__(f"Invalid field values: {detail}")


class CommentRequiredError(ValidationError):
    """Decline and send-back require a non-empty comment."""

    code: str = "COMMENT_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A comment is required to {action}")


class InvalidActionError(ValidationError):
    """The action is not one an approver can take."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(
            f"Invalid action '{action}': must be APPROVE, DECLINE or SEND_BACK"
        )


class InvalidScopeError(ValidationError):
    """A scope must set both project and cohort, or neither."""

    code: str = "INVALID_SCOPE"

    def __init__(self, project_id: str | None, cohort_id: str | None):
        self.project_id = project_id
        self.cohort_id = cohort_id
        super().__init__(
            f"Scope must set both project and cohort or neither "
            f"(project={project_id}, cohort={cohort_id})"
        )


class InvalidLevelConfigurationError(ValidationError):
    """Level definitions for a scope are malformed."""

    code: str = "INVALID_LEVEL_CONFIGURATION"

    def __init__(self, template_id: str, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Invalid levels for template {template_id}: {reason}")


class InvalidApproverCandidateError(ValidationError):
    """An approver candidate must use exactly one resolution mode."""

    code: str = "INVALID_APPROVER_CANDIDATE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid approver candidate: {reason}")


class InvalidTemplateError(ValidationError):
    """Template definition is incomplete."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid approval template: {reason}")


# Authorization exceptions


class AuthorizationError(WorkflowError):
    """Base exception for actor-identity failures."""

    code: str = "AUTHORIZATION_ERROR"


class NotCurrentApproverError(AuthorizationError):
    """Only the current approver may act on a pending request."""

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not the current approver of request {request_id}"
        )


class NotRequesterError(AuthorizationError):
    """Only the requester may edit, resubmit or cancel a request."""

    code: str = "NOT_REQUESTER"

    def __init__(self, request_id: str, actor_id: str):
        self.request_id = request_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not the requester of request {request_id}"
        )


class AccessDeniedError(AuthorizationError):
    """Viewer has no reason to see the request or listing."""

    code: str = "ACCESS_DENIED"

    def __init__(self, user_id: str, reason: str):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Access denied for {user_id}: {reason}")


# State exceptions


class InvalidStateError(WorkflowError):
    """Base exception for operations attempted in the wrong status."""

    code: str = "INVALID_STATE"


class RequestNotPendingError(InvalidStateError):
    """Approver actions require a PENDING request."""

    code: str = "REQUEST_NOT_PENDING"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Request {request_id} is not pending approval (status={status})"
        )


class RequestNotEditableError(InvalidStateError):
    """Only DRAFT and SENT_BACK requests can be updated or resubmitted."""

    code: str = "REQUEST_NOT_EDITABLE"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Only drafts or sent-back requests can be updated "
            f"(request {request_id} is {status})"
        )


class RequestNotDraftError(InvalidStateError):
    """Only DRAFT requests can be deleted or submitted for the first time."""

    code: str = "REQUEST_NOT_DRAFT"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Request {request_id} is not a draft (status={status})"
        )


class InvalidRequestTransitionError(InvalidStateError):
    """Status change is not allowed by the transition table."""

    code: str = "INVALID_REQUEST_TRANSITION"

    def __init__(self, request_id: str, from_status: str, to_status: str):
        self.request_id = request_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Request {request_id} cannot move from {from_status} to {to_status}"
        )


class ConcurrentModificationError(InvalidStateError):
    """Another transaction changed the request first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Request {request_id} was modified by another transaction"
        )


# Conflict exceptions


class ConflictError(WorkflowError):
    """Base exception for uniqueness and race conflicts."""

    code: str = "CONFLICT"


class DuplicateTemplateNameError(ConflictError):
    """Template names are unique."""

    code: str = "DUPLICATE_TEMPLATE_NAME"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"An approval template named '{name}' already exists")


class RequestNumberConflictError(ConflictError):
    """Request number allocation kept colliding."""

    code: str = "REQUEST_NUMBER_CONFLICT"

    def __init__(self, period: str, attempts: int):
        self.period = period
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique request number for {period} "
            f"after {attempts} attempts"
        )


# Immutability


class ImmutabilityViolationError(WorkflowError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
