"""Services for the approval kernel (write side)."""

from approval_kernel.services.approver_resolver import ApproverResolver
from approval_kernel.services.notification_service import (
    DatabaseNotificationSink,
    InMemoryNotificationSink,
    NotificationDispatcher,
    NotificationSink,
)
from approval_kernel.services.sequence_service import (
    RequestNumberGenerator,
    SequenceCounter,
    SequenceService,
)
from approval_kernel.services.template_service import TemplateService
from approval_kernel.services.workflow_service import (
    ApprovalWorkflowService,
    AuditVerification,
    WorkflowOptions,
)

__all__ = [
    "ApprovalWorkflowService",
    "ApproverResolver",
    "AuditVerification",
    "DatabaseNotificationSink",
    "InMemoryNotificationSink",
    "NotificationDispatcher",
    "NotificationSink",
    "RequestNumberGenerator",
    "SequenceCounter",
    "SequenceService",
    "TemplateService",
    "WorkflowOptions",
]
