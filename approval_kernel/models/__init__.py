"""ORM models for the approval kernel."""

from approval_kernel.models.action import ApprovalActionModel
from approval_kernel.models.level import ApprovalLevelModel, LevelApproverModel
from approval_kernel.models.notification import NotificationModel
from approval_kernel.models.request import ApprovalRequestModel
from approval_kernel.models.template import ApprovalTemplateModel, FormFieldModel

__all__ = [
    "ApprovalActionModel",
    "ApprovalLevelModel",
    "ApprovalRequestModel",
    "ApprovalTemplateModel",
    "FormFieldModel",
    "LevelApproverModel",
    "NotificationModel",
]
