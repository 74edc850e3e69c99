"""
Pure domain layer.

This module contains immutable value objects and pure functions with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (time comes from an injected Clock)
"""

from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.directory import (
    InMemoryUserDirectory,
    PermissionOracle,
    StaticPermissionOracle,
    UserDirectory,
    UserRecord,
)
from approval_kernel.domain.forms import validate_form_data
from approval_kernel.domain.resolver import ApproverResolution, resolve_approver
from approval_kernel.domain.workflow import (
    GLOBAL_SCOPE,
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    ActionType,
    ApprovalAction,
    ApprovalRequest,
    ApprovalTemplate,
    ApproverCandidate,
    ApproverKind,
    FieldDescriptor,
    FieldKind,
    LevelDefinition,
    Notification,
    NotificationType,
    Page,
    ReplayedState,
    RequestDetail,
    RequestStatus,
    RequestView,
    Scope,
    replay_actions,
)

__all__ = [
    "GLOBAL_SCOPE",
    "REQUEST_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ActionType",
    "ApprovalAction",
    "ApprovalRequest",
    "ApprovalTemplate",
    "ApproverCandidate",
    "ApproverKind",
    "ApproverResolution",
    "Clock",
    "DeterministicClock",
    "FieldDescriptor",
    "FieldKind",
    "InMemoryUserDirectory",
    "LevelDefinition",
    "Notification",
    "NotificationType",
    "Page",
    "PermissionOracle",
    "ReplayedState",
    "RequestDetail",
    "RequestStatus",
    "RequestView",
    "Scope",
    "StaticPermissionOracle",
    "SystemClock",
    "UserDirectory",
    "UserRecord",
    "replay_actions",
    "resolve_approver",
    "validate_form_data",
]
