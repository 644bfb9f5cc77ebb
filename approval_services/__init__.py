"""
approval_services -- Package init and public API.

Responsibility:
    Orchestration that composes the pure engines (token codec, level
    policy, links) with the kernel's session-bound stores, plus the
    outbound ports for notification and artifact relocation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)
"""

from approval_services.approval_router import ApprovalRouter
from approval_services.artifacts import ArtifactMover
from approval_services.dispatcher import IntentDispatcher
from approval_services.gateway import ApprovalGateway
from approval_services.notifications import (
    LoggingNotifier,
    Notifier,
    ReminderItem,
    ReminderNotice,
)
from approval_services.results import (
    ActionOutcome,
    ApprovalActionResult,
    ApprovalStatusView,
    LinkActionResult,
    PendingApproval,
    ReminderReport,
)

__all__ = [
    "ActionOutcome",
    "ApprovalActionResult",
    "ApprovalGateway",
    "ApprovalRouter",
    "ApprovalStatusView",
    "ArtifactMover",
    "IntentDispatcher",
    "LinkActionResult",
    "LoggingNotifier",
    "Notifier",
    "PendingApproval",
    "ReminderItem",
    "ReminderNotice",
    "ReminderReport",
]
