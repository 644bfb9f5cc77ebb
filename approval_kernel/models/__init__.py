"""ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalLevelConfigModel,
    ApprovalRequestModel,
    ApprovalStepModel,
)

__all__ = [
    "ApprovalLevelConfigModel",
    "ApprovalRequestModel",
    "ApprovalStepModel",
]
