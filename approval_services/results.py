"""
approval_services.results -- Values returned across the gateway boundary.

These are what a web handler turns into a response.  None of them carries
an exception object; failures are already classified.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from approval_kernel.domain.approval import (
    ApprovalStep,
    RequestApprovalState,
    RequestStatus,
    StepStatus,
)
from approval_kernel.exceptions import SideEffectError


class ActionOutcome(str, Enum):
    """The one answer an acting party receives for a link action."""

    ADVANCED = "advanced"
    FINALIZED = "finalized"
    ALREADY_PROCESSED = "already_processed"
    INVALID_LINK = "invalid_link"
    EXPIRED_LINK = "expired_link"
    ERROR = "error"


OUTCOME_MESSAGES: dict[ActionOutcome, str] = {
    ActionOutcome.ADVANCED: "Approved. The request moved to the next approver.",
    ActionOutcome.FINALIZED: "The request has been completed.",
    ActionOutcome.ALREADY_PROCESSED: "This request has already been processed.",
    ActionOutcome.INVALID_LINK: "This approval link is not valid.",
    ActionOutcome.EXPIRED_LINK: "This approval link has expired. Ask for a new one.",
    ActionOutcome.ERROR: "The action could not be completed. Please try again.",
}


@dataclass(frozen=True)
class ApprovalActionResult:
    """Result of ``ApprovalGateway.process_approval_action``."""

    success: bool
    is_finalized: bool = False
    next_level: int | None = None
    next_level_name: str | None = None
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False


@dataclass(frozen=True)
class LinkActionResult:
    """Result of ``ApprovalGateway.handle_link_action``."""

    outcome: ActionOutcome
    request_id: UUID | None = None
    level: int | None = None
    status: RequestStatus | None = None
    next_level: int | None = None
    next_level_name: str | None = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.outcome in (ActionOutcome.ADVANCED, ActionOutcome.FINALIZED)


@dataclass(frozen=True)
class ApprovalStatusView:
    """What an approval landing page shows for one token."""

    token_valid: bool
    expired: bool = False
    request_id: UUID | None = None
    level: int | None = None
    request: RequestApprovalState | None = None
    step: ApprovalStep | None = None
    steps: tuple[ApprovalStep, ...] = ()
    level_names: dict[int, str] = field(default_factory=dict)

    @property
    def can_act(self) -> bool:
        return (
            self.token_valid
            and self.request is not None
            and self.request.status == RequestStatus.PENDING
            and self.step is not None
            and self.step.status == StepStatus.PENDING
        )


@dataclass(frozen=True)
class PendingApproval:
    """One step waiting on an approver, with its action links."""

    step: ApprovalStep
    request: RequestApprovalState
    level_name: str
    approve_url: str
    reject_url: str


@dataclass(frozen=True)
class ReminderReport:
    pending_steps: int
    reminded_approvers: int
    skipped_expired: int
    failures: tuple[SideEffectError, ...] = ()
    reminded_submitters: int = 0
