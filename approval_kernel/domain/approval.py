"""
Approval routing domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval router.  Defines the request
and step lifecycles, the level ladder configuration, the approve/reject
action type, the side-effect intents the router emits, and the results it
returns.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Request lifecycle: ``REQUEST_TRANSITIONS`` lists the only legal status
  changes.  ``approved`` and ``rejected`` are terminal.
* Step lifecycle: a step leaves ``pending`` exactly once.
* Actions are a closed two-variant type (``Approve`` / ``Reject``).  Raw
  strings are parsed once by ``parse_action``; anything else raises
  ``InvalidActionError`` and never reaches persistence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID

from approval_kernel.exceptions import InvalidActionError


# =========================================================================
# Lifecycles
# =========================================================================


class RequestStatus(str, Enum):
    """Overall routing status of an approvable request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StepStatus(str, Enum):
    """Status of one level's approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
})


def statuses_leading_to(target: RequestStatus) -> frozenset[RequestStatus]:
    """Statuses from which ``target`` may be entered.  Empty for ``PENDING``."""
    return frozenset(
        source for source, targets in REQUEST_TRANSITIONS.items()
        if target in targets
    )


# =========================================================================
# Actions
# =========================================================================


@dataclass(frozen=True)
class Approve:
    """Approve the current level.  The comment is kept on the step."""

    comment: str | None = None

    @property
    def step_status(self) -> StepStatus:
        return StepStatus.APPROVED

    @property
    def name(self) -> str:
        return "approve"


@dataclass(frozen=True)
class Reject:
    """Reject the request at the current level."""

    comment: str | None = None

    @property
    def step_status(self) -> StepStatus:
        return StepStatus.REJECTED

    @property
    def name(self) -> str:
        return "reject"


ApprovalAction = Approve | Reject


def parse_action(value: str | None, comment: str | None = None) -> ApprovalAction:
    """Parse an inbound action string into the tagged action type.

    Raises:
        InvalidActionError: for anything other than ``approve``/``reject``.
    """
    normalized = (value or "").strip().lower()
    if normalized == "approve":
        return Approve(comment=comment)
    if normalized == "reject":
        return Reject(comment=comment)
    raise InvalidActionError(value)


# =========================================================================
# Configuration and state
# =========================================================================


@dataclass(frozen=True)
class ApprovalLevelConfig:
    """One rung of the approval ladder.

    ``max_amount`` of ``None`` means the level may approve any total.
    """

    level: int
    level_name: str
    approver_email: str
    max_amount: Decimal | None = None
    is_active: bool = True

    def can_finally_approve(self, total: Decimal) -> bool:
        """True if a total at or under this ceiling stops at this level."""
        return self.max_amount is None or total <= self.max_amount


@dataclass(frozen=True)
class ArtifactRef:
    """Reference to a stored document that moves on final approval."""

    drive_id: str
    file_id: str


@dataclass(frozen=True)
class ApprovalStep:
    """Immutable snapshot of one level's step."""

    step_id: UUID
    request_id: UUID
    level: int
    approver_email: str
    status: StepStatus
    token: str
    comment: str | None = None
    acted_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass(frozen=True)
class RequestApprovalState:
    """Immutable snapshot of a request's routing state."""

    request_id: UUID
    total_amount: Decimal
    current_level: int
    max_level: int
    status: RequestStatus
    submitter_email: str | None = None
    approval_comment: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime | None = None
    artifact_refs: tuple[ArtifactRef, ...] = ()
    approved_destination: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES


# =========================================================================
# Side-effect intents
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequestedIntent:
    """Ask an approver to act on a level."""

    request_id: UUID
    level: int
    max_level: int
    level_name: str
    approver_email: str
    approve_url: str
    reject_url: str
    total_amount: Decimal
    submitter_email: str | None = None
    previous_approvals: tuple[ApprovalStep, ...] = ()


@dataclass(frozen=True)
class AdvanceIntent:
    """Level approved; route to the next approver and tell the submitter."""

    request: ApprovalRequestedIntent
    approved_level: int


@dataclass(frozen=True)
class FinalizedIntent:
    """Last required level approved."""

    request_id: UUID
    submitter_email: str | None
    total_amount: Decimal
    comment: str | None
    timeline: tuple[ApprovalStep, ...] = ()


@dataclass(frozen=True)
class RejectedIntent:
    """Request rejected at some level."""

    request_id: UUID
    submitter_email: str | None
    total_amount: Decimal
    level: int
    level_name: str
    comment: str | None = None


@dataclass(frozen=True)
class ArtifactRelocationIntent:
    """Move approved artifacts to their destination folder."""

    request_id: UUID
    refs: tuple[ArtifactRef, ...]
    destination: str


RoutingIntent = (
    ApprovalRequestedIntent
    | AdvanceIntent
    | FinalizedIntent
    | RejectedIntent
    | ArtifactRelocationIntent
)


# =========================================================================
# Results
# =========================================================================


@dataclass(frozen=True)
class LevelResolution:
    """How many levels a total requires, and which configs they are."""

    max_level: int
    levels: tuple[ApprovalLevelConfig, ...]


@dataclass(frozen=True)
class ApprovalInitialization:
    """Result of routing a new request to its first approver."""

    request_id: UUID
    approver_email: str
    token: str
    approve_url: str
    reject_url: str
    max_level: int
    level_name: str
    intents: tuple[RoutingIntent, ...] = ()


@dataclass(frozen=True)
class RoutingOutcome:
    """Result of a recorded approve/reject transition."""

    request_id: UUID
    level: int
    status: RequestStatus
    is_finalized: bool
    next_level: int | None = None
    next_level_name: str | None = None
    intents: tuple[RoutingIntent, ...] = field(default=())


# =========================================================================
# TokenIssuer Protocol
# =========================================================================


class TokenIssuer(Protocol):
    """Mints the capability token stored on a new step."""

    def issue(self, request_id: UUID, level: int) -> str:
        """Return a fresh token for ``(request_id, level)``."""
        ...
