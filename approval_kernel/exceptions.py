"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

An approval link is clicked by a person who is not logged in.  Whatever goes
wrong, that person must see exactly one clear outcome: the link was invalid,
the link expired, somebody already acted, or the system failed.  Callers
therefore catch by TYPE, never by message, and every exception carries:

  1. A CODE class attribute (machine-readable, API-safe)
  2. Structured DATA attributes (request id, level, status ...)

    try:
        router.act(request_id, step_id, Approve())
    except StepAlreadyActedError as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalRoutingError (base)
    |
    +-- TokenError
    |   +-- InvalidTokenError
    |   +-- ExpiredTokenError
    |
    +-- RoutingStateError
    |   +-- ApprovalAlreadyProcessedError
    |   +-- StepAlreadyActedError
    |   +-- ApprovalRequestNotFoundError
    |   +-- ApprovalStepNotFoundError
    |   +-- DuplicateApprovalRequestError
    |   +-- InvalidActionError
    |   +-- UnauthorizedApproverError
    |
    +-- LevelConfigurationError
    |   +-- ApprovalLevelsUnconfiguredError
    |   +-- InvalidLevelConfigurationError
    |
    +-- SideEffectError
        +-- NotificationDeliveryError
        +-- ArtifactMoveError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|------------------------------------
Token        | INVALID_TOKEN                | Malformed token or bad signature
             | EXPIRED_TOKEN                | Signature ok, older than 7 days
-------------|------------------------------|------------------------------------
Routing      | ALREADY_PROCESSED            | Request no longer pending
             | STEP_ALREADY_ACTED           | Step no longer pending (CAS lost)
             | APPROVAL_REQUEST_NOT_FOUND   | No routing state for request id
             | APPROVAL_STEP_NOT_FOUND      | Step id unknown / other request
             | DUPLICATE_APPROVAL_REQUEST   | Request initialized twice
             | INVALID_ACTION               | Action is not approve / reject
             | UNAUTHORIZED_APPROVER        | Actor is not the step approver
-------------|------------------------------|------------------------------------
Levels       | UNCONFIGURED                 | No active approval levels
             | INVALID_LEVEL_CONFIGURATION  | Ladder fails validation on save
-------------|------------------------------|------------------------------------
Side effects | NOTIFICATION_DELIVERY_FAILED | Notifier raised (logged only)
             | ARTIFACT_MOVE_FAILED         | Artifact mover raised (logged only)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RoutingStateError is business state, not a system fault.  Report it to
   the acting party; never retry.

2. SideEffectError is never raised out of the gateway.  It is constructed
   so the structured formatter can log its code and context, then dropped.
   A recorded approval decision stands even when the notice fails.

3. Anything that is NOT an ApprovalRoutingError (database down, network)
   is a retryable action failure and surfaces as a generic error.

===============================================================================
"""

from uuid import UUID


class ApprovalRoutingError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_ROUTING_ERROR"


# Token exceptions


class TokenError(ApprovalRoutingError):
    """Base exception for action-link token errors."""

    code: str = "TOKEN_ERROR"


class InvalidTokenError(TokenError):
    """Token is malformed or its signature does not match."""

    code: str = "INVALID_TOKEN"

    def __init__(self, reason: str = "Invalid token"):
        self.reason = reason
        super().__init__(reason)


class ExpiredTokenError(TokenError):
    """
    Token signature is valid but the token is older than the expiry window.

    Carries the decoded request id and level so support staff can tell the
    user which request the stale link belonged to.
    """

    code: str = "EXPIRED_TOKEN"

    def __init__(self, request_id: UUID, level: int):
        self.request_id = request_id
        self.level = level
        super().__init__(
            f"Token for request {request_id} level {level} has expired"
        )


# Routing state exceptions


class RoutingStateError(ApprovalRoutingError):
    """Base exception for routing state conflicts."""

    code: str = "ROUTING_STATE_ERROR"


class ApprovalAlreadyProcessedError(RoutingStateError):
    """The request has already reached a terminal status."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, request_id: str, current_status: str):
        self.request_id = request_id
        self.current_status = current_status
        super().__init__(
            f"Approval request {request_id} is already {current_status}"
        )


class StepAlreadyActedError(RoutingStateError):
    """
    The step left pending before this action could be recorded.

    Raised when the conditional ``UPDATE ... WHERE status = 'pending'``
    affects zero rows: a duplicate click, a duplicated delivery, or the
    approve and reject links of one notice both being used.
    """

    code: str = "STEP_ALREADY_ACTED"

    def __init__(self, step_id: str, current_status: str | None = None):
        self.step_id = step_id
        self.current_status = current_status
        suffix = f" ({current_status})" if current_status else ""
        super().__init__(f"Approval step {step_id} has already been acted on{suffix}")


class ApprovalRequestNotFoundError(RoutingStateError):
    """No routing state exists for the request id."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class ApprovalStepNotFoundError(RoutingStateError):
    """Step id is unknown, or belongs to a different request."""

    code: str = "APPROVAL_STEP_NOT_FOUND"

    def __init__(self, step_id: str, request_id: str | None = None):
        self.step_id = step_id
        self.request_id = request_id
        if request_id:
            msg = f"Approval step {step_id} not found for request {request_id}"
        else:
            msg = f"Approval step not found: {step_id}"
        super().__init__(msg)


class DuplicateApprovalRequestError(RoutingStateError):
    """Routing state already exists for this request."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval routing already initialized for {request_id}")


class InvalidActionError(RoutingStateError):
    """Submitted action is neither approve nor reject."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: object):
        self.action = str(action)
        super().__init__(
            f'Invalid action {action!r}. Must be "approve" or "reject"'
        )


class UnauthorizedApproverError(RoutingStateError):
    """Actor is not the approver assigned to the pending step."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, actor_email: str, level: int, approver_email: str):
        self.actor_email = actor_email
        self.level = level
        self.approver_email = approver_email
        super().__init__(
            f"{actor_email} is not the approver for level {level} "
            f"(approver: {approver_email})"
        )


# Level configuration exceptions


class LevelConfigurationError(ApprovalRoutingError):
    """Base exception for approval level configuration errors."""

    code: str = "LEVEL_CONFIGURATION_ERROR"


class ApprovalLevelsUnconfiguredError(LevelConfigurationError):
    """No active approval levels exist; submission must be refused."""

    code: str = "UNCONFIGURED"

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id
        super().__init__("No active approval levels are configured")


class InvalidLevelConfigurationError(LevelConfigurationError):
    """The approval level ladder fails validation."""

    code: str = "INVALID_LEVEL_CONFIGURATION"

    def __init__(self, level: int | None, reason: str):
        self.level = level
        self.reason = reason
        where = f"Level {level}: " if level is not None else ""
        super().__init__(f"{where}{reason}")


# Side-effect exceptions (logged, never raised to the acting party)


class SideEffectError(ApprovalRoutingError):
    """Base exception for best-effort side effects."""

    code: str = "SIDE_EFFECT_ERROR"


class NotificationDeliveryError(SideEffectError):
    """A notifier call failed after the state transition was recorded."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(
        self, notice: str, request_id: str | None, recipient: str | None, cause: str,
    ):
        self.notice = notice
        self.request_id = request_id
        self.recipient = recipient
        self.cause = cause
        super().__init__(
            f"Failed to deliver {notice} for request {request_id} "
            f"to {recipient}: {cause}"
        )


class ArtifactMoveError(SideEffectError):
    """Relocating approved artifacts failed after final approval."""

    code: str = "ARTIFACT_MOVE_FAILED"

    def __init__(self, request_id: str, destination: str, cause: str):
        self.request_id = request_id
        self.destination = destination
        self.cause = cause
        super().__init__(
            f"Failed to move artifacts for request {request_id} "
            f"to {destination}: {cause}"
        )

