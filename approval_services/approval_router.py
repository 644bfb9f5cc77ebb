"""
approval_services.approval_router -- Sequential approval state machine.

Responsibility:
    Routes one request through its required approval levels:

        Unrouted -> AwaitingLevel(1) -> ... -> AwaitingLevel(max_level)
                 -> Approved | Rejected

    ``initialize`` fixes the depth and opens level 1.  ``act`` records one
    approve/reject and either advances, finalizes or terminates.  Both
    return the side-effect intents the caller must deliver after commit.

Architecture position:
    Services -- orchestration over the level policy engine and the kernel
    stores.  Thin coordinator: depth arithmetic lives in
    ``resolve_required_levels``, compare-and-swap lives in the stores.
    Works inside a caller-owned session and never commits.

Invariants enforced:
    - Strictly sequential: exactly one step is opened at a time, for
      ``current_level + 1``; nothing is skipped even when the same person
      approves several levels.
    - ``max_level`` is fixed at initialization; later ladder edits do not
      change the depth of requests already in flight.
    - Rejection is terminal: no further step is ever created.
    - Terminal requests are never revisited (conditional updates).

Failure modes:
    - DuplicateApprovalRequestError on a second initialize.
    - ApprovalRequestNotFoundError / ApprovalStepNotFoundError on unknown ids.
    - ApprovalAlreadyProcessedError if the request is terminal.
    - StepAlreadyActedError if the step lost its compare-and-swap.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from approval_engines.level_policy import resolve_required_levels
from approval_engines.links import ActionLinkBuilder
from approval_kernel.domain.approval import (
    AdvanceIntent,
    ApprovalAction,
    ApprovalInitialization,
    ApprovalLevelConfig,
    ApprovalRequestedIntent,
    ApprovalStep,
    ArtifactRef,
    ArtifactRelocationIntent,
    FinalizedIntent,
    Reject,
    RejectedIntent,
    RequestApprovalState,
    RequestStatus,
    RoutingIntent,
    RoutingOutcome,
    StepStatus,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.levels import find_level
from approval_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalStepNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.level_config_service import LevelConfigService
from approval_kernel.services.request_store import ApprovalRequestStore
from approval_kernel.services.step_ledger import StepLedger

logger = get_logger("services.approval_router")


def _level_name(levels: Sequence[ApprovalLevelConfig], level: int) -> str:
    config = find_level(levels, level)
    return config.level_name if config is not None else f"Level {level}"


class ApprovalRouter:
    """Drives one request at a time through the approval ladder."""

    def __init__(
        self,
        levels: LevelConfigService,
        requests: ApprovalRequestStore,
        ledger: StepLedger,
        links: ActionLinkBuilder,
        clock: Clock | None = None,
    ) -> None:
        self._levels = levels
        self._requests = requests
        self._ledger = ledger
        self._links = links
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(
        self,
        request_id: UUID,
        total: Decimal,
        submitter_email: str | None = None,
        artifact_refs: Sequence[ArtifactRef] = (),
        approved_destination: str | None = None,
    ) -> ApprovalInitialization | None:
        """Fix the request's depth and open its level-1 step.

        Returns ``None`` when no active levels exist.  Nothing is written in
        that case; the caller decides whether to refuse the submission.
        """
        active = self._levels.get_active_levels()
        resolution = resolve_required_levels(total, active)
        if resolution is None:
            logger.warning(
                "approval_levels_unconfigured",
                extra={"request_id": str(request_id)},
            )
            return None

        first = resolution.levels[0]
        self._requests.create(
            request_id=request_id,
            total_amount=total,
            max_level=resolution.max_level,
            created_at=self._clock.now(),
            submitter_email=submitter_email,
            artifact_refs=artifact_refs,
            approved_destination=approved_destination,
        )
        step = self._ledger.create(request_id, first.level, first.approver_email)

        intent = self._request_intent(
            request_id=request_id,
            step=step,
            level_name=first.level_name,
            max_level=resolution.max_level,
            total=total,
            submitter_email=submitter_email,
        )
        logger.info(
            "approval_initialized",
            extra={
                "request_id": str(request_id),
                "total_amount": str(total),
                "max_level": resolution.max_level,
                "approver": first.approver_email,
            },
        )
        return ApprovalInitialization(
            request_id=request_id,
            approver_email=first.approver_email,
            token=step.token,
            approve_url=intent.approve_url,
            reject_url=intent.reject_url,
            max_level=resolution.max_level,
            level_name=first.level_name,
            intents=(intent,),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def act(self, request_id: UUID, step_id: UUID, action: ApprovalAction) -> RoutingOutcome:
        """Record ``action`` on ``step_id`` and move the request on."""
        with LogContext.bind(request_id=str(request_id), step_id=str(step_id)):
            state = self._requests.get(request_id)
            if state.is_terminal:
                logger.info(
                    "approval_action_on_terminal_request",
                    extra={"status": state.status.value, "attempted_action": action.name},
                )
                raise ApprovalAlreadyProcessedError(str(request_id), state.status.value)

            step = self._ledger.get(step_id)
            if step.request_id != request_id:
                raise ApprovalStepNotFoundError(str(step_id), str(request_id))

            now = self._clock.now()
            step = self._ledger.transition(step_id, action, acted_at=now)
            active = self._levels.get_active_levels()

            if isinstance(action, Reject):
                return self._reject(state, step, active)
            if state.current_level < state.max_level:
                next_config = find_level(active, state.current_level + 1)
                if next_config is not None:
                    return self._advance(state, step, next_config)
                logger.warning(
                    "approval_next_level_missing",
                    extra={
                        "current_level": state.current_level,
                        "max_level": state.max_level,
                    },
                )
            return self._finalize(state, step)

    def _reject(
        self,
        state: RequestApprovalState,
        step: ApprovalStep,
        active: Sequence[ApprovalLevelConfig],
    ) -> RoutingOutcome:
        self._requests.reject(state.request_id, rejected_at=step.acted_at, comment=step.comment)
        intent = RejectedIntent(
            request_id=state.request_id,
            submitter_email=state.submitter_email,
            total_amount=state.total_amount,
            level=step.level,
            level_name=_level_name(active, step.level),
            comment=step.comment,
        )
        logger.info("approval_rejected", extra={"approval_level": step.level})
        return RoutingOutcome(
            request_id=state.request_id,
            level=step.level,
            status=RequestStatus.REJECTED,
            is_finalized=True,
            intents=(intent,),
        )

    def _advance(
        self,
        state: RequestApprovalState,
        step: ApprovalStep,
        next_config: ApprovalLevelConfig,
    ) -> RoutingOutcome:
        next_step = self._ledger.create(
            state.request_id, next_config.level, next_config.approver_email,
        )
        self._requests.advance(
            state.request_id, from_level=state.current_level, to_level=next_config.level,
        )
        approved = tuple(
            s for s in self._ledger.list_for_request(state.request_id)
            if s.status == StepStatus.APPROVED
        )
        request_intent = self._request_intent(
            request_id=state.request_id,
            step=next_step,
            level_name=next_config.level_name,
            max_level=state.max_level,
            total=state.total_amount,
            submitter_email=state.submitter_email,
            previous_approvals=approved,
        )
        logger.info(
            "approval_advanced",
            extra={
                "approved_level": step.level,
                "next_level": next_config.level,
                "approver": next_config.approver_email,
            },
        )
        return RoutingOutcome(
            request_id=state.request_id,
            level=step.level,
            status=RequestStatus.PENDING,
            is_finalized=False,
            next_level=next_config.level,
            next_level_name=next_config.level_name,
            intents=(AdvanceIntent(request=request_intent, approved_level=step.level),),
        )

    def _finalize(self, state: RequestApprovalState, step: ApprovalStep) -> RoutingOutcome:
        self._requests.finalize(state.request_id, approved_at=step.acted_at, comment=step.comment)
        intents: list[RoutingIntent] = [
            FinalizedIntent(
                request_id=state.request_id,
                submitter_email=state.submitter_email,
                total_amount=state.total_amount,
                comment=step.comment,
                timeline=self._ledger.list_for_request(state.request_id),
            )
        ]
        if state.artifact_refs and state.approved_destination:
            intents.append(
                ArtifactRelocationIntent(
                    request_id=state.request_id,
                    refs=state.artifact_refs,
                    destination=state.approved_destination,
                )
            )
        logger.info("approval_finalized", extra={"approval_level": step.level})
        return RoutingOutcome(
            request_id=state.request_id,
            level=step.level,
            status=RequestStatus.APPROVED,
            is_finalized=True,
            intents=tuple(intents),
        )

    def _request_intent(
        self,
        *,
        request_id: UUID,
        step: ApprovalStep,
        level_name: str,
        max_level: int,
        total: Decimal,
        submitter_email: str | None,
        previous_approvals: tuple[ApprovalStep, ...] = (),
    ) -> ApprovalRequestedIntent:
        return ApprovalRequestedIntent(
            request_id=request_id,
            level=step.level,
            max_level=max_level,
            level_name=level_name,
            approver_email=step.approver_email,
            approve_url=self._links.approve_url(step.token),
            reject_url=self._links.reject_url(step.token),
            total_amount=total,
            submitter_email=submitter_email,
            previous_approvals=previous_approvals,
        )
