"""
approval_services.gateway -- Produced interface of the approval engine.

Responsibility:
    The entry points a host application calls: routing a new request,
    processing an approve/reject (by ids, by signed link, or as a
    signed-in approver), token verification, status lookup, approver
    inbox and overdue reminders.

Architecture position:
    Services -- outermost layer.  Owns transaction boundaries: every call
    runs in its own ``Database.session_scope()``.  Intents returned by the
    router are delivered only after that scope commits.

Invariants enforced:
    - State is authoritative, notification is best-effort.  Dispatch
      happens after commit; its failures never change the result.
    - The acting party on a link receives exactly one ``ActionOutcome``,
      never a raw exception.
    - The action hint in a link is never trusted.  The submitted action is
      always required explicitly.
    - Tokens are logged only as fingerprints.

Failure modes:
    - ``submit_request`` raises ApprovalLevelsUnconfiguredError.
    - ``act_as_approver`` raises the typed routing errors, including
      UnauthorizedApproverError.
    - Other entry points classify failures into their result values.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.links import ActionLinkBuilder
from approval_engines.token_codec import TokenCodec, TokenVerification
from approval_kernel.db.engine import Database
from approval_kernel.domain.approval import (
    Approve,
    ApprovalAction,
    ApprovalInitialization,
    ArtifactRef,
    Reject,
    RequestStatus,
    RoutingOutcome,
    parse_action,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.levels import find_level
from approval_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalLevelsUnconfiguredError,
    ApprovalRoutingError,
    ApprovalStepNotFoundError,
    InvalidTokenError,
    StepAlreadyActedError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.level_config_service import LevelConfigService
from approval_kernel.services.request_store import ApprovalRequestStore
from approval_kernel.services.step_ledger import StepLedger
from approval_kernel.utils.hashing import token_fingerprint
from approval_services.approval_router import ApprovalRouter
from approval_services.artifacts import ArtifactMover
from approval_services.dispatcher import IntentDispatcher
from approval_services.notifications import (
    Notifier,
    ReminderItem,
    ReminderNotice,
    SubmitterReminderNotice,
)
from approval_services.results import (
    OUTCOME_MESSAGES,
    ActionOutcome,
    ApprovalActionResult,
    ApprovalStatusView,
    LinkActionResult,
    PendingApproval,
    ReminderReport,
)

logger = get_logger("services.gateway")

_ALREADY_ACTED = (StepAlreadyActedError, ApprovalAlreadyProcessedError)


@dataclass(frozen=True)
class _UnitOfWork:
    """Kernel services and router bound to one session."""

    levels: LevelConfigService
    requests: ApprovalRequestStore
    ledger: StepLedger
    router: ApprovalRouter


def _coerce_action(action: ApprovalAction | str, comment: str | None) -> ApprovalAction:
    if isinstance(action, (Approve, Reject)):
        return action
    return parse_action(action, comment)


def _link_result(outcome: RoutingOutcome) -> LinkActionResult:
    kind = ActionOutcome.FINALIZED if outcome.is_finalized else ActionOutcome.ADVANCED
    message = OUTCOME_MESSAGES[kind]
    if outcome.status == RequestStatus.REJECTED:
        message = "The request has been rejected."
    return LinkActionResult(
        outcome=kind,
        request_id=outcome.request_id,
        level=outcome.level,
        status=outcome.status,
        next_level=outcome.next_level,
        next_level_name=outcome.next_level_name,
        message=message,
    )


def _failure(kind: ActionOutcome, **fields) -> LinkActionResult:
    return LinkActionResult(outcome=kind, message=OUTCOME_MESSAGES[kind], **fields)


class ApprovalGateway:
    """Transactional facade over the approval router."""

    def __init__(
        self,
        database: Database,
        codec: TokenCodec,
        links: ActionLinkBuilder,
        dispatcher: IntentDispatcher,
        clock: Clock | None = None,
    ) -> None:
        self._database = database
        self._codec = codec
        self._links = links
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()

    @classmethod
    def from_settings(
        cls,
        settings,
        notifier: Notifier,
        artifact_mover: ArtifactMover | None = None,
        clock: Clock | None = None,
        database: Database | None = None,
    ) -> ApprovalGateway:
        """Wire a gateway once at process start from ``RoutingSettings``."""
        clock = clock or SystemClock()
        return cls(
            database=database or Database.from_url(settings.database_url),
            codec=TokenCodec(settings.secret, clock=clock),
            links=ActionLinkBuilder(settings.app_base_url),
            dispatcher=IntentDispatcher(notifier, artifact_mover),
            clock=clock,
        )

    def _unit(self, session: Session) -> _UnitOfWork:
        levels = LevelConfigService(session)
        requests = ApprovalRequestStore(session)
        ledger = StepLedger(session, self._codec, self._clock)
        router = ApprovalRouter(levels, requests, ledger, self._links, self._clock)
        return _UnitOfWork(levels=levels, requests=requests, ledger=ledger, router=router)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize_approval(
        self,
        request_id: UUID,
        total: Decimal,
        submitter_email: str | None = None,
        artifact_refs: Sequence[ArtifactRef] = (),
        approved_destination: str | None = None,
    ) -> ApprovalInitialization | None:
        """Route a new request to its first approver.

        Returns ``None`` when no approval levels are active.
        """
        with LogContext.bind(request_id=str(request_id)):
            with self._database.session_scope() as session:
                result = self._unit(session).router.initialize(
                    request_id,
                    total,
                    submitter_email=submitter_email,
                    artifact_refs=artifact_refs,
                    approved_destination=approved_destination,
                )
            if result is not None:
                self._dispatcher.dispatch(result.intents)
            return result

    def submit_request(
        self,
        request_id: UUID,
        total: Decimal,
        submitter_email: str | None = None,
        artifact_refs: Sequence[ArtifactRef] = (),
        approved_destination: str | None = None,
    ) -> ApprovalInitialization:
        """Like ``initialize_approval`` but refuses unconfigured routing."""
        result = self.initialize_approval(
            request_id,
            total,
            submitter_email=submitter_email,
            artifact_refs=artifact_refs,
            approved_destination=approved_destination,
        )
        if result is None:
            raise ApprovalLevelsUnconfiguredError(str(request_id))
        return result

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _act(self, request_id: UUID, step_id: UUID, action: ApprovalAction) -> RoutingOutcome:
        with self._database.session_scope() as session:
            outcome = self._unit(session).router.act(request_id, step_id, action)
        self._dispatcher.dispatch(outcome.intents)
        return outcome

    def process_approval_action(
        self,
        request_id: UUID,
        step_id: UUID,
        action: ApprovalAction | str,
        comment: str | None = None,
    ) -> ApprovalActionResult:
        """Approve or reject a step by id."""
        with LogContext.bind(request_id=str(request_id), step_id=str(step_id)):
            try:
                outcome = self._act(request_id, step_id, _coerce_action(action, comment))
            except ApprovalRoutingError as exc:
                logger.info(
                    "approval_action_refused",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                return ApprovalActionResult(success=False, error=str(exc), error_code=exc.code)
            except Exception:
                logger.exception("approval_action_failed")
                return ApprovalActionResult(
                    success=False,
                    error="Failed to process approval",
                    error_code=ActionOutcome.ERROR.value,
                    retryable=True,
                )
            return ApprovalActionResult(
                success=True,
                is_finalized=outcome.is_finalized,
                next_level=outcome.next_level,
                next_level_name=outcome.next_level_name,
            )

    def handle_link_action(
        self,
        token: str,
        action: ApprovalAction | str,
        comment: str | None = None,
    ) -> LinkActionResult:
        """Act on the step a signed link points at."""
        with LogContext.bind(token_fingerprint=token_fingerprint(token or "")):
            try:
                parsed = _coerce_action(action, comment)
            except ApprovalRoutingError as exc:
                logger.info("link_action_refused", extra={"error_code": exc.code})
                return LinkActionResult(outcome=ActionOutcome.ERROR, message=str(exc))

            verification = self._codec.verify(token or "")
            if verification.expired:
                logger.info(
                    "link_action_expired",
                    extra={
                        "request_id": str(verification.request_id),
                        "approval_level": verification.level,
                    },
                )
                return _failure(
                    ActionOutcome.EXPIRED_LINK,
                    request_id=verification.request_id,
                    level=verification.level,
                )
            if not verification.valid:
                logger.info("link_action_invalid_token")
                return _failure(ActionOutcome.INVALID_LINK)

            ids = {"request_id": verification.request_id, "level": verification.level}
            try:
                with self._database.session_scope() as session:
                    unit = self._unit(session)
                    step = unit.ledger.find_by_token(token)
                    if (
                        step is None
                        or step.request_id != verification.request_id
                        or step.level != verification.level
                    ):
                        raise InvalidTokenError("Token does not match any approval step")
                    with LogContext.bind(step_id=str(step.step_id)):
                        outcome = unit.router.act(step.request_id, step.step_id, parsed)
            except InvalidTokenError:
                logger.info(
                    "link_action_unknown_step",
                    extra={
                        "request_id": str(verification.request_id),
                        "approval_level": verification.level,
                    },
                )
                return _failure(ActionOutcome.INVALID_LINK)
            except _ALREADY_ACTED as exc:
                logger.info("link_action_already_processed", extra={"error_code": exc.code})
                return _failure(ActionOutcome.ALREADY_PROCESSED, **ids)
            except ApprovalRoutingError as exc:
                logger.warning("link_action_refused", extra={"error_code": exc.code})
                return _failure(ActionOutcome.ERROR, **ids)
            except Exception:
                logger.exception("link_action_failed")
                return _failure(ActionOutcome.ERROR, **ids)

            self._dispatcher.dispatch(outcome.intents)
            return _link_result(outcome)

    def act_as_approver(
        self,
        request_id: UUID,
        actor_email: str,
        action: ApprovalAction | str,
        comment: str | None = None,
        is_admin: bool = False,
    ) -> RoutingOutcome:
        """Act on a request's pending step as a signed-in user.

        Only the step's approver (case-insensitive) may act, unless
        ``is_admin`` is set.

        Raises:
            ApprovalAlreadyProcessedError: request is terminal.
            UnauthorizedApproverError: actor is not the step's approver.
        """
        parsed = _coerce_action(action, comment)
        with LogContext.bind(request_id=str(request_id), actor=actor_email):
            with self._database.session_scope() as session:
                unit = self._unit(session)
                state = unit.requests.get(request_id)
                if state.is_terminal:
                    raise ApprovalAlreadyProcessedError(str(request_id), state.status.value)
                step = unit.ledger.pending_for_request(request_id)
                if step is None:
                    raise ApprovalStepNotFoundError("pending", str(request_id))

                if step.approver_email.lower() != actor_email.lower():
                    if not is_admin:
                        raise UnauthorizedApproverError(
                            actor_email, step.level, step.approver_email,
                        )
                    logger.warning(
                        "approval_admin_override",
                        extra={"approval_level": step.level, "assigned_approver": step.approver_email},
                    )
                outcome = unit.router.act(request_id, step.step_id, parsed)
            self._dispatcher.dispatch(outcome.intents)
            return outcome

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def verify_approval_token(self, token: str) -> TokenVerification:
        verification = self._codec.verify(token)
        logger.debug(
            "approval_token_verified",
            extra={
                "token_fingerprint": token_fingerprint(token or ""),
                "valid": verification.valid,
                "expired": verification.expired,
            },
        )
        return verification

    def get_approval_status(self, token: str) -> ApprovalStatusView:
        """Request state and step timeline for the landing page of a link."""
        verification = self._codec.verify(token)
        if verification.request_id is None:
            return ApprovalStatusView(token_valid=False)

        with self._database.session_scope() as session:
            unit = self._unit(session)
            state = unit.requests.find(verification.request_id)
            steps = unit.ledger.list_for_request(verification.request_id)
            level_names = {c.level: c.level_name for c in unit.levels.list_levels()}

        step = next((s for s in steps if s.token == token), None)
        return ApprovalStatusView(
            token_valid=verification.valid and step is not None,
            expired=verification.expired,
            request_id=verification.request_id,
            level=verification.level,
            request=state,
            step=step,
            steps=steps,
            level_names=level_names,
        )

    def list_pending_for_approver(self, approver_email: str) -> tuple[PendingApproval, ...]:
        """Pending steps assigned to ``approver_email``, oldest first."""
        with self._database.session_scope() as session:
            unit = self._unit(session)
            levels = unit.levels.list_levels()
            pending = []
            for step in unit.ledger.list_pending(approver_email=approver_email):
                config = find_level(levels, step.level)
                pending.append(
                    PendingApproval(
                        step=step,
                        request=unit.requests.get(step.request_id),
                        level_name=config.level_name if config else f"Level {step.level}",
                        approve_url=self._links.approve_url(step.token),
                        reject_url=self._links.reject_url(step.token),
                    )
                )
        return tuple(pending)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def send_pending_reminders(self, min_age_hours: int = 24) -> ReminderReport:
        """Send one digest per approver of steps pending longer than the threshold.

        Each submitter of a listed request also gets one digest of their own
        requests still waiting, naming the approver holding each.  Read-only
        with respect to routing state.  Steps whose token has already expired
        are skipped; their link could no longer be used.
        """
        now = self._clock.now()
        cutoff = now - timedelta(hours=min_age_hours)

        by_approver: OrderedDict[str, list[ReminderItem]] = OrderedDict()
        by_submitter: OrderedDict[str, list[ReminderItem]] = OrderedDict()
        addresses: dict[str, str] = {}
        skipped = 0
        with self._database.session_scope() as session:
            unit = self._unit(session)
            steps = unit.ledger.list_pending(created_before=cutoff)
            for step in steps:
                if not self._codec.verify(step.token).valid:
                    skipped += 1
                    logger.info(
                        "reminder_skipped_expired_token",
                        extra={
                            "request_id": str(step.request_id),
                            "step_id": str(step.step_id),
                            "approval_level": step.level,
                        },
                    )
                    continue
                state = unit.requests.get(step.request_id)
                item = ReminderItem(
                    request_id=step.request_id,
                    level=step.level,
                    total_amount=state.total_amount,
                    waiting_since=step.created_at,
                    approve_url=self._links.approve_url(step.token),
                    reject_url=self._links.reject_url(step.token),
                    submitter_email=state.submitter_email,
                    approver_email=step.approver_email,
                )
                key = step.approver_email.lower()
                addresses.setdefault(key, step.approver_email)
                by_approver.setdefault(key, []).append(item)
                if state.submitter_email:
                    key = state.submitter_email.lower()
                    addresses.setdefault(key, state.submitter_email)
                    by_submitter.setdefault(key, []).append(item)

        dashboard_url = self._links.dashboard_url()
        approver_failures = []
        for key, items in by_approver.items():
            failure = self._dispatcher.send_reminder(
                ReminderNotice(
                    approver_email=addresses[key],
                    items=tuple(items),
                    dashboard_url=dashboard_url,
                )
            )
            if failure is not None:
                approver_failures.append(failure)

        submitter_failures = []
        for key, items in by_submitter.items():
            failure = self._dispatcher.send_submitter_reminder(
                SubmitterReminderNotice(
                    submitter_email=addresses[key],
                    items=tuple(items),
                    dashboard_url=dashboard_url,
                )
            )
            if failure is not None:
                submitter_failures.append(failure)

        report = ReminderReport(
            pending_steps=len(steps),
            reminded_approvers=len(by_approver) - len(approver_failures),
            skipped_expired=skipped,
            failures=tuple(approver_failures + submitter_failures),
            reminded_submitters=len(by_submitter) - len(submitter_failures),
        )
        logger.info(
            "approval_reminders_sent",
            extra={
                "pending_steps": report.pending_steps,
                "reminded_approvers": report.reminded_approvers,
                "reminded_submitters": report.reminded_submitters,
                "skipped_expired": report.skipped_expired,
                "failed": len(report.failures),
            },
        )
        return report
