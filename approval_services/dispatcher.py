"""
approval_services.dispatcher -- Best-effort delivery of routing intents.

Responsibility:
    Turns the intents returned by ``ApprovalRouter`` into notifier and
    artifact-mover calls once the routing transaction has committed.

Architecture position:
    Services -- side-effect boundary.  Called by ``ApprovalGateway`` after
    ``session_scope()`` exits cleanly; never inside a transaction.

Invariants enforced:
    - A recorded transition is authoritative.  Delivery failures are caught
      per call, logged with a typed ``SideEffectError`` and never raised,
      retried or fed back into routing state.
    - One failing call does not stop the remaining intents.
    - Submitter notices (advance, finalized, rejected) are skipped when the
      request has no submitter address.

Failure modes:
    - None surfaced.  ``dispatch`` returns the list of failures so callers
      and tests can observe them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from uuid import UUID

from approval_kernel.domain.approval import (
    AdvanceIntent,
    ApprovalRequestedIntent,
    ArtifactRelocationIntent,
    FinalizedIntent,
    RejectedIntent,
    RoutingIntent,
)
from approval_kernel.exceptions import (
    ArtifactMoveError,
    NotificationDeliveryError,
    SideEffectError,
)
from approval_kernel.logging_config import get_logger
from approval_services.artifacts import ArtifactMover
from approval_services.notifications import (
    Notifier,
    ReminderNotice,
    SubmitterReminderNotice,
)

logger = get_logger("services.dispatcher")


class IntentDispatcher:
    """Delivers routing intents to the injected collaborators."""

    def __init__(
        self,
        notifier: Notifier,
        artifact_mover: ArtifactMover | None = None,
    ) -> None:
        self._notifier = notifier
        self._artifact_mover = artifact_mover

    def dispatch(self, intents: Iterable[RoutingIntent]) -> list[SideEffectError]:
        failures: list[SideEffectError] = []
        for intent in intents:
            failures.extend(self._dispatch_one(intent))
        return failures

    def send_reminder(self, notice: ReminderNotice) -> SideEffectError | None:
        return self._notify(
            "reminder",
            None,
            notice.approver_email,
            lambda: self._notifier.send_reminder(notice),
        )

    def send_submitter_reminder(self, notice: SubmitterReminderNotice) -> SideEffectError | None:
        return self._notify(
            "submitter_reminder",
            None,
            notice.submitter_email,
            lambda: self._notifier.send_submitter_reminder(notice),
        )

    def _dispatch_one(self, intent: RoutingIntent) -> list[SideEffectError]:
        results: list[SideEffectError | None] = []
        if isinstance(intent, ApprovalRequestedIntent):
            results.append(self._notify(
                "approval_request", intent.request_id, intent.approver_email,
                lambda: self._notifier.send_approval_request(intent),
            ))
        elif isinstance(intent, AdvanceIntent):
            results.append(self._notify(
                "approval_request", intent.request.request_id,
                intent.request.approver_email,
                lambda: self._notifier.send_approval_request(intent.request),
            ))
            if intent.request.submitter_email:
                results.append(self._notify(
                    "advance", intent.request.request_id,
                    intent.request.submitter_email,
                    lambda: self._notifier.send_advance_notice(intent),
                ))
            else:
                self._log_no_submitter("advance", intent.request.request_id)
        elif isinstance(intent, FinalizedIntent):
            if intent.submitter_email:
                results.append(self._notify(
                    "finalized", intent.request_id, intent.submitter_email,
                    lambda: self._notifier.send_finalized_notice(intent),
                ))
            else:
                self._log_no_submitter("finalized", intent.request_id)
        elif isinstance(intent, RejectedIntent):
            if intent.submitter_email:
                results.append(self._notify(
                    "rejected", intent.request_id, intent.submitter_email,
                    lambda: self._notifier.send_rejected_notice(intent),
                ))
            else:
                self._log_no_submitter("rejected", intent.request_id)
        elif isinstance(intent, ArtifactRelocationIntent):
            results.append(self._relocate(intent))
        else:
            raise TypeError(f"Unknown routing intent: {type(intent).__name__}")
        return [r for r in results if r is not None]

    @staticmethod
    def _log_no_submitter(notice: str, request_id: UUID) -> None:
        logger.info(
            "submitter_notice_skipped",
            extra={"notice": notice, "request_id": str(request_id), "reason": "no_submitter"},
        )

    def _notify(
        self,
        notice: str,
        request_id: UUID | None,
        recipient: str | None,
        send: Callable[[], None],
    ) -> NotificationDeliveryError | None:
        try:
            send()
        except Exception as exc:
            failure = NotificationDeliveryError(
                notice,
                str(request_id) if request_id is not None else None,
                recipient,
                str(exc),
            )
            failure.__cause__ = exc
            logger.error(
                "notification_delivery_failed",
                exc_info=failure,
                extra={"notice": notice, "recipient": recipient},
            )
            return failure
        return None

    def _relocate(self, intent: ArtifactRelocationIntent) -> ArtifactMoveError | None:
        if self._artifact_mover is None:
            logger.info(
                "artifact_relocation_skipped",
                extra={"request_id": str(intent.request_id), "reason": "no_mover"},
            )
            return None
        try:
            self._artifact_mover.move_to_approved_location(intent.refs, intent.destination)
        except Exception as exc:
            failure = ArtifactMoveError(str(intent.request_id), intent.destination, str(exc))
            failure.__cause__ = exc
            logger.error("artifact_move_failed", exc_info=failure)
            return failure
        logger.info(
            "artifacts_relocated",
            extra={
                "request_id": str(intent.request_id),
                "destination": intent.destination,
                "count": len(intent.refs),
            },
        )
        return None
