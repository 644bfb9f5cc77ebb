"""
approval_kernel.services.step_ledger -- Per-level approval steps.

Responsibility:
    Create one step per (request, level) as routing reaches that level, look
    steps up by id or by token, and record the single approve/reject
    transition each step is allowed.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Tokens are minted by an injected ``TokenIssuer`` so the kernel never
    depends on the codec implementation.

Invariants enforced:
    - A step leaves ``pending`` exactly once.  ``transition`` is a single
      ``UPDATE ... WHERE step_id = :id AND status = 'pending'``; a zero-row
      result raises ``StepAlreadyActedError``.  This is the only guard
      against both links of one notice being used, or a duplicated inbound
      request, so it lives in the database rather than in Python.
    - At most one pending step per request (partial unique index).
    - Steps are never deleted.

Failure modes:
    - ApprovalStepNotFoundError for an unknown step id.
    - StepAlreadyActedError when the conditional update affects no rows.
    - IntegrityError if a second step for the same (request, level) or a
      second pending step is created; the router never does either.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalAction,
    ApprovalStep,
    StepStatus,
    TokenIssuer,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import ApprovalStepNotFoundError, StepAlreadyActedError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalStepModel
from approval_kernel.utils.hashing import token_fingerprint

logger = get_logger("services.step_ledger")


class StepLedger:
    """Append-and-transition store for approval steps."""

    def __init__(
        self,
        session: Session,
        issuer: TokenIssuer,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._issuer = issuer
        self._clock = clock or SystemClock()

    def create(self, request_id: UUID, level: int, approver_email: str) -> ApprovalStep:
        """Open the pending step for ``level`` with a fresh token."""
        row = ApprovalStepModel(
            step_id=uuid4(),
            request_id=request_id,
            level=level,
            approver_email=approver_email,
            status=StepStatus.PENDING.value,
            token=self._issuer.issue(request_id, level),
            created_at=self._clock.now(),
        )
        self._session.add(row)
        self._session.flush()

        logger.info(
            "approval_step_created",
            extra={
                "request_id": str(request_id),
                "step_id": str(row.step_id),
                "approval_level": level,
                "approver": approver_email,
                "token_fingerprint": token_fingerprint(row.token),
            },
        )
        return row.to_dto()

    def _load(self, step_id: UUID) -> ApprovalStepModel | None:
        return self._session.execute(
            select(ApprovalStepModel)
            .where(ApprovalStepModel.step_id == step_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, step_id: UUID) -> ApprovalStep:
        row = self._load(step_id)
        if row is None:
            raise ApprovalStepNotFoundError(str(step_id))
        return row.to_dto()

    def list_for_request(self, request_id: UUID) -> tuple[ApprovalStep, ...]:
        """All steps of a request, ascending by level."""
        rows = self._session.execute(
            select(ApprovalStepModel)
            .where(ApprovalStepModel.request_id == request_id)
            .order_by(ApprovalStepModel.level)
            .execution_options(populate_existing=True)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def find_by_token(self, token: str) -> ApprovalStep | None:
        row = self._session.execute(
            select(ApprovalStepModel)
            .where(ApprovalStepModel.token == token)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def pending_for_request(self, request_id: UUID) -> ApprovalStep | None:
        row = self._session.execute(
            select(ApprovalStepModel)
            .where(
                ApprovalStepModel.request_id == request_id,
                ApprovalStepModel.status == StepStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_pending(
        self,
        approver_email: str | None = None,
        created_before: datetime | None = None,
    ) -> tuple[ApprovalStep, ...]:
        """Pending steps, oldest first, optionally filtered."""
        stmt = select(ApprovalStepModel).where(
            ApprovalStepModel.status == StepStatus.PENDING.value,
        )
        if approver_email is not None:
            stmt = stmt.where(
                func.lower(ApprovalStepModel.approver_email) == approver_email.lower()
            )
        if created_before is not None:
            stmt = stmt.where(ApprovalStepModel.created_at < created_before)
        stmt = stmt.order_by(ApprovalStepModel.created_at, ApprovalStepModel.level)
        return tuple(row.to_dto() for row in self._session.execute(stmt).scalars())

    def transition(
        self,
        step_id: UUID,
        action: ApprovalAction,
        acted_at: datetime | None = None,
    ) -> ApprovalStep:
        """Record ``action`` on a pending step.

        Raises:
            ApprovalStepNotFoundError: unknown step.
            StepAlreadyActedError: the step is no longer pending.
        """
        acted_at = acted_at or self._clock.now()
        result = self._session.execute(
            update(ApprovalStepModel)
            .where(
                ApprovalStepModel.step_id == step_id,
                ApprovalStepModel.status == StepStatus.PENDING.value,
            )
            .values(
                status=action.step_status.value,
                comment=action.comment,
                acted_at=acted_at,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            row = self._load(step_id)
            if row is None:
                raise ApprovalStepNotFoundError(str(step_id))
            logger.warning(
                "approval_step_already_acted",
                extra={
                    "step_id": str(step_id),
                    "request_id": str(row.request_id),
                    "current_status": row.status,
                    "attempted_action": action.name,
                },
            )
            raise StepAlreadyActedError(str(step_id), row.status)

        step = self.get(step_id)
        logger.info(
            "approval_step_transitioned",
            extra={
                "step_id": str(step_id),
                "request_id": str(step.request_id),
                "approval_level": step.level,
                "status": step.status.value,
            },
        )
        return step
