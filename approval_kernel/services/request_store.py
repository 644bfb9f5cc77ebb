"""
approval_kernel.services.request_store -- Per-request routing state.

Responsibility:
    Create and read ``RequestApprovalState`` rows and apply the three
    routing mutations (advance, finalize, reject) as conditional updates.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - ``total_amount`` and ``max_level`` are written once, at creation.
    - Every mutation is a conditional ``UPDATE``.  Finalize and reject only
      match rows in a status ``REQUEST_TRANSITIONS`` lets them leave; advance
      matches ``pending`` rows at the expected ``current_level``.  Zero
      affected rows means another writer won; the store raises instead of
      overwriting.
    - Terminal statuses are never revisited.

Failure modes:
    - DuplicateApprovalRequestError if the request is already routed,
      including when a concurrent initializer commits first.  The session
      has been rolled back when this is raised from the insert.
    - ApprovalRequestNotFoundError on an unknown request id.
    - ApprovalAlreadyProcessedError when a conditional update loses.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ArtifactRef,
    RequestApprovalState,
    RequestStatus,
    statuses_leading_to,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalRequestNotFoundError,
    DuplicateApprovalRequestError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel

logger = get_logger("services.request_store")


class ApprovalRequestStore:
    """Compare-and-swap access to ``approval_requests``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _load(self, request_id: UUID) -> ApprovalRequestModel | None:
        return self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def find(self, request_id: UUID) -> RequestApprovalState | None:
        row = self._load(request_id)
        return row.to_dto() if row is not None else None

    def get(self, request_id: UUID) -> RequestApprovalState:
        row = self._load(request_id)
        if row is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return row.to_dto()

    def create(
        self,
        request_id: UUID,
        total_amount: Decimal,
        max_level: int,
        created_at: datetime,
        submitter_email: str | None = None,
        artifact_refs: Sequence[ArtifactRef] = (),
        approved_destination: str | None = None,
    ) -> RequestApprovalState:
        if self._load(request_id) is not None:
            raise DuplicateApprovalRequestError(str(request_id))

        row = ApprovalRequestModel(
            request_id=request_id,
            total_amount=total_amount,
            current_level=1,
            max_level=max_level,
            status=RequestStatus.PENDING.value,
            submitter_email=submitter_email,
            created_at=created_at,
            artifact_refs=[
                {"drive_id": ref.drive_id, "file_id": ref.file_id}
                for ref in artifact_refs
            ] or None,
            approved_destination=approved_destination,
        )
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            # Concurrent initializer committed between the read and the insert
            self._session.rollback()
            logger.warning(
                "approval_request_duplicate_insert",
                extra={"request_id": str(request_id)},
            )
            raise DuplicateApprovalRequestError(str(request_id)) from exc
        return row.to_dto()

    def _conditional_update(
        self,
        request_id: UUID,
        *criteria,
        target: RequestStatus | None = None,
        **values,
    ) -> None:
        """Apply ``values`` only while the row sits in a status ``target`` may be entered from.

        ``target=None`` is a level change inside ``PENDING``.
        """
        if target is None:
            sources = frozenset({RequestStatus.PENDING})
        else:
            sources = statuses_leading_to(target)
            if not sources:
                raise ValueError(f"No request status leads to {target.value}")
            values["status"] = target.value

        result = self._session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.request_id == request_id,
                ApprovalRequestModel.status.in_(sorted(s.value for s in sources)),
                *criteria,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        current = self._load(request_id)
        if current is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        status = current.status
        if status == RequestStatus.PENDING.value:
            status = f"pending at level {current.current_level}"
        logger.warning(
            "approval_request_update_conflict",
            extra={"request_id": str(request_id), "current_status": status},
        )
        raise ApprovalAlreadyProcessedError(str(request_id), status)

    def advance(self, request_id: UUID, from_level: int, to_level: int) -> RequestApprovalState:
        """Move ``current_level`` forward, only from ``from_level``."""
        self._conditional_update(
            request_id,
            ApprovalRequestModel.current_level == from_level,
            current_level=to_level,
        )
        return self.get(request_id)

    def finalize(
        self,
        request_id: UUID,
        approved_at: datetime,
        comment: str | None = None,
    ) -> RequestApprovalState:
        self._conditional_update(
            request_id,
            target=RequestStatus.APPROVED,
            approved_at=approved_at,
            approval_comment=comment,
        )
        return self.get(request_id)

    def reject(
        self,
        request_id: UUID,
        rejected_at: datetime,
        comment: str | None = None,
    ) -> RequestApprovalState:
        self._conditional_update(
            request_id,
            target=RequestStatus.REJECTED,
            rejected_at=rejected_at,
            approval_comment=comment,
        )
        return self.get(request_id)
