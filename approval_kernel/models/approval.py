"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval level configs, per-request
    routing state and per-level approval steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - Request status limited to pending/approved/rejected (check constraint);
      terminal statuses are never revisited (service layer uses conditional
      updates keyed on status='pending').
    - One routing state per request (unique request_id).
    - One step per (request, level) (unique constraint).
    - At most one pending step per request (partial unique index).
    - Tokens are unique across steps so find-by-token is unambiguous.

Failure modes:
    - IntegrityError on a duplicate request, a duplicate (request, level)
      step, or a second pending step for one request.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString
from approval_kernel.domain.approval import (
    ApprovalLevelConfig,
    ApprovalStep,
    ArtifactRef,
    RequestApprovalState,
    RequestStatus,
    StepStatus,
)


class ApprovalLevelConfigModel(Base):
    """Persistent rung of the approval ladder.

    Written only by ``LevelConfigService``, which validates the whole active
    ladder before every flush.
    """

    __tablename__ = "approval_level_configs"

    __table_args__ = (
        CheckConstraint("level >= 1", name="ck_approval_level_configs_level"),
        CheckConstraint(
            "max_amount IS NULL OR max_amount >= 0",
            name="ck_approval_level_configs_max_amount",
        ),
    )

    level: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    level_name: Mapped[str] = mapped_column(String(200), nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    approver_email: Mapped[str] = mapped_column(String(320), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalLevelConfig level={self.level} "
            f"max={self.max_amount} active={self.is_active}>"
        )

    def to_dto(self) -> ApprovalLevelConfig:
        return ApprovalLevelConfig(
            level=self.level,
            level_name=self.level_name,
            approver_email=self.approver_email,
            max_amount=self.max_amount,
            is_active=self.is_active,
        )

    def apply(self, dto: ApprovalLevelConfig) -> None:
        """Copy mutable fields from a DTO onto this row."""
        self.level_name = dto.level_name
        self.max_amount = dto.max_amount
        self.approver_email = dto.approver_email
        self.is_active = dto.is_active

    @classmethod
    def from_dto(cls, dto: ApprovalLevelConfig) -> ApprovalLevelConfigModel:
        return cls(
            level=dto.level,
            level_name=dto.level_name,
            max_amount=dto.max_amount,
            approver_email=dto.approver_email,
            is_active=dto.is_active,
        )


class ApprovalRequestModel(Base):
    """Routing state of one approvable request.

    Contract:
        ``total_amount`` and ``max_level`` are fixed at initialization.
        ``current_level`` only moves forward, and only while pending.
        Status leaves ``pending`` exactly once.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "current_level >= 1 AND current_level <= max_level",
            name="ck_approval_requests_level_range",
        ),
        Index("ix_approval_requests_status", "status", "created_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_level: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestStatus.PENDING.value,
    )
    submitter_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    approval_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    artifact_refs: Mapped[list | None] = mapped_column(JSON, nullable=True)
    approved_destination: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} "
            f"level={self.current_level}/{self.max_level} status={self.status}>"
        )

    def to_dto(self) -> RequestApprovalState:
        return RequestApprovalState(
            request_id=self.request_id,
            total_amount=self.total_amount,
            current_level=self.current_level,
            max_level=self.max_level,
            status=RequestStatus(self.status),
            submitter_email=self.submitter_email,
            approval_comment=self.approval_comment,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            created_at=self.created_at,
            artifact_refs=tuple(
                ArtifactRef(drive_id=r["drive_id"], file_id=r["file_id"])
                for r in (self.artifact_refs or [])
            ),
            approved_destination=self.approved_destination,
        )


class ApprovalStepModel(Base):
    """One level's approval step.

    Contract:
        Created pending with its token; leaves pending exactly once through
        ``StepLedger.transition``.  Never deleted.
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_steps_valid_status",
        ),
        UniqueConstraint("request_id", "level", name="uq_approval_steps_request_level"),
        Index(
            "ix_approval_steps_one_pending",
            "request_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_approval_steps_approver_status", "approver_email", "status"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StepStatus.PENDING.value,
    )
    token: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    acted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.step_id} request={self.request_id} "
            f"level={self.level} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        return ApprovalStep(
            step_id=self.step_id,
            request_id=self.request_id,
            level=self.level,
            approver_email=self.approver_email,
            status=StepStatus(self.status),
            token=self.token,
            comment=self.comment,
            acted_at=self.acted_at,
            created_at=self.created_at,
        )
