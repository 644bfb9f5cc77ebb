"""
approval_services.notifications -- Notifier port.

Responsibility:
    Declares the delivery collaborator the router's intents are handed to.
    Rendering and transport (mail, chat) live behind this protocol; the
    approval engine only decides *who* is told *what*.

Architecture position:
    Services -- outbound port.  Implementations are injected at process
    start; nothing in this package constructs a transport itself.

Failure modes:
    - Implementations may raise anything.  ``IntentDispatcher`` catches,
      logs ``notification_delivery_failed`` and moves on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from approval_kernel.domain.approval import (
    AdvanceIntent,
    ApprovalRequestedIntent,
    FinalizedIntent,
    RejectedIntent,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class ReminderItem:
    """One overdue step listed in a reminder digest."""

    request_id: UUID
    level: int
    total_amount: Decimal
    waiting_since: datetime | None
    approve_url: str
    reject_url: str
    submitter_email: str | None = None
    approver_email: str | None = None


@dataclass(frozen=True)
class ReminderNotice:
    """Digest of every overdue step waiting on one approver."""

    approver_email: str
    items: tuple[ReminderItem, ...]
    dashboard_url: str


@dataclass(frozen=True)
class SubmitterReminderNotice:
    """Digest of a submitter's requests still waiting on an approver.

    Each item names the approver currently holding it.  Item action URLs
    belong to the approver and are not shown to the submitter.
    """

    submitter_email: str
    items: tuple[ReminderItem, ...]
    dashboard_url: str


@runtime_checkable
class Notifier(Protocol):
    """Delivery channel for routing notices."""

    def send_approval_request(self, intent: ApprovalRequestedIntent) -> None:
        """Ask ``intent.approver_email`` to approve or reject a level."""
        ...

    def send_advance_notice(self, intent: AdvanceIntent) -> None:
        """Tell the submitter a level approved and who is next."""
        ...

    def send_finalized_notice(self, intent: FinalizedIntent) -> None:
        ...

    def send_rejected_notice(self, intent: RejectedIntent) -> None:
        ...

    def send_reminder(self, notice: ReminderNotice) -> None:
        ...

    def send_submitter_reminder(self, notice: SubmitterReminderNotice) -> None:
        """Tell a submitter which of their requests are still waiting, and on whom."""
        ...


class LoggingNotifier:
    """Notifier that only writes structured log lines.

    Used where no delivery channel is configured (local runs, tests that do
    not care about delivery).  Never raises.
    """

    def send_approval_request(self, intent: ApprovalRequestedIntent) -> None:
        logger.info(
            "approval_request_notice",
            extra={
                "request_id": str(intent.request_id),
                "approval_level": intent.level,
                "max_level": intent.max_level,
                "recipient": intent.approver_email,
            },
        )

    def send_advance_notice(self, intent: AdvanceIntent) -> None:
        logger.info(
            "approval_advance_notice",
            extra={
                "request_id": str(intent.request.request_id),
                "approved_level": intent.approved_level,
                "next_level": intent.request.level,
                "recipient": intent.request.submitter_email,
            },
        )

    def send_finalized_notice(self, intent: FinalizedIntent) -> None:
        logger.info(
            "approval_finalized_notice",
            extra={
                "request_id": str(intent.request_id),
                "recipient": intent.submitter_email,
            },
        )

    def send_rejected_notice(self, intent: RejectedIntent) -> None:
        logger.info(
            "approval_rejected_notice",
            extra={
                "request_id": str(intent.request_id),
                "approval_level": intent.level,
                "recipient": intent.submitter_email,
            },
        )

    def send_reminder(self, notice: ReminderNotice) -> None:
        logger.info(
            "approval_reminder_notice",
            extra={
                "recipient": notice.approver_email,
                "pending_count": len(notice.items),
            },
        )

    def send_submitter_reminder(self, notice: SubmitterReminderNotice) -> None:
        logger.info(
            "approval_submitter_reminder_notice",
            extra={
                "recipient": notice.submitter_email,
                "pending_count": len(notice.items),
            },
        )
