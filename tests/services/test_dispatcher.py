"""
Tests for IntentDispatcher and the shipped notifier.

Covers:
- Intent to notifier-call mapping
- Failures collected per call; later intents still delivered
- Submitter notices skipped when there is no submitter address
- Relocation skipped without an artifact mover
- LoggingNotifier writes one structured line per notice
- ApprovalGateway.from_settings wiring
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_config import RoutingSettings
from approval_kernel.domain.approval import (
    AdvanceIntent,
    ApprovalRequestedIntent,
    ArtifactRef,
    ArtifactRelocationIntent,
    FinalizedIntent,
    RejectedIntent,
)
from approval_services.dispatcher import IntentDispatcher
from approval_services.gateway import ApprovalGateway
from approval_services.notifications import LoggingNotifier, Notifier


def request_intent(request_id, level=2, submitter="buyer@example.com"):
    return ApprovalRequestedIntent(
        request_id=request_id,
        level=level,
        max_level=3,
        level_name=f"Level {level}",
        approver_email=f"approver{level}@example.com",
        approve_url="https://approvals.test/approve?token=t&action=approve",
        reject_url="https://approvals.test/approve?token=t&action=reject",
        total_amount=Decimal("50000"),
        submitter_email=submitter,
    )


class TestDispatch:

    def test_advance_notifies_next_approver_and_submitter(self, notifier):
        intent = AdvanceIntent(request=request_intent(uuid4()), approved_level=1)

        assert IntentDispatcher(notifier).dispatch([intent]) == []

        assert [kind for kind, _ in notifier.calls] == ["approval_request", "advance"]

    def test_advance_without_submitter_skips_notice(self, notifier):
        intent = AdvanceIntent(request=request_intent(uuid4(), submitter=None), approved_level=1)

        IntentDispatcher(notifier).dispatch([intent])

        assert [kind for kind, _ in notifier.calls] == ["approval_request"]

    def test_terminal_notices_without_submitter_skipped(self, notifier, captured_logs):
        request_id = uuid4()
        intents = [
            FinalizedIntent(request_id, None, Decimal("1"), None),
            RejectedIntent(request_id, None, Decimal("1"), 2, "Level 2"),
        ]

        assert IntentDispatcher(notifier).dispatch(intents) == []

        assert notifier.calls == []
        skipped = [r for r in captured_logs() if r["message"] == "submitter_notice_skipped"]
        assert [r["notice"] for r in skipped] == ["finalized", "rejected"]

    def test_terminal_notices_sent_to_submitter(self, notifier):
        request_id = uuid4()
        intents = [
            FinalizedIntent(request_id, "buyer@example.com", Decimal("1"), None),
            RejectedIntent(request_id, "buyer@example.com", Decimal("1"), 2, "Level 2"),
        ]

        IntentDispatcher(notifier).dispatch(intents)

        assert [kind for kind, _ in notifier.calls] == ["finalized", "rejected"]

    def test_failure_does_not_stop_later_intents(self, notifier):
        notifier.fail_on.add("approval_request")
        request_id = uuid4()
        intents = [
            request_intent(request_id),
            FinalizedIntent(request_id, "buyer@example.com", Decimal("1"), None),
        ]

        failures = IntentDispatcher(notifier).dispatch(intents)

        assert len(failures) == 1
        assert failures[0].code == "NOTIFICATION_DELIVERY_FAILED"
        assert len(notifier.of_kind("finalized")) == 1

    def test_relocation_skipped_without_mover(self, notifier, captured_logs):
        intent = ArtifactRelocationIntent(uuid4(), (ArtifactRef("d", "f"),), "Approved")

        assert IntentDispatcher(notifier).dispatch([intent]) == []
        assert any(r["message"] == "artifact_relocation_skipped" for r in captured_logs())

    def test_unknown_intent_rejected(self, notifier):
        with pytest.raises(TypeError):
            IntentDispatcher(notifier).dispatch([object()])


class TestLoggingNotifier:

    def test_satisfies_protocol(self):
        assert isinstance(LoggingNotifier(), Notifier)

    def test_logs_request_without_links(self, captured_logs):
        intent = request_intent(uuid4())

        IntentDispatcher(LoggingNotifier()).dispatch([intent])

        (record,) = [r for r in captured_logs() if r["message"] == "approval_request_notice"]
        assert record["recipient"] == "approver2@example.com"
        assert "token=" not in str(record)


class TestFromSettings:

    def test_wires_gateway(self, database, gateway_levels, notifier):
        settings = RoutingSettings(secret="another-secret", app_base_url="https://x.test")
        gateway = ApprovalGateway.from_settings(settings, notifier, database=database)

        init = gateway.submit_request(uuid4(), Decimal("100"))

        assert init.approve_url.startswith("https://x.test/approve?token=")
        assert gateway.verify_approval_token(init.token).valid
