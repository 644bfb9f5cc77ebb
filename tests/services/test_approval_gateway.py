"""
Tests for ApprovalGateway -- transactional entry points and link handling.

Covers:
- initialize_approval() / submit_request(): commit then notify
- handle_link_action(): every ActionOutcome
- process_approval_action(): success and classified failures
- Best-effort side effects: delivery failures never change results
- act_as_approver(): case-insensitive approver check, admin override
- get_approval_status() / list_pending_for_approver()
- send_pending_reminders(): grouping per approver and per submitter,
  expired tokens skipped
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ApprovalRequestedIntent,
    ArtifactRef,
    ArtifactRelocationIntent,
    Reject,
    RejectedIntent,
    RequestStatus,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyProcessedError,
    ApprovalLevelsUnconfiguredError,
    ArtifactMoveError,
    NotificationDeliveryError,
    UnauthorizedApproverError,
)
from approval_kernel.services.request_store import ApprovalRequestStore
from approval_services.approval_router import ApprovalRouter
from approval_services.dispatcher import IntentDispatcher
from approval_services.results import ActionOutcome


@pytest.fixture
def submit(gateway, gateway_levels):
    def _submit(total="5000", **kwargs):
        kwargs.setdefault("submitter_email", "buyer@example.com")
        return gateway.submit_request(uuid4(), Decimal(total), **kwargs)

    return _submit


def request_state(database, request_id):
    with database.session_scope() as s:
        return ApprovalRequestStore(s).get(request_id)


# =========================================================================
# Initialization
# =========================================================================


class TestInitialization:

    def test_submit_notifies_first_approver(self, submit, notifier):
        init = submit("5000")

        (intent,) = notifier.of_kind("approval_request")
        assert isinstance(intent, ApprovalRequestedIntent)
        assert intent.request_id == init.request_id
        assert intent.approver_email == "approver1@example.com"

    def test_state_committed(self, submit, database):
        init = submit("50000")
        state = request_state(database, init.request_id)
        assert (state.current_level, state.max_level) == (1, 3)

    def test_submit_unconfigured_raises(self, gateway, notifier):
        with pytest.raises(ApprovalLevelsUnconfiguredError):
            gateway.submit_request(uuid4(), Decimal("100"))
        assert notifier.calls == []

    def test_initialize_unconfigured_returns_none(self, gateway):
        assert gateway.initialize_approval(uuid4(), Decimal("100")) is None

    def test_notification_failure_keeps_request(self, submit, notifier, database, captured_logs):
        notifier.fail_on.add("approval_request")

        init = submit("5000")

        assert request_state(database, init.request_id).status == RequestStatus.PENDING
        assert any(
            r["message"] == "notification_delivery_failed" for r in captured_logs()
        )


# =========================================================================
# handle_link_action()
# =========================================================================


class TestLinkAction:

    def test_advanced(self, submit, gateway, notifier):
        init = submit("5000")

        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.ADVANCED
        assert result.success
        assert (result.request_id, result.level) == (init.request_id, 1)
        assert result.next_level == 2
        assert result.next_level_name == "Level 2 approver"
        assert [i.approver_email for i in notifier.of_kind("approval_request")] == [
            "approver1@example.com",
            "approver2@example.com",
        ]
        assert len(notifier.of_kind("advance")) == 1

    def test_finalized(self, submit, gateway, notifier):
        init = submit("500")

        result = gateway.handle_link_action(init.token, "approve", comment="ok")

        assert result.outcome == ActionOutcome.FINALIZED
        assert result.status == RequestStatus.APPROVED
        (finalized,) = notifier.of_kind("finalized")
        assert finalized.comment == "ok"

    def test_rejected_is_terminal_outcome(self, submit, gateway, notifier):
        init = submit("5000")

        result = gateway.handle_link_action(init.token, "reject", comment="no")

        assert result.outcome == ActionOutcome.FINALIZED
        assert result.status == RequestStatus.REJECTED
        assert result.message == "The request has been rejected."
        assert len(notifier.of_kind("rejected")) == 1

    def test_second_use_already_processed(self, submit, gateway):
        init = submit("5000")
        gateway.handle_link_action(init.token, "approve")

        result = gateway.handle_link_action(init.token, "reject")

        assert result.outcome == ActionOutcome.ALREADY_PROCESSED
        assert not result.success

    def test_link_of_finalized_request_already_processed(self, submit, gateway):
        init = submit("500")
        gateway.handle_link_action(init.token, "approve")

        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.ALREADY_PROCESSED
        assert result.request_id == init.request_id

    @pytest.mark.parametrize("token", ["", "garbage", "not base64 !!"])
    def test_malformed_token_invalid(self, submit, gateway, token):
        submit()
        assert gateway.handle_link_action(token, "approve").outcome == ActionOutcome.INVALID_LINK

    def test_tampered_token_invalid(self, submit, gateway, database):
        init = submit("5000")
        tampered = init.token[:-4] + ("AAAA" if not init.token.endswith("AAAA") else "BBBB")

        result = gateway.handle_link_action(tampered, "approve")

        assert result.outcome == ActionOutcome.INVALID_LINK
        assert request_state(database, init.request_id).current_level == 1

    def test_signed_token_without_step_invalid(self, submit, gateway, codec):
        submit()
        orphan = codec.issue(uuid4(), 1)
        assert gateway.handle_link_action(orphan, "approve").outcome == ActionOutcome.INVALID_LINK

    def test_expired(self, submit, gateway, deterministic_clock, database):
        init = submit("5000")
        deterministic_clock.advance_days(8)

        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.EXPIRED_LINK
        assert (result.request_id, result.level) == (init.request_id, 1)
        assert request_state(database, init.request_id).current_level == 1

    def test_unknown_action_error(self, submit, gateway):
        init = submit()
        result = gateway.handle_link_action(init.token, "escalate")
        assert result.outcome == ActionOutcome.ERROR

    def test_unexpected_failure_error(self, submit, gateway, monkeypatch):
        init = submit()

        def boom(self, *args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(ApprovalRouter, "act", boom)
        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.ERROR
        assert result.request_id == init.request_id

    def test_token_not_logged(self, submit, gateway, captured_logs):
        init = submit()
        gateway.handle_link_action(init.token, "approve")
        assert all(init.token not in str(r) for r in captured_logs())


# =========================================================================
# process_approval_action()
# =========================================================================


class TestProcessApprovalAction:

    def _pending_step_id(self, gateway, init):
        return gateway.get_approval_status(init.token).step.step_id

    def test_success(self, submit, gateway):
        init = submit("5000")
        step_id = self._pending_step_id(gateway, init)

        result = gateway.process_approval_action(init.request_id, step_id, "approve")

        assert result.success
        assert not result.is_finalized
        assert result.next_level == 2

    def test_accepts_action_value(self, submit, gateway):
        init = submit("5000")
        step_id = self._pending_step_id(gateway, init)

        result = gateway.process_approval_action(init.request_id, step_id, Reject("no"))

        assert result.success
        assert result.is_finalized

    def test_invalid_action(self, submit, gateway):
        init = submit()
        step_id = self._pending_step_id(gateway, init)

        result = gateway.process_approval_action(init.request_id, step_id, "maybe")

        assert not result.success
        assert result.error_code == "INVALID_ACTION"
        assert not result.retryable

    def test_unknown_request(self, gateway, gateway_levels):
        result = gateway.process_approval_action(uuid4(), uuid4(), "approve")
        assert result.error_code == "APPROVAL_REQUEST_NOT_FOUND"

    def test_already_acted(self, submit, gateway):
        init = submit("5000")
        step_id = self._pending_step_id(gateway, init)
        gateway.process_approval_action(init.request_id, step_id, "approve")

        result = gateway.process_approval_action(init.request_id, step_id, "approve")

        assert not result.success
        assert result.error_code == "STEP_ALREADY_ACTED"

    def test_unexpected_failure_retryable(self, submit, gateway, monkeypatch):
        init = submit()
        step_id = self._pending_step_id(gateway, init)

        def boom(self, *args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(ApprovalRouter, "act", boom)
        result = gateway.process_approval_action(init.request_id, step_id, "approve")

        assert not result.success
        assert result.retryable
        assert result.error == "Failed to process approval"


# =========================================================================
# Side effects
# =========================================================================


class TestSideEffects:

    def test_failed_advance_notice_keeps_transition(self, submit, gateway, notifier, database):
        init = submit("5000")
        notifier.fail_on.update({"approval_request", "advance"})

        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.ADVANCED
        assert request_state(database, init.request_id).current_level == 2

    def test_artifacts_moved_on_final_approval(self, submit, gateway, artifact_mover):
        refs = (ArtifactRef("drive-1", "file-1"), ArtifactRef("drive-1", "file-2"))
        init = submit("500", artifact_refs=refs, approved_destination="Approved")

        gateway.handle_link_action(init.token, "approve")

        assert artifact_mover.moves == [(refs, "Approved")]

    def test_artifacts_not_moved_on_rejection(self, submit, gateway, artifact_mover):
        refs = (ArtifactRef("drive-1", "file-1"),)
        init = submit("500", artifact_refs=refs, approved_destination="Approved")

        gateway.handle_link_action(init.token, "reject")

        assert artifact_mover.moves == []

    def test_failed_move_keeps_approval(self, submit, gateway, artifact_mover, database):
        artifact_mover.fail = True
        refs = (ArtifactRef("drive-1", "file-1"),)
        init = submit("500", artifact_refs=refs, approved_destination="Approved")

        result = gateway.handle_link_action(init.token, "approve")

        assert result.outcome == ActionOutcome.FINALIZED
        assert request_state(database, init.request_id).status == RequestStatus.APPROVED

    def test_dispatcher_returns_typed_failures(self, notifier, artifact_mover):
        notifier.fail_on.add("rejected")
        artifact_mover.fail = True
        request_id = uuid4()
        failures = IntentDispatcher(notifier, artifact_mover).dispatch([
            RejectedIntent(request_id, "buyer@example.com", Decimal("1"), 1, "L1"),
            ArtifactRelocationIntent(request_id, (ArtifactRef("d", "f"),), "Approved"),
        ])

        assert [type(f) for f in failures] == [NotificationDeliveryError, ArtifactMoveError]
        assert isinstance(failures[0].__cause__, ConnectionError)


# =========================================================================
# act_as_approver()
# =========================================================================


class TestActAsApprover:

    def test_assigned_approver_case_insensitive(self, submit, gateway):
        init = submit("5000")

        outcome = gateway.act_as_approver(init.request_id, "Approver1@Example.COM", "approve")

        assert outcome.next_level == 2

    def test_other_user_refused(self, submit, gateway, database):
        init = submit("5000")

        with pytest.raises(UnauthorizedApproverError):
            gateway.act_as_approver(init.request_id, "intruder@example.com", "approve")
        assert request_state(database, init.request_id).current_level == 1

    def test_admin_override_logged(self, submit, gateway, captured_logs):
        init = submit("500")

        outcome = gateway.act_as_approver(
            init.request_id, "admin@example.com", "approve", is_admin=True,
        )

        assert outcome.is_finalized
        assert any(r["message"] == "approval_admin_override" for r in captured_logs())

    def test_terminal_request_refused(self, submit, gateway):
        init = submit("500")
        gateway.act_as_approver(init.request_id, "approver1@example.com", "reject")

        with pytest.raises(ApprovalAlreadyProcessedError):
            gateway.act_as_approver(init.request_id, "approver1@example.com", "approve")


# =========================================================================
# Queries
# =========================================================================


class TestQueries:

    def test_status_for_fresh_link(self, submit, gateway):
        init = submit("50000")

        view = gateway.get_approval_status(init.token)

        assert view.token_valid
        assert view.can_act
        assert view.request.max_level == 3
        assert view.step.level == 1
        assert view.level_names == {
            1: "Level 1 approver", 2: "Level 2 approver", 3: "Level 3 approver",
        }

    def test_status_after_action(self, submit, gateway):
        init = submit("50000")
        gateway.handle_link_action(init.token, "approve")

        view = gateway.get_approval_status(init.token)

        assert not view.can_act
        assert [s.level for s in view.steps] == [1, 2]

    def test_status_for_garbage(self, gateway):
        view = gateway.get_approval_status("garbage")
        assert not view.token_valid
        assert view.request is None

    def test_status_for_expired_link(self, submit, gateway, deterministic_clock):
        init = submit()
        deterministic_clock.advance_days(8)

        view = gateway.get_approval_status(init.token)

        assert view.expired
        assert not view.can_act
        assert view.request_id == init.request_id

    def test_verify_approval_token(self, submit, gateway):
        init = submit()
        verification = gateway.verify_approval_token(init.token)
        assert verification.valid
        assert verification.request_id == init.request_id

    def test_pending_for_approver(self, submit, gateway):
        first = submit("5000")
        submit("5000")
        gateway.handle_link_action(first.token, "approve")

        inbox_one = gateway.list_pending_for_approver("APPROVER1@example.com")
        inbox_two = gateway.list_pending_for_approver("approver2@example.com")

        assert len(inbox_one) == 1
        (item,) = inbox_two
        assert item.request.request_id == first.request_id
        assert item.level_name == "Level 2 approver"
        assert "action=approve" in item.approve_url


# =========================================================================
# send_pending_reminders()
# =========================================================================


class TestReminders:

    def test_groups_overdue_steps_per_approver(self, submit, gateway, notifier, deterministic_clock):
        submit("5000")
        submit("500")
        deterministic_clock.advance_hours(25)
        submit("5000")

        report = gateway.send_pending_reminders(min_age_hours=24)

        assert report.pending_steps == 2
        assert report.reminded_approvers == 1
        (notice,) = notifier.of_kind("reminder")
        assert notice.approver_email == "approver1@example.com"
        assert len(notice.items) == 2
        assert notice.dashboard_url == "https://approvals.test/dashboard"

    def test_nothing_overdue(self, submit, gateway, notifier):
        submit()
        report = gateway.send_pending_reminders()
        assert report.pending_steps == 0
        assert notifier.of_kind("reminder") == []

    def test_expired_tokens_skipped(self, submit, gateway, notifier, deterministic_clock):
        submit()
        deterministic_clock.advance_days(8)

        report = gateway.send_pending_reminders()

        assert report.skipped_expired == 1
        assert report.reminded_approvers == 0
        assert notifier.of_kind("reminder") == []

    def test_reminders_leave_state_untouched(self, submit, gateway, deterministic_clock, database):
        init = submit("5000")
        deterministic_clock.advance_hours(30)

        gateway.send_pending_reminders()

        state = request_state(database, init.request_id)
        assert (state.status, state.current_level) == (RequestStatus.PENDING, 1)

    def test_failed_reminder_reported(self, submit, gateway, notifier, deterministic_clock):
        submit()
        deterministic_clock.advance_hours(30)
        notifier.fail_on.add("reminder")

        report = gateway.send_pending_reminders()

        assert report.reminded_approvers == 0
        assert len(report.failures) == 1

    def test_submitter_digest_names_waiting_approver(
        self, submit, gateway, notifier, deterministic_clock,
    ):
        first = submit("5000", submitter_email="Buyer@Example.com")
        second = submit("50000", submitter_email="buyer@example.com")
        submit("500", submitter_email="other@example.com")
        gateway.handle_link_action(second.token, "approve")
        deterministic_clock.advance_hours(30)

        report = gateway.send_pending_reminders()

        assert report.reminded_submitters == 2
        digests = {n.submitter_email: n for n in notifier.of_kind("submitter_reminder")}
        assert set(digests) == {"Buyer@Example.com", "other@example.com"}
        buyer = digests["Buyer@Example.com"]
        assert {(i.request_id, i.approver_email) for i in buyer.items} == {
            (first.request_id, "approver1@example.com"),
            (second.request_id, "approver2@example.com"),
        }
        assert buyer.dashboard_url == "https://approvals.test/dashboard"

    def test_no_submitter_digest_without_address(self, submit, gateway, notifier, deterministic_clock):
        submit(submitter_email=None)
        deterministic_clock.advance_hours(30)

        report = gateway.send_pending_reminders()

        assert report.reminded_approvers == 1
        assert report.reminded_submitters == 0
        assert notifier.of_kind("submitter_reminder") == []

    def test_failed_submitter_digest_reported(self, submit, gateway, notifier, deterministic_clock):
        submit()
        deterministic_clock.advance_hours(30)
        notifier.fail_on.add("submitter_reminder")

        report = gateway.send_pending_reminders()

        assert report.reminded_approvers == 1
        assert report.reminded_submitters == 0
        (failure,) = report.failures
        assert failure.notice == "submitter_reminder"
        assert failure.recipient == "buyer@example.com"
