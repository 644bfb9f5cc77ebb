"""
Pytest fixtures for the approval routing test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- DeterministicClock, token codec, link builder
- Kernel services bound to a test session, and the approval router
- A gateway wired to recording collaborators
- Captured structured logs

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL).  Tables are
  dropped and recreated around each test.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO

import pytest

from approval_engines.links import ActionLinkBuilder
from approval_engines.token_codec import TokenCodec
from approval_kernel.db.engine import Database
from approval_kernel.domain.approval import ApprovalLevelConfig
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.level_config_service import LevelConfigService
from approval_kernel.services.request_store import ApprovalRequestStore
from approval_kernel.services.step_ledger import StepLedger
from approval_services.approval_router import ApprovalRouter
from approval_services.dispatcher import IntentDispatcher
from approval_services.gateway import ApprovalGateway

TEST_SECRET = "test-approval-secret"
TEST_BASE_URL = "https://approvals.test"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, gateway):
            gateway.initialize_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_initialized" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database(tmp_path):
    """A Database with freshly created tables."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'approvals.db'}"
    db = Database.from_url(url)
    db.drop_tables()
    db.create_tables()
    yield db
    db.drop_tables()
    db.dispose()


@pytest.fixture
def session(database):
    """A session whose work is rolled back after the test."""
    s = database.session()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock, codec, links
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def codec(deterministic_clock):
    return TokenCodec(TEST_SECRET, clock=deterministic_clock)


@pytest.fixture
def links():
    return ActionLinkBuilder(TEST_BASE_URL)


# =============================================================================
# Level ladders
# =============================================================================


def _make_level(
    level: int,
    max_amount: str | None,
    approver_email: str | None = None,
    level_name: str | None = None,
    is_active: bool = True,
) -> ApprovalLevelConfig:
    return ApprovalLevelConfig(
        level=level,
        level_name=level_name or f"Level {level} approver",
        approver_email=approver_email or f"approver{level}@example.com",
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        is_active=is_active,
    )


@pytest.fixture
def make_level():
    """Factory fixture building ApprovalLevelConfig with string ceilings."""
    return _make_level


@pytest.fixture
def standard_levels():
    """[{1, max 1000}, {2, max 10000}, {3, unlimited}]."""
    return (
        _make_level(1, "1000"),
        _make_level(2, "10000"),
        _make_level(3, None),
    )


# =============================================================================
# Kernel services and router on the test session
# =============================================================================


@pytest.fixture
def level_service(session):
    return LevelConfigService(session)


@pytest.fixture
def request_store(session):
    return ApprovalRequestStore(session)


@pytest.fixture
def step_ledger(session, codec, deterministic_clock):
    return StepLedger(session, codec, deterministic_clock)


@pytest.fixture
def seeded_levels(level_service, standard_levels):
    level_service.seed_levels(standard_levels)
    return standard_levels


@pytest.fixture
def router(level_service, request_store, step_ledger, links, deterministic_clock):
    return ApprovalRouter(
        level_service, request_store, step_ledger, links, deterministic_clock,
    )


# =============================================================================
# Recording collaborators and gateway
# =============================================================================


class RecordingNotifier:
    """Notifier that records calls and can be told to fail on some of them."""

    def __init__(self, fail_on: set[str] | None = None):
        self.calls: list[tuple[str, object]] = []
        self.fail_on = set(fail_on or ())

    def _record(self, kind: str, payload: object) -> None:
        self.calls.append((kind, payload))
        if kind in self.fail_on:
            raise ConnectionError(f"mail relay refused {kind}")

    def send_approval_request(self, intent):
        self._record("approval_request", intent)

    def send_advance_notice(self, intent):
        self._record("advance", intent)

    def send_finalized_notice(self, intent):
        self._record("finalized", intent)

    def send_rejected_notice(self, intent):
        self._record("rejected", intent)

    def send_reminder(self, notice):
        self._record("reminder", notice)

    def send_submitter_reminder(self, notice):
        self._record("submitter_reminder", notice)

    def of_kind(self, kind: str) -> list:
        return [payload for k, payload in self.calls if k == kind]


class RecordingArtifactMover:
    def __init__(self, fail: bool = False):
        self.moves: list[tuple[tuple, str]] = []
        self.fail = fail

    def move_to_approved_location(self, refs, destination):
        self.moves.append((tuple(refs), destination))
        if self.fail:
            raise OSError("drive unavailable")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def artifact_mover():
    return RecordingArtifactMover()


@pytest.fixture
def gateway(database, codec, links, notifier, artifact_mover, deterministic_clock):
    return ApprovalGateway(
        database=database,
        codec=codec,
        links=links,
        dispatcher=IntentDispatcher(notifier, artifact_mover),
        clock=deterministic_clock,
    )


@pytest.fixture
def gateway_levels(database, standard_levels):
    """Commit the standard ladder so gateway transactions can see it."""
    with database.session_scope() as s:
        LevelConfigService(s).seed_levels(standard_levels)
    return standard_levels
