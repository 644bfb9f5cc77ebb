"""Stateful kernel services.  Each takes a caller-owned ``Session`` and flushes, never commits."""

from approval_kernel.services.level_config_service import LevelConfigService
from approval_kernel.services.request_store import ApprovalRequestStore
from approval_kernel.services.step_ledger import StepLedger

__all__ = [
    "ApprovalRequestStore",
    "LevelConfigService",
    "StepLedger",
]
