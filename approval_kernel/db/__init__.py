"""Database infrastructure for the approval kernel."""

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.engine import Database

__all__ = [
    "Base",
    "Database",
    "UUIDString",
]
