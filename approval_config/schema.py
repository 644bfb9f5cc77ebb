"""
Runtime settings schema (``approval_config.schema``).

Frozen dataclasses only; parsing lives in ``approval_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_APP_BASE_URL = "http://localhost:3000"
DEFAULT_DATABASE_URL = "sqlite:///approval_routing.db"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class RoutingSettings:
    """Process-wide settings, read once at start-up.

    ``secret`` signs approval tokens.  Rotating it invalidates every
    outstanding link.
    """

    secret: str
    app_base_url: str = DEFAULT_APP_BASE_URL
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = DEFAULT_LOG_LEVEL

    def __repr__(self) -> str:
        return (
            f"RoutingSettings(app_base_url={self.app_base_url!r}, "
            f"database_url={self.database_url!r}, log_level={self.log_level!r}, "
            "secret=<redacted>)"
        )
