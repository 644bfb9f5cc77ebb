"""
approval_engines.links -- Action link construction.

The ``action`` query parameter is a hint for the landing page only.  The
action actually recorded is whatever the approver submits; the engine never
treats the hint as authorization.
"""

from __future__ import annotations

from urllib.parse import urlencode

APPROVAL_PATH = "/approve"


def build_action_url(base_url: str, token: str, action: str) -> str:
    """Return ``<base_url>/approve?token=...&action=...``."""
    query = urlencode({"token": token, "action": action})
    return f"{base_url.rstrip('/')}{APPROVAL_PATH}?{query}"


class ActionLinkBuilder:
    """Builds the approve/reject link pair for one token."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url

    def approve_url(self, token: str) -> str:
        return build_action_url(self._base_url, token, "approve")

    def reject_url(self, token: str) -> str:
        return build_action_url(self._base_url, token, "reject")

    def dashboard_url(self) -> str:
        return f"{self._base_url.rstrip('/')}/dashboard"
