"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used by
    the approval services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types, clock and exceptions.
    MUST NOT import approval_kernel.services, models, db or approval_services.

Invariants enforced:
    - Purity: engines never read the wall clock directly; time arrives via
      an injected Clock.
    - Decimal-only arithmetic for monetary totals and ceilings.
"""

from approval_engines.level_policy import resolve_required_levels
from approval_engines.links import ActionLinkBuilder, build_action_url
from approval_engines.token_codec import (
    TOKEN_TTL,
    DecodedToken,
    TokenCodec,
    TokenFormat,
    TokenVerification,
    decode_token,
    encode_token,
)

__all__ = [
    "ActionLinkBuilder",
    "DecodedToken",
    "TOKEN_TTL",
    "TokenCodec",
    "TokenFormat",
    "TokenVerification",
    "build_action_url",
    "decode_token",
    "encode_token",
    "resolve_required_levels",
]
