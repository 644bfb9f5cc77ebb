"""
approval_engines.token_codec -- Signed single-purpose approval tokens.

Responsibility:
    Issue and verify compact capability strings that authorize acting on
    exactly one (request, level) pair until they go stale.  A token is
    derived and self-verifying; nothing about it is looked up.

Architecture position:
    Engines -- pure calculation layer.  Time comes from an injected Clock;
    the HMAC secret is injected at construction.

Wire format:
    base64url( "<request_id>:<level>:<issued_ms>:<hmac_hex>" ), unpadded.
    The legacy format ``"<request_id>:<issued_ms>:<hmac_hex>"`` carries no
    level and is read as level 1.  Both are decoded by ``decode_token`` and
    signed by the same ``TokenCodec.sign``.

Invariants enforced:
    - The signature is compared (constant time) before any field is
      interpreted, so a forged token can never learn whether it would have
      been expired.
    - Expiry is the only invalidation path.  There is no revocation list;
      a token for an earlier level simply finds its step no longer pending.

Failure modes:
    - ``verify`` never raises; it returns a ``TokenVerification``.
    - ``decode_token`` raises ``InvalidTokenError`` on malformed input.
    - ``TokenVerification.raise_for_status`` raises ``InvalidTokenError``
      or ``ExpiredTokenError``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from uuid import UUID

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import ExpiredTokenError, InvalidTokenError

TOKEN_TTL = timedelta(days=7)

_SEPARATOR = ":"
_TOKEN_ALPHABET = re.compile(r"^[A-Za-z0-9_-]+$")
_SIGNATURE_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class TokenFormat(str, Enum):
    """Payload layout of a decoded token."""

    LEVELED = "leveled"
    LEGACY = "legacy"


@dataclass(frozen=True)
class DecodedToken:
    """Structurally split token.  Fields are raw until the signature matches."""

    format: TokenFormat
    payload: str
    signature: str
    raw_request_id: str
    raw_level: str | None
    raw_issued_ms: str


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of ``TokenCodec.verify``.

    ``request_id`` and ``level`` are populated for valid tokens and for
    expired tokens with a genuine signature, so an expiry message can name
    the request.
    """

    valid: bool
    request_id: UUID | None = None
    level: int | None = None
    expired: bool = False
    format: TokenFormat | None = None

    def raise_for_status(self) -> None:
        if self.valid:
            return
        if self.expired and self.request_id is not None and self.level is not None:
            raise ExpiredTokenError(self.request_id, self.level)
        raise InvalidTokenError()


_INVALID = TokenVerification(valid=False)


def encode_token(payload: str, signature: str) -> str:
    """Encode ``payload:signature`` as unpadded base64url."""
    raw = f"{payload}{_SEPARATOR}{signature}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_token(token: str) -> DecodedToken:
    """Split a token into its versioned structure without trusting it.

    Raises:
        InvalidTokenError: if the token is not canonical base64url or does
            not have three (legacy) or four (leveled) fields.
    """
    if not token or not _TOKEN_ALPHABET.match(token):
        raise InvalidTokenError("Token is not base64url")

    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        decoded = raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise InvalidTokenError("Token cannot be decoded") from exc

    # Non-canonical encodings would let two strings carry one signature
    if base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=") != token:
        raise InvalidTokenError("Token is not canonically encoded")

    parts = decoded.split(_SEPARATOR)
    if len(parts) == 4:
        request_id, level, issued_ms, signature = parts
        return DecodedToken(
            format=TokenFormat.LEVELED,
            payload=_SEPARATOR.join(parts[:3]),
            signature=signature,
            raw_request_id=request_id,
            raw_level=level,
            raw_issued_ms=issued_ms,
        )
    if len(parts) == 3:
        request_id, issued_ms, signature = parts
        return DecodedToken(
            format=TokenFormat.LEGACY,
            payload=_SEPARATOR.join(parts[:2]),
            signature=signature,
            raw_request_id=request_id,
            raw_level=None,
            raw_issued_ms=issued_ms,
        )
    raise InvalidTokenError(f"Token has {len(parts)} fields")


class TokenCodec:
    """Issues and verifies approval tokens with an HMAC-SHA256 secret."""

    def __init__(
        self,
        secret: str | bytes,
        clock: Clock | None = None,
        ttl: timedelta = TOKEN_TTL,
    ) -> None:
        if not secret:
            raise ValueError("TokenCodec requires a non-empty secret")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self._clock = clock or SystemClock()
        self._ttl_ms = int(ttl.total_seconds() * 1000)

    def sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, request_id: UUID, level: int) -> str:
        """Mint a token for ``(request_id, level)`` stamped with the current time."""
        if level < 1:
            raise ValueError(f"Approval level must be >= 1, got {level}")
        payload = _SEPARATOR.join(
            (str(request_id), str(level), str(self._clock.now_millis()))
        )
        return encode_token(payload, self.sign(payload))

    def verify(self, token: str) -> TokenVerification:
        try:
            decoded = decode_token(token)
        except InvalidTokenError:
            return _INVALID

        if not _SIGNATURE_PATTERN.match(decoded.signature):
            return _INVALID
        if not hmac.compare_digest(decoded.signature, self.sign(decoded.payload)):
            return _INVALID

        try:
            request_id = UUID(decoded.raw_request_id)
            level = int(decoded.raw_level) if decoded.raw_level is not None else 1
            issued_ms = int(decoded.raw_issued_ms)
        except ValueError:
            return _INVALID
        if level < 1:
            return _INVALID

        if self._clock.now_millis() - issued_ms > self._ttl_ms:
            return TokenVerification(
                valid=False,
                request_id=request_id,
                level=level,
                expired=True,
                format=decoded.format,
            )

        return TokenVerification(
            valid=True,
            request_id=request_id,
            level=level,
            format=decoded.format,
        )
