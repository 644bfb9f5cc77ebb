"""
Fingerprints for level ladders and capability tokens.

Ladder checksums identify which configuration was loaded or seeded; token
fingerprints let a log line name a token without making it usable.  Both are
SHA-256 and stable across processes.
"""

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

TOKEN_FINGERPRINT_LENGTH = 16


def _canonical_value(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 1000 and 1000.00 are the same ceiling
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Cannot fingerprint a {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted-key, whitespace-free JSON with Decimal/datetime/UUID rendered as text."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def hash_payload(payload: Any) -> str:
    """Hex SHA-256 of ``canonicalize_json(payload)``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def token_fingerprint(token: str) -> str:
    """Log-safe identifier for a token: a prefix of its SHA-256."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:TOKEN_FINGERPRINT_LENGTH]
