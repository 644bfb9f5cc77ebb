"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Reads runtime settings and the seed approval ladder from YAML, overlays
environment variables, and returns frozen values.

Architecture position
---------------------
**Config layer**.  Depends on kernel domain types only (to build
``ApprovalLevelConfig``).  Called once at process start by the host; no
service reads configuration on its own.

Invariants enforced
-------------------
* No silent default for the signing secret: a missing ``APPROVAL_SECRET``
  raises ``ValueError``.
* Environment variables take precedence over the YAML file, which takes
  precedence over the schema defaults.
* Seed ladders are validated with ``validate_level_ladder`` before they
  are returned.
* ``compute_checksum`` is deterministic for identical data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required level keys  -> ``KeyError`` propagates.
* Bad ladder shape  -> ``InvalidLevelConfigurationError``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    DEFAULT_APP_BASE_URL,
    DEFAULT_DATABASE_URL,
    DEFAULT_LOG_LEVEL,
    RoutingSettings,
)
from approval_kernel.domain.approval import ApprovalLevelConfig
from approval_kernel.domain.levels import validate_level_ladder
from approval_kernel.utils.hashing import hash_payload

_logger = logging.getLogger("approval_kernel.config")

ENV_SECRET = "APPROVAL_SECRET"
ENV_APP_BASE_URL = "APP_BASE_URL"
ENV_DATABASE_URL = "DATABASE_URL"
ENV_LOG_LEVEL = "APPROVAL_LOG_LEVEL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; an empty file yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_amount(value: Any) -> Decimal | None:
    """Parse a ceiling.  ``None`` means unlimited.

    Floats are rejected; write ceilings as strings or integers in YAML.
    """
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"Ceiling {value!r} must be written as a string or integer")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse amount from {value!r}") from exc


def parse_flag(value: Any, field: str) -> bool:
    """Parse a YAML boolean.  Quoted strings such as ``"false"`` are rejected."""
    if not isinstance(value, bool):
        raise ValueError(f"{field} must be true or false, got {value!r}")
    return value


def parse_level(data: dict[str, Any]) -> ApprovalLevelConfig:
    """Parse one ``levels:`` entry."""
    return ApprovalLevelConfig(
        level=int(data["level"]),
        level_name=str(data["level_name"]),
        approver_email=str(data["approver_email"]).strip(),
        max_amount=parse_amount(data.get("max_amount")),
        is_active=parse_flag(data.get("is_active", True), "is_active"),
    )


def load_level_seeds(path: Path) -> tuple[ApprovalLevelConfig, ...]:
    """Read and validate the ``levels:`` list of a routing YAML file."""
    data = load_yaml_file(Path(path))
    levels = tuple(
        sorted((parse_level(item) for item in data.get("levels", [])), key=lambda c: c.level)
    )
    validate_level_ladder(levels)
    _logger.info(
        "level_seeds_loaded",
        extra={
            "path": str(path),
            "count": len(levels),
            "checksum": ladder_checksum(levels),
        },
    )
    return levels


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RoutingSettings:
    """Build ``RoutingSettings`` from an optional YAML file and the environment.

    Raises:
        ValueError: if no signing secret is configured.
    """
    env = os.environ if environ is None else environ
    file_data = load_yaml_file(Path(path)) if path is not None else {}

    secret = env.get(ENV_SECRET) or file_data.get("secret")
    if not secret:
        raise ValueError(
            f"{ENV_SECRET} is not set; approval links cannot be signed without it"
        )

    return RoutingSettings(
        secret=str(secret),
        app_base_url=str(
            env.get(ENV_APP_BASE_URL) or file_data.get("app_base_url") or DEFAULT_APP_BASE_URL
        ),
        database_url=str(
            env.get(ENV_DATABASE_URL) or file_data.get("database_url") or DEFAULT_DATABASE_URL
        ),
        log_level=str(
            env.get(ENV_LOG_LEVEL) or file_data.get("log_level") or DEFAULT_LOG_LEVEL
        ).upper(),
    )


def _level_dict(config: ApprovalLevelConfig) -> dict[str, Any]:
    return {
        "level": config.level,
        "level_name": config.level_name,
        "approver_email": config.approver_email,
        "max_amount": config.max_amount,
        "is_active": config.is_active,
    }


def compute_checksum(data: Any) -> str:
    """SHA-256 of the canonical JSON form of ``data``.

    Decimals are normalized first, so ``1000`` and ``1000.00`` agree.
    """
    return hash_payload(data)


def ladder_checksum(levels: tuple[ApprovalLevelConfig, ...]) -> str:
    """Checksum identifying a level ladder in audit logs."""
    return compute_checksum({"levels": [_level_dict(c) for c in levels]})
