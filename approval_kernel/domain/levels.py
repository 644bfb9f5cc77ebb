"""
Approval level ladder rules (``approval_kernel.domain.levels``).

Pure functions over ``ApprovalLevelConfig``.  The ladder is validated when
it is written so that resolution never has to paper over a bad shape.

Invariants enforced
-------------------
* Unique levels >= 1 with a plausible approver address.
* Non-negative ceilings, strictly increasing across the active ladder.
* An unlimited ceiling (``max_amount is None``) only on the last active
  level; anywhere else it would strand every level after it.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_kernel.domain.approval import ApprovalLevelConfig
from approval_kernel.exceptions import InvalidLevelConfigurationError


def active_levels_in_order(
    configs: Iterable[ApprovalLevelConfig],
) -> tuple[ApprovalLevelConfig, ...]:
    """Filter to active configs and sort ascending by level."""
    return tuple(sorted((c for c in configs if c.is_active), key=lambda c: c.level))


def find_level(
    levels: Iterable[ApprovalLevelConfig],
    level: int,
) -> ApprovalLevelConfig | None:
    """Return the config for ``level`` or ``None``."""
    for config in levels:
        if config.level == level:
            return config
    return None


def validate_level_ladder(configs: Iterable[ApprovalLevelConfig]) -> None:
    """Reject ladders that would strand levels or never escalate.

    Inactive configs only need unique, positive level numbers and a valid
    approver; the shape rules apply to the active ladder.

    Raises:
        InvalidLevelConfigurationError: on the first violation found.
    """
    all_configs = list(configs)
    seen: set[int] = set()
    for config in all_configs:
        if config.level < 1:
            raise InvalidLevelConfigurationError(config.level, "level must be >= 1")
        if config.level in seen:
            raise InvalidLevelConfigurationError(config.level, "level is defined twice")
        seen.add(config.level)
        if not config.level_name:
            raise InvalidLevelConfigurationError(config.level, "level name is required")
        if not config.approver_email or "@" not in config.approver_email:
            raise InvalidLevelConfigurationError(
                config.level, f"approver email {config.approver_email!r} is not valid",
            )
        if config.max_amount is not None and config.max_amount < 0:
            raise InvalidLevelConfigurationError(config.level, "ceiling cannot be negative")

    active = active_levels_in_order(all_configs)
    previous: ApprovalLevelConfig | None = None
    for position, config in enumerate(active):
        if config.max_amount is None and position < len(active) - 1:
            raise InvalidLevelConfigurationError(
                config.level,
                "only the last active level may have an unlimited ceiling; "
                f"level {active[position + 1].level} would be unreachable",
            )
        if (
            previous is not None
            and previous.max_amount is not None
            and config.max_amount is not None
            and config.max_amount <= previous.max_amount
        ):
            raise InvalidLevelConfigurationError(
                config.level,
                f"ceiling {config.max_amount} must exceed level "
                f"{previous.level} ceiling {previous.max_amount}",
            )
        previous = config
