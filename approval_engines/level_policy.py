"""
approval_engines.level_policy -- Threshold-driven approval depth.

Responsibility:
    Decide how many sequential levels must approve a monetary total.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types.

Invariants enforced:
    - Inclusive ceilings: a total exactly equal to a level's ``max_amount``
      is handled by that level, never escalated.
    - Bounded depth: the resolved ``max_level`` never exceeds the number of
      configs supplied, and is at least 1 whenever any config is supplied.

Failure modes:
    - Returns ``None`` for an empty ladder ("unconfigured").  Callers must
      refuse to initialize rather than guess a fallback approver.
    - ``ValueError`` for a negative total.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from approval_kernel.domain.approval import ApprovalLevelConfig, LevelResolution


def resolve_required_levels(
    total: Decimal,
    levels: Sequence[ApprovalLevelConfig],
) -> LevelResolution | None:
    """Compute how many levels must approve ``total``.

    Walks ``levels`` in the order given (callers pass active configs sorted
    ascending; gaps in numbering are not assumed away).  The first config
    whose ceiling covers the total fixes the depth at that level; every
    config it passes escalates the depth to ``level + 1``.  The depth is
    then clamped to ``len(levels)``.

    Args:
        total: Non-negative request total.
        levels: Active level configs, ascending.

    Returns:
        ``LevelResolution`` or ``None`` when ``levels`` is empty.
    """
    if total < 0:
        raise ValueError(f"Request total must be non-negative, got {total}")
    if not levels:
        return None

    required = 1
    for config in levels:
        if config.can_finally_approve(total):
            required = config.level
            break
        required = config.level + 1

    max_level = max(1, min(required, len(levels)))
    return LevelResolution(max_level=max_level, levels=tuple(levels[:max_level]))
