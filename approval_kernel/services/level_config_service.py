"""
approval_kernel.services.level_config_service -- Approval ladder administration.

Responsibility:
    Read and write ``ApprovalLevelConfig`` rows.  The router only ever reads
    the active ladder; every write passes through here so the ladder is
    validated before it can be observed.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Every write validates the full resulting ladder with
      ``validate_level_ladder`` before flushing.  A rejected write leaves
      the session untouched.
    - Level rows are never deleted; ``deactivate_level`` flips ``is_active``
      so past routing decisions still name a real level.

Failure modes:
    - InvalidLevelConfigurationError on a ladder that fails validation, or
      when deactivating a level that does not exist.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalLevelConfig
from approval_kernel.domain.levels import active_levels_in_order, validate_level_ladder
from approval_kernel.exceptions import InvalidLevelConfigurationError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalLevelConfigModel

logger = get_logger("services.level_config")


class LevelConfigService:
    """Validated access to the approval level ladder."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _rows(self) -> list[ApprovalLevelConfigModel]:
        return list(
            self._session.execute(
                select(ApprovalLevelConfigModel).order_by(ApprovalLevelConfigModel.level)
            ).scalars()
        )

    def list_levels(self) -> tuple[ApprovalLevelConfig, ...]:
        """All configured levels, active or not, ascending."""
        return tuple(row.to_dto() for row in self._rows())

    def get_active_levels(self) -> tuple[ApprovalLevelConfig, ...]:
        """Active levels ascending.  Empty means routing is unconfigured."""
        return active_levels_in_order(self.list_levels())

    def upsert_level(self, config: ApprovalLevelConfig) -> ApprovalLevelConfig:
        """Create or replace the config for ``config.level``."""
        rows = {row.level: row for row in self._rows()}
        proposed = {level: row.to_dto() for level, row in rows.items()}
        proposed[config.level] = config
        validate_level_ladder(proposed.values())

        existing = rows.get(config.level)
        if existing is None:
            self._session.add(ApprovalLevelConfigModel.from_dto(config))
            event = "approval_level_created"
        else:
            existing.apply(config)
            event = "approval_level_updated"
        self._session.flush()

        logger.info(
            event,
            extra={
                "approval_level": config.level,
                "level_name": config.level_name,
                "max_amount": str(config.max_amount) if config.max_amount is not None else None,
                "is_active": config.is_active,
            },
        )
        return config

    def deactivate_level(self, level: int) -> ApprovalLevelConfig:
        """Take ``level`` out of the active ladder."""
        rows = {row.level: row for row in self._rows()}
        row = rows.get(level)
        if row is None:
            raise InvalidLevelConfigurationError(level, "level does not exist")

        current = row.to_dto()
        deactivated = ApprovalLevelConfig(
            level=current.level,
            level_name=current.level_name,
            approver_email=current.approver_email,
            max_amount=current.max_amount,
            is_active=False,
        )
        proposed = [r.to_dto() for lvl, r in rows.items() if lvl != level]
        proposed.append(deactivated)
        validate_level_ladder(proposed)

        row.is_active = False
        self._session.flush()
        logger.info("approval_level_deactivated", extra={"approval_level": level})
        return deactivated

    def seed_levels(self, configs: Iterable[ApprovalLevelConfig]) -> int:
        """Insert a ladder into an empty table.

        Returns the number of rows inserted; 0 when levels already exist.
        """
        seeds = list(configs)
        if self._rows():
            logger.info("approval_levels_seed_skipped", extra={"reason": "levels_exist"})
            return 0

        validate_level_ladder(seeds)
        for config in seeds:
            self._session.add(ApprovalLevelConfigModel.from_dto(config))
        self._session.flush()

        logger.info("approval_levels_seeded", extra={"count": len(seeds)})
        return len(seeds)
