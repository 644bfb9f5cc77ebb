"""
approval_config -- Runtime settings and seed approval ladders.

Usage at process start::

    settings = load_settings(Path("routing.yaml"))
    configure_logging(level=settings.log_level)
    database = Database.from_url(settings.database_url)
    gateway = ApprovalGateway.from_settings(settings, notifier, database=database)

    with database.session_scope() as session:
        LevelConfigService(session).seed_levels(load_level_seeds(Path("routing.yaml")))
"""

from approval_config.loader import (
    compute_checksum,
    ladder_checksum,
    load_level_seeds,
    load_settings,
)
from approval_config.schema import RoutingSettings

__all__ = [
    "RoutingSettings",
    "compute_checksum",
    "ladder_checksum",
    "load_level_seeds",
    "load_settings",
]
