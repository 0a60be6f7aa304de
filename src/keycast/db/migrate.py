"""Schema migration entry point.

Runs Alembic's upgrade to head against the configured database without
needing an alembic.ini on disk; the migration scripts ship inside the
package.
"""

from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

MIGRATIONS_LOCATION = "keycast:db/migrations"


def build_alembic_config(database_url: str) -> Config:
    """Build an in-memory Alembic config pointing at the packaged scripts.

    Args:
        database_url: Target database URL.

    Returns:
        Alembic Config ready for command.* calls.
    """
    config = Config()
    config.set_main_option("script_location", MIGRATIONS_LOCATION)
    # ConfigParser interpolation would choke on '%' in passwords
    config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return config


def upgrade_to_head(database_url: str) -> None:
    """Apply all pending migrations.

    Args:
        database_url: Target database URL.
    """
    logger.info("Applying database migrations")
    command.upgrade(build_alembic_config(database_url), "head")
    logger.info("Database schema is up to date")
