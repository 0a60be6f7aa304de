"""Alembic migration environment configuration.

This module configures how Alembic runs migrations:
- Loads SQLAlchemy models for autogenerate support
- Resolves the database URL from the Alembic config, DATABASE_URL, or settings
- Supports both online and offline migration modes
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from keycast.core.settings import get_settings_safe
from keycast.db import to_psycopg_url

# Import all models to register them with metadata
from keycast.db.models import Base

config = context.config

# Set up Python logging from alembic.ini (absent when run via keycast migrate)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Get database URL.

    Priority:
    1. sqlalchemy.url set on the Alembic config (keycast migrate sets it)
    2. DATABASE_URL environment variable
    3. KEYCAST_DATABASE__URL via application settings
    """
    url = config.get_main_option("sqlalchemy.url") or os.environ.get("DATABASE_URL", "")
    if not url:
        settings = get_settings_safe()
        if settings is not None:
            url = str(settings.database.url)
    if not url:
        msg = "No database URL configured for migrations"
        raise RuntimeError(msg)
    return to_psycopg_url(url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Generates SQL script without connecting to database.
    """
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    Creates engine and runs migrations within a transaction.
    """
    # NullPool ensures connections are closed immediately after use
    connectable = create_engine(
        get_url(),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
