"""
Alembic Environment Configuration
=================================

Runs knowscope migrations with a synchronous engine.
"""

import os

from logging.config import fileConfig

from sqlalchemy import pool, create_engine

from alembic import context

from knowscope.core.config import settings
from knowscope.models import Base, KnowledgeItem, KnowledgeItemRevision  # noqa: F401

config = context.config

# ALEMBIC_DATABASE_URL_SYNC points migrations at another database without
# touching the application settings (used by the store tests).
config.set_main_option(
    "sqlalchemy.url",
    os.environ.get("ALEMBIC_DATABASE_URL_SYNC") or settings.DATABASE_URL_SYNC,
)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit migration SQL for the configured URL without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a NullPool connection."""
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
