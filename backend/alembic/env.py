"""
Alembic Migration Environment
==============================

What:  Runs Billow's migrations against the async engine from app.config.
How:   The URL comes from Settings (DATABASE_URL), never from alembic.ini.
       Online migrations open an asyncpg connection and hand its sync facade
       to Alembic through run_sync().

The GIN search index is an expression index; autogenerate can't compare
expressions, so it is excluded from comparison and maintained by hand in
the versions/ scripts.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from app.config import settings
from app.database import Base

# Alembic only sees models registered with Base
from app.models.home import Home  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

config.set_main_option("sqlalchemy.url", settings.database_url)

EXPRESSION_INDEXES = {"idx_homes_search"}


def include_object(obj, name, type_, reflected, compare_to):
    """Skip expression indexes during autogenerate."""
    if type_ == "index" and name in EXPRESSION_INDEXES:
        return False
    return True


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting (review before applying)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Connect with the async driver and apply pending migrations."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,  # one-shot process
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
