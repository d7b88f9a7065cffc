import asyncio
import logging
from logging.config import fileConfig
from time import perf_counter

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

# Must import models so they are attached to Base.metadata
import coursegen.schema.locks  # noqa: F401
from coursegen.core.database import Base, normalize_database_url
from coursegen.config import get_database_settings

config = context.config

if config.config_file_name is not None:
  fileConfig(config.config_file_name)

target_metadata = Base.metadata

_migration_logger = logging.getLogger("alembic.runtime.migration")


def _database_url() -> str:
  """Prefer COURSEGEN_LOCK_DSN and fall back to the url in alembic.ini."""
  dsn = get_database_settings().lock_dsn or config.get_main_option("sqlalchemy.url")
  if not dsn:
    raise RuntimeError("COURSEGEN_LOCK_DSN must be set to run migrations.")
  return normalize_database_url(dsn)


def run_migrations_offline() -> None:
  """Emit SQL for the lock table without connecting."""
  context.configure(url=_database_url(), target_metadata=target_metadata, literal_binds=True, dialect_opts={"paramstyle": "named"})

  with context.begin_transaction():
    context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
  """Run migrations on the provided connection while logging the elapsed time."""
  context.configure(connection=connection, target_metadata=target_metadata)
  started = perf_counter()

  with context.begin_transaction():
    context.run_migrations()

  _migration_logger.info("Completed migration run in %.3fs", perf_counter() - started)


async def run_async_migrations() -> None:
  """Run migrations with an async engine so drivers match runtime."""
  configuration = config.get_section(config.config_ini_section) or {}
  configuration["sqlalchemy.url"] = _database_url()
  connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

  async with connectable.connect() as connection:
    await connection.run_sync(do_run_migrations)

  await connectable.dispose()


def run_migrations_online() -> None:
  asyncio.run(run_async_migrations())


if context.is_offline_mode():
  run_migrations_offline()
else:
  run_migrations_online()
