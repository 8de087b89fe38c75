"""Alembic environment. Migrations are plain SQL run through ``op.execute``."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from urna.core.config import get_settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def sqlalchemy_url(database_url: str) -> str:
    """asyncpg DSNs use ``postgresql://``; migrations run through psycopg2."""
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return database_url.replace("postgresql://", "postgresql+psycopg2://", 1)


config.set_main_option("sqlalchemy.url", sqlalchemy_url(get_settings().DATABASE_URL))


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=None,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
