"""Alembic environment for the billing schema."""
from alembic import context
from sqlalchemy import engine_from_config, pool

from pdfapp.core.config import settings
from pdfapp.core.logging import setup_logging
from pdfapp.db.base import Base

config = context.config

setup_logging()

target_metadata = Base.metadata


def _database_url() -> str:
    # An explicit sqlalchemy.url (set by callers of the command API) wins over settings
    return config.get_main_option("sqlalchemy.url") or settings.database_url


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _database_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
