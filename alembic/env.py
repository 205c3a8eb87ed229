"""
Alembic environment: same engine URL and metadata as the API.
"""

from logging.config import fileConfig
import sys
from pathlib import Path

from sqlalchemy import create_engine, pool
from alembic import context

# make `oddsraiders` importable from a plain checkout
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "api"))

from oddsraiders.db import Base, DATABASE_URL  # noqa: E402 (settings loads the repo-root .env)
import oddsraiders.models  # noqa: E402,F401 - registers all models with Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(DATABASE_URL, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
