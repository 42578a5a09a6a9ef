"""
Alembic migration environment.
Takes DATABASE_URL from the app settings (which load .env) and the app models for autogenerate.
"""
import sys
from logging.config import fileConfig
from pathlib import Path

# alembic/ lives in cvpipeline/; the project root must be importable
_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(_root))

from sqlalchemy import create_engine, pool
from alembic import context

from cvpipeline.app.core.config import settings
from cvpipeline.app.db.base import Base

# Import all models so they register with Base.metadata
import cvpipeline.app.models  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=settings.database_url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
