"""
Alembic environment for the curator schema.

Migrations are raw SQL (op.execute), so no SQLAlchemy metadata is attached.
The connection URL always comes from curator settings, never from alembic.ini.
"""
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from curator.core.config import settings  # noqa: E402

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)


def _configure(**options) -> None:
    context.configure(target_metadata=None, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL to stdout without a live database."""
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_online() -> None:
    engine = create_engine(settings.DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)


if context.is_offline_mode():
    run_offline()
else:
    run_online()
