"""Database engine creation and schema migrations for dues services."""

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

MIGRATIONS_PATH = Path(__file__).resolve().parent.parent / "migrations"


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; SQLite uses StaticPool for simplicity in dev/test."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


def migration_config(database_url: str) -> Config:
    """Alembic config pointing at the packaged migrations."""
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    # ConfigParser interpolation: escape percent-encoded credentials
    config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return config


def upgrade_db(database_url: str) -> None:
    """Apply all pending migrations."""
    command.upgrade(migration_config(database_url), "head")


__all__ = ["create_db_engine", "migration_config", "upgrade_db", "MIGRATIONS_PATH"]
