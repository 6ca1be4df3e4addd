"""Async engine/session factory and Alembic helpers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import BACKEND_ROOT, settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ALEMBIC_INI_PATH = BACKEND_ROOT / "alembic.ini"
MIGRATIONS_PATH = BACKEND_ROOT / "migrations"

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped async session."""
    async with async_session_maker() as session:
        yield session


def _alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI_PATH))
    config.set_main_option("script_location", str(MIGRATIONS_PATH))
    # ConfigParser interpolation: escape percent-encoded credentials.
    config.set_main_option("sqlalchemy.url", settings.database_url.replace("%", "%%"))
    config.attributes["configure_logger"] = False
    return config


def get_alembic_head_revision() -> str | None:
    """Return the local Alembic head revision, if the script directory is present."""
    if not Path(MIGRATIONS_PATH).exists():
        return None
    script = ScriptDirectory.from_config(_alembic_config())
    return script.get_current_head()


def run_migrations() -> None:
    """Upgrade the configured database to the local Alembic head."""
    logger.info("db.migrations.upgrade_started", extra={"head": get_alembic_head_revision()})
    command.upgrade(_alembic_config(), "head")
    logger.info("db.migrations.upgrade_complete")
