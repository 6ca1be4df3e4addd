"""Hold tick processing until the database schema is at the local Alembic head."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from sqlalchemy import text

from app.core.logging import get_logger
from app.db.session import async_session_maker, get_alembic_head_revision

logger = get_logger(__name__)

RevisionFetcher = Callable[[], Awaitable[str | None]]


async def fetch_database_revision() -> str | None:
    async with async_session_maker() as session:
        result = await session.execute(text("SELECT version_num FROM alembic_version LIMIT 1"))
    raw = result.scalar_one_or_none()
    return str(raw) if raw is not None else None


class MigrationGate:
    """Latch that opens once the applied revision equals the expected head."""

    def __init__(
        self,
        *,
        head_revision: Callable[[], str | None] = get_alembic_head_revision,
        fetch_revision: RevisionFetcher = fetch_database_revision,
    ) -> None:
        self._head_revision = head_revision
        self._fetch_revision = fetch_revision
        self._expected: str | None = None
        self.is_open = False

    def reset(self) -> None:
        self._expected = None
        self.is_open = False

    async def check(self) -> bool:
        """Return True once the schema is current; stays open after the first success."""
        if self.is_open:
            return True
        if self._expected is None:
            self._expected = self._head_revision()
        if not self._expected:
            return False

        try:
            applied = await self._fetch_revision()
        except Exception as exc:  # pragma: no cover - database unreachable
            logger.warning("tick.migration_gate.check_failed", extra={"error": str(exc)})
            return False

        if applied != self._expected:
            logger.info(
                "tick.migration_gate.pending",
                extra={"applied_revision": applied, "head_revision": self._expected},
            )
            return False
        self.is_open = True
        logger.info("tick.migration_gate.open", extra={"head_revision": self._expected})
        return True


default_gate = MigrationGate()


async def is_tick_migration_ready() -> bool:
    return await default_gate.check()


def reset_tick_migration_gate() -> None:
    """Reset the process-wide gate (test helper)."""
    default_gate.reset()


__all__ = [
    "MigrationGate",
    "default_gate",
    "is_tick_migration_ready",
    "reset_tick_migration_gate",
]
