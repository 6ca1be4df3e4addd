"""FastAPI application entrypoint for the check-in service API."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.checkins import router as checkins_router
from app.api.history import router as history_router
from app.api.user_settings import router as user_settings_router
from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.db.session import run_migrations

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    if settings.db_auto_migrate:
        # Alembic's env runs its own event loop; keep it off the server loop.
        await asyncio.to_thread(run_migrations)
    logger.info("app.startup", extra={"environment": settings.environment})
    yield
    logger.info("app.shutdown")


app = FastAPI(title=settings.app_name, lifespan=lifespan)

origins = settings.allowed_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _health_payload() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health")
async def health() -> dict[str, str]:
    return _health_payload()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return _health_payload()


api_v1 = APIRouter(prefix="/api/v1")


@api_v1.get("/health")
async def api_health() -> dict[str, str]:
    return _health_payload()


api_v1.include_router(checkins_router)
api_v1.include_router(user_settings_router)
api_v1.include_router(history_router)
app.include_router(api_v1)
