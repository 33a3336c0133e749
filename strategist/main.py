# =============================================================================
# FastAPI Application
# =============================================================================
#
# Run locally:
#   uvicorn strategist.main:app --reload
#
# With STORAGE_BACKEND=sql, tables are created on startup. Celery workers
# (AGENT_DISPATCH=celery) are started separately:
#   celery -A strategist.workers.celery_app worker --loglevel=info
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from strategist.api.orchestrate import router as orchestrate_router
from strategist.config import settings
from strategist.models.responses import HealthResponse

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.storage_backend == "sql":
        from strategist.db.engine import async_engine
        from strategist.db.models import Base

        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")
    yield


configure_logging()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)
app.include_router(orchestrate_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
