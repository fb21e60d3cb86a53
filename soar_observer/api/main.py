"""
Main FastAPI application for the Soarchain observer.
Serves read-only earnings queries and hosts the ingestion pipeline.
"""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from soar_observer.core.config import settings
from soar_observer.core.database import DatabaseManager, close_database, init_database
from soar_observer.core.logging import setup_logging
from soar_observer.api.dependencies import get_database
from soar_observer.api.middleware import add_middleware
from soar_observer.api.schemas.common import HealthCheckResponse
from soar_observer.api.routes import clients, earnings, miner
from soar_observer.indexer.main import IngestionService


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Soarchain observer", version=settings.app_version)

    await init_database()
    if settings.auto_create_tables:
        await DatabaseManager.create_tables()

    ingestion = None
    ingestion_task = None
    if settings.ingestion_enabled:
        ingestion = IngestionService()
        ingestion_task = asyncio.create_task(ingestion.start())
        logger.info("Ingestion started in background")
    app.state.ingestion = ingestion

    yield

    logger.info("Shutting down Soarchain observer")
    if ingestion is not None:
        await ingestion.stop()
        if ingestion_task is not None:
            await asyncio.gather(ingestion_task, return_exceptions=True)
    await close_database()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging(settings.log_file)

    app = FastAPI(
        title=settings.app_name,
        description="Read-only earnings queries for Soarchain runner challenges.",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.ingestion = None

    add_middleware(app)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Database connectivity and ingestion status",
    )
    async def health_check(db: AsyncSession = Depends(get_database)):
        ingestion = app.state.ingestion
        ingestion_status = ingestion.get_status() if ingestion is not None else None

        try:
            await db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "services": {"database": "unhealthy", "api": "healthy"},
                    "error": str(e),
                },
            )

        return HealthCheckResponse(
            status="healthy",
            version=settings.app_version,
            services={
                "database": "healthy",
                "api": "healthy",
                "ingestion": ingestion_status["state"] if ingestion_status else "disabled",
            },
            ingestion=ingestion_status,
        )

    app.include_router(clients.router, tags=["Clients"])
    app.include_router(earnings.router, tags=["Earnings"])
    app.include_router(
        miner.router,
        prefix=f"{settings.api_v1_prefix}/miner",
        tags=["Miner"],
    )

    logger.info("FastAPI application created")
    return app


app = create_app()


def run() -> None:
    """Serve the API (and ingestion, when enabled) with uvicorn."""
    uvicorn.run(
        "soar_observer.api.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
