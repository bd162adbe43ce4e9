"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from app.api.v1.router import api_router
from app.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.environment)

    from app.db.postgres import check_connection, engine

    # A missing database must not keep the liveness endpoint down
    try:
        await check_connection()
        logger.info("Connected to PostgreSQL at %s:%s", settings.db_host, settings.db_port)
    except Exception as exc:
        logger.error("Error connecting to PostgreSQL: %s", exc)

    yield

    await engine.dispose()
    logger.info("Shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Backend service with a database diagnostic endpoint",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", response_class=PlainTextResponse)
    async def liveness() -> str:
        """Liveness check; does not touch the database."""
        return "Backend is running"

    return app


app = create_app()


def run() -> None:
    """Serve the application on the configured port."""
    settings = get_settings()
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
