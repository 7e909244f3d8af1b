"""
FastAPI Production Application

Main entry point for the Gear Popularity API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import structlog

from gear_popularity.config import get_settings
from gear_popularity.database.connection import init_database, close_database
from gear_popularity.serving.cache import init_redis, close_redis
from gear_popularity.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
)
from gear_popularity.serving.api.routes import (
    health_router,
    events_router,
    trending_router,
    rollups_router,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    from gear_popularity.config.logging import configure_logging
    configure_logging()

    logger.info("Starting Gear Popularity API", environment=settings.app_env)

    try:
        await init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.warning("Database init failed", error=str(e))

    # Redis is optional: without it every read is computed from the database
    try:
        await init_redis()
        logger.info("Redis initialized")
    except Exception as e:
        logger.warning("Redis init failed", error=str(e))

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


app = FastAPI(
    title="Gear Popularity API",
    description="Popularity and trending engine for a camera and lens catalog",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.security.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.security.rate_limit_requests,
    window_seconds=settings.security.rate_limit_window_seconds,
    paths=("/api/v1/events",),
)

app.include_router(health_router, prefix="/api/v1", tags=["Health"])
app.include_router(events_router, prefix="/api/v1", tags=["Events"])
app.include_router(trending_router, prefix="/api/v1", tags=["Trending"])
app.include_router(rollups_router, prefix="/api/v1/rollups", tags=["Rollups"])


@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": "Gear Popularity API",
        "version": settings.version,
        "environment": settings.app_env,
        "documentation": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
