"""
Main FastAPI application entry point.
Configures logging, exception handlers, background tasks, and routers.
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from setlist_trending.api.dependencies import (
    get_cache_layer,
    get_trending_ranker,
    get_vote_aggregator,
)
from setlist_trending.api.routers import (
    admin_router,
    health_router,
    recommendations_router,
    trending_router,
    votes_router,
)
from setlist_trending.config import get_settings
from setlist_trending.config.logging import configure_logging
from setlist_trending.core.exceptions import AppException
from setlist_trending.core.telemetry import setup_telemetry


# =============================================================================
# Lifespan (Startup/Shutdown)
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    logger = logging.getLogger(__name__)
    settings = get_settings()

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    cache = get_cache_layer()
    aggregator = get_vote_aggregator()
    sweepers = [
        asyncio.create_task(cache.run_eviction(settings.CACHE_EVICTION_INTERVAL_SEC)),
        asyncio.create_task(aggregator.run_pruning(settings.CACHE_EVICTION_INTERVAL_SEC)),
    ]
    warmed = await get_trending_ranker().warm_up(settings.DEFAULT_LIMIT)
    logger.info(f"Warmed {warmed} trending lists")

    yield

    # Shutdown
    logger.info("Shutting down application")
    fired = aggregator.flush()
    aggregator.close()
    if fired:
        logger.info(f"Flushed {fired} pending vote invalidations")

    for sweeper in sweepers:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


# =============================================================================
# Exception Handlers
# =============================================================================


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handle custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions - return generic error."""
    logger = logging.getLogger(__name__)
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            }
        },
    )


# =============================================================================
# Application Factory
# =============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Configure structured logging
    configure_logging(debug=settings.DEBUG)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
        Setlist Trending & Recommendation Engine

        Ranks trending shows and artists from crowd votes and recommends
        artists and shows to users.

        ## Features
        - Weighted trending score with special-event boosts
        - Hybrid content + collaborative recommendations with diversity re-ranking
        - Two-tier cache with single-flight computation and tag invalidation
        - Debounced vote-driven invalidation
        - Graceful degradation to stale or popular results
        - Observability: JSON logs, Prometheus, OpenTelemetry
        """,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Register exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(trending_router)
    app.include_router(recommendations_router)
    app.include_router(votes_router)
    app.include_router(admin_router)

    # Setup Telemetry (Metrics & Tracing)
    setup_telemetry(app)

    return app


# Create application instance
app = create_app()


# =============================================================================
# Development Entry Point
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "setlist_trending.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
