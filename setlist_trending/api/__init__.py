"""API package - FastAPI routes and dependencies."""
from .dependencies import get_discovery_service
from .routers import (
    admin_router,
    health_router,
    recommendations_router,
    trending_router,
    votes_router,
)

__all__ = [
    "admin_router",
    "get_discovery_service",
    "health_router",
    "recommendations_router",
    "trending_router",
    "votes_router",
]
