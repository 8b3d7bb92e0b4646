"""
Health check router for observability.
"""
from fastapi import APIRouter

from setlist_trending.api.dependencies import get_cache_layer, get_candidate_circuit_breaker

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health Check")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/ready", summary="Readiness Check")
async def readiness_check() -> dict:
    """
    Readiness check for Kubernetes.
    Returns circuit breaker state and cache statistics.
    """
    circuit_breaker = get_candidate_circuit_breaker()
    stats = get_cache_layer().stats()

    return {
        "status": "ready",
        "circuit_breaker": {
            "name": circuit_breaker.name,
            "state": circuit_breaker.state.value,
        },
        "cache": {
            "hits": stats.hits,
            "misses": stats.misses,
            "hit_rate": round(stats.hit_rate, 4),
            "evictions": stats.evictions,
            "l1_entries": stats.l1_entries,
            "l2_entries": stats.l2_entries,
        },
    }
