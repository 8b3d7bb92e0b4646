"""
Admin router for manual cache invalidation.
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query

from setlist_trending.api.dependencies import get_discovery_service
from setlist_trending.models.schemas import InvalidationResponse, TrendingKind
from setlist_trending.services.discovery import DiscoveryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class InvalidationScope(str, Enum):
    SHOWS = "shows"
    ARTISTS = "artists"
    ALL = "all"


@router.post(
    "/trending/invalidate",
    response_model=InvalidationResponse,
    summary="Invalidate Trending Lists",
)
async def invalidate_trending(
    kind: InvalidationScope = Query(default=InvalidationScope.ALL),
    service: DiscoveryService = Depends(get_discovery_service),
) -> InvalidationResponse:
    target = None if kind is InvalidationScope.ALL else TrendingKind(kind.value)
    removed = service.invalidate_trending(target)
    return InvalidationResponse(scope=f"trending:{kind.value}", invalidated=removed)


@router.post(
    "/recommendations/invalidate",
    response_model=InvalidationResponse,
    summary="Invalidate Recommendations",
)
async def invalidate_recommendations(
    user_id: Optional[str] = Query(default=None, min_length=1),
    service: DiscoveryService = Depends(get_discovery_service),
) -> InvalidationResponse:
    removed = service.invalidate_recommendations(user_id)
    return InvalidationResponse(scope=f"recommendations:{user_id or 'all'}", invalidated=removed)


@router.post(
    "/cache/clear",
    response_model=InvalidationResponse,
    summary="Clear Cache",
)
async def clear_cache(
    service: DiscoveryService = Depends(get_discovery_service),
) -> InvalidationResponse:
    removed = service.invalidate_all()
    logger.warning(f"Cache cleared via admin endpoint: removed={removed}")
    return InvalidationResponse(scope="all", invalidated=removed)
