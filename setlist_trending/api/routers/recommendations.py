"""
Recommendations API router.
Personalized artist/show recommendations and similar-user lookup.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from setlist_trending.api.dependencies import get_discovery_service
from setlist_trending.config import get_settings
from setlist_trending.models.schemas import (
    RecommendationOptions,
    RecommendationResult,
    RecommendationTimeframe,
    RecommendationType,
    SimilarUsersRequest,
    SimilarUsersResponse,
)
from setlist_trending.services.discovery import DiscoveryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["recommendations"])


@router.get(
    "/recommendations",
    response_model=RecommendationResult,
    summary="Get Recommendations",
    description="""
    Hybrid recommendations: content-based (genre preferences) merged with
    collaborative filtering (similar users), re-ranked for diversity.

    Users without a profile receive popular items instead.
    """,
)
async def get_recommendations(
    response: Response,
    user_id: Optional[str] = Query(default=None, min_length=1, description="User identifier"),
    rec_type: RecommendationType = Query(default=RecommendationType.MIXED, alias="type"),
    limit: int = Query(default=10, ge=1, le=50, description="Number of recommendations"),
    diversity: float = Query(default=0.7, ge=0, le=1, description="0 = similar, 1 = diverse"),
    timeframe: RecommendationTimeframe = Query(default=RecommendationTimeframe.UPCOMING),
    exclude_engaged: bool = Query(default=False, description="Skip items the user already follows"),
    service: DiscoveryService = Depends(get_discovery_service),
) -> RecommendationResult:
    settings = get_settings()
    options = RecommendationOptions(
        type=rec_type,
        limit=limit,
        diversity=diversity,
        timeframe=timeframe,
        exclude_engaged=exclude_engaged,
    )
    result = await service.get_recommendations(user_id, options)

    if result.personalized and not result.degraded:
        response.headers["Cache-Control"] = f"private, max-age={settings.RECOMMENDATION_TTL_SEC}"
    elif result.degraded:
        response.headers["Cache-Control"] = "private, max-age=30"
    else:
        response.headers["Cache-Control"] = (
            f"public, s-maxage={settings.TRENDING_TTL_SEC}, "
            f"stale-while-revalidate={settings.CACHE_STALE_GRACE_SEC}"
        )
    response.headers["X-Personalized"] = str(result.personalized).lower()

    return result


@router.post(
    "/recommendations/similar-users",
    response_model=SimilarUsersResponse,
    summary="Find Similar Users",
    description="Users whose behavior vectors are closest by cosine similarity.",
)
async def find_similar_users(
    request: SimilarUsersRequest,
    service: DiscoveryService = Depends(get_discovery_service),
) -> SimilarUsersResponse:
    similar = await service.find_similar_users(
        request.user_id,
        limit=request.limit,
        threshold=request.similarity_threshold,
    )
    return SimilarUsersResponse(similar_users=similar, threshold=request.similarity_threshold)
