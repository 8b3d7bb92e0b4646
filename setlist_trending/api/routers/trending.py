"""
Trending API router.
GET /v1/trending and /v1/trending/categories, shared-cache friendly.
"""
import hashlib
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from setlist_trending.api.dependencies import get_discovery_service
from setlist_trending.config import get_settings
from setlist_trending.models.schemas import (
    Timeframe,
    TrendingCategories,
    TrendingKind,
    TrendingResult,
)
from setlist_trending.services.discovery import DiscoveryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["trending"])


def _weak_etag(result: TrendingResult) -> str:
    content_str = "|".join(f"{s.item.id}:{s.score:.6f}" for s in result.items)
    etag_hash = hashlib.md5(f"{result.kind.value}:{result.timeframe.value}:{content_str}".encode()).hexdigest()[:16]
    return f'W/"{etag_hash}"'


@router.get(
    "/trending",
    response_model=TrendingResult,
    summary="Get Trending Shows or Artists",
    description="""
    Ranked list of trending shows or artists within a timeframe.

    Score = votes x positive ratio, vote velocity, log follower count and
    event urgency, multiplied by special-event boosts (festivals, landmark
    venues, headliners, verified artists playing soon).

    **Features:**
    - Shared-cache headers with stale-while-revalidate
    - Weak ETag with 304 support
    - Serves the last good list (marked stale) when the datastore is down
    """,
    responses={
        200: {"description": "Ranked list returned"},
        304: {"description": "List not modified"},
    },
)
async def get_trending(
    response: Response,
    kind: TrendingKind = Query(
        default=TrendingKind.SHOWS,
        alias="type",
        description="What to rank",
    ),
    timeframe: Timeframe = Query(default=Timeframe.WEEK, description="Activity window"),
    limit: Optional[int] = Query(
        default=None,
        ge=0,
        description="Number of items; values above the maximum are clamped",
    ),
    if_none_match: Optional[str] = Header(
        default=None,
        description="ETag from previous response",
    ),
    service: DiscoveryService = Depends(get_discovery_service),
) -> TrendingResult:
    settings = get_settings()
    effective_limit = settings.DEFAULT_LIMIT if limit is None else limit

    result = await service.get_trending(kind, timeframe, effective_limit)

    # -------------------------------------------------------------------------
    # ETag / 304 Logic
    # -------------------------------------------------------------------------
    etag = _weak_etag(result)
    if if_none_match and if_none_match == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})
    response.headers["ETag"] = etag

    # -------------------------------------------------------------------------
    # Cache-Control Logic
    # -------------------------------------------------------------------------
    if result.stale or result.degraded:
        response.headers["Cache-Control"] = "public, max-age=30, stale-while-revalidate=15"
    else:
        response.headers["Cache-Control"] = (
            f"public, s-maxage={settings.TRENDING_TTL_SEC}, "
            f"stale-while-revalidate={settings.CACHE_STALE_GRACE_SEC}"
        )
    response.headers["Vary"] = "Accept-Encoding"
    response.headers["X-Stale"] = str(result.stale).lower()

    return result


@router.get(
    "/trending/categories",
    response_model=TrendingCategories,
    summary="Get Trending Categories",
    description="Hottest, rising and new shows plus popular and breaking-out artists.",
)
async def get_trending_categories(
    response: Response,
    timeframe: Timeframe = Query(default=Timeframe.WEEK, description="Activity window"),
    service: DiscoveryService = Depends(get_discovery_service),
) -> TrendingCategories:
    settings = get_settings()
    categories = await service.get_categories(timeframe)

    if categories.degraded:
        response.headers["Cache-Control"] = "public, max-age=30, stale-while-revalidate=15"
    else:
        response.headers["Cache-Control"] = (
            f"public, s-maxage={settings.TRENDING_TTL_SEC}, "
            f"stale-while-revalidate={settings.CACHE_STALE_GRACE_SEC}"
        )
    return categories
