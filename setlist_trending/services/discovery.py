"""
Discovery service.
Single entry point the API layer talks to: trending lists, categories,
recommendations, similar users, vote ingestion and cache invalidation.
"""
import logging
from typing import List, Optional

from setlist_trending.core.cache import CacheLayer
from setlist_trending.core.exceptions import ValidationError
from setlist_trending.models.schemas import (
    RecommendationOptions,
    RecommendationResult,
    SimilarUser,
    Timeframe,
    TrendingCategories,
    TrendingKind,
    TrendingResult,
    VoteSignal,
)
from setlist_trending.services.recommendations import RECOMMENDATIONS_TAG, RecommendationEngine
from setlist_trending.services.trending import TrendingRanker
from setlist_trending.services.vote_aggregator import TRENDING_TAG, VoteAggregator

logger = logging.getLogger(__name__)


class DiscoveryService:
    """
    Orchestrates ranking, recommendation and invalidation.

    Usage:
        service = DiscoveryService(ranker, recommender, aggregator, cache, max_limit=50)
        shows = await service.get_trending(TrendingKind.SHOWS, Timeframe.WEEK, 20)
    """

    def __init__(
        self,
        ranker: TrendingRanker,
        recommender: RecommendationEngine,
        aggregator: VoteAggregator,
        cache: CacheLayer,
        max_limit: int = 50,
    ) -> None:
        self._ranker = ranker
        self._recommender = recommender
        self._aggregator = aggregator
        self._cache = cache
        self._max_limit = max_limit

    async def get_trending(
        self,
        kind: TrendingKind,
        timeframe: Timeframe = Timeframe.WEEK,
        limit: int = 20,
    ) -> TrendingResult:
        """Top ``limit`` items; limits above the maximum are clamped."""
        if limit < 0:
            raise ValidationError("limit must be non-negative", {"limit": limit})
        return await self._ranker.rank(kind, timeframe, min(limit, self._max_limit))

    async def get_categories(self, timeframe: Timeframe = Timeframe.WEEK) -> TrendingCategories:
        return await self._ranker.categories(timeframe)

    async def get_recommendations(
        self,
        user_id: Optional[str],
        options: RecommendationOptions,
    ) -> RecommendationResult:
        """Personalized for known users, popular items for anonymous or new ones."""
        if not user_id:
            return await self._recommender.recommend(None, options)
        return await self._recommender.get_recommendations(user_id, options)

    async def find_similar_users(
        self,
        user_id: str,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> List[SimilarUser]:
        return await self._recommender.find_similar_users(user_id, limit, threshold)

    def record_vote(self, signal: VoteSignal) -> int:
        """Feed a vote to the aggregator; returns pending invalidation groups."""
        self._aggregator.handle(signal)
        return self._aggregator.pending_count

    def invalidate_trending(self, kind: Optional[TrendingKind] = None) -> int:
        """Drop cached trending lists for one kind, or all of them."""
        tags = [kind.value] if kind is not None else [TRENDING_TAG]
        removed = self._cache.invalidate_by_tags(tags)
        logger.info(f"Trending invalidated: tags={tags}, removed={removed}")
        return removed

    def invalidate_recommendations(self, user_id: Optional[str] = None) -> int:
        """Drop cached recommendations for one user, or everyone's."""
        tags = [f"user:{user_id}"] if user_id else [RECOMMENDATIONS_TAG]
        removed = self._cache.invalidate_by_tags(tags)
        logger.info(f"Recommendations invalidated: tags={tags}, removed={removed}")
        return removed

    def invalidate_all(self) -> int:
        removed = self._cache.size()
        self._cache.clear()
        logger.info(f"Cache cleared: removed={removed}")
        return removed
