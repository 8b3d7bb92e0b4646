"""
Trending ranker service.
Fetches a bounded candidate set, scores, boosts, sorts and truncates,
caching each (kind, timeframe, limit) list as a unit.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from setlist_trending.core.cache import CacheLayer, CachePriority
from setlist_trending.core.exceptions import DataUnavailableError, ScoreComputationError
from setlist_trending.core.telemetry import DEGRADED_RESPONSES
from setlist_trending.models.interfaces import VoteStatsProvider
from setlist_trending.models.schemas import (
    BoostRule,
    CandidateFilter,
    CandidateItem,
    ScoredItem,
    Timeframe,
    TrendingCategories,
    TrendingKind,
    TrendingResult,
    TrendingWeights,
    utcnow,
)
from setlist_trending.services.candidates import CandidateSource
from setlist_trending.services.scoring import boost_factor, score_breakdown, special_event_boost
from setlist_trending.services.vote_aggregator import TRENDING_TAG

logger = logging.getLogger(__name__)

CATEGORY_POOL_SIZE = 20
BREAKING_OUT_MAX_FOLLOWERS = 100_000
NEW_AND_NOTEWORTHY_DAYS = 7


def _rank_key(scored: ScoredItem):
    # Highest score first, then most recently created, then id for stability
    return (-scored.score, -scored.item.created_at.timestamp(), scored.item.id)


def _item_tags(result: TrendingResult) -> List[str]:
    return [scored.item.tag for scored in result.items]


class TrendingRanker:
    """
    Ranks shows or artists by trending score.

    Usage:
        ranker = TrendingRanker(CandidateSource(repo), cache)
        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=20)
    """

    def __init__(
        self,
        candidates: CandidateSource,
        cache: CacheLayer,
        weights: Optional[TrendingWeights] = None,
        boost_rules: Sequence[BoostRule] = (),
        vote_stats: Optional[VoteStatsProvider] = None,
        ttl_seconds: float = 300,
        candidate_multiplier: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._candidates = candidates
        self._cache = cache
        self._weights = weights or TrendingWeights()
        self._boost_rules = list(boost_rules)
        self._vote_stats = vote_stats
        self._ttl = ttl_seconds
        self._candidate_multiplier = candidate_multiplier
        self._clock = clock

    @staticmethod
    def cache_key(kind: TrendingKind, timeframe: Timeframe, limit: int) -> str:
        return f"trending:{kind.value}:{timeframe.value}:{limit}"

    async def rank(
        self,
        kind: TrendingKind,
        timeframe: Timeframe,
        limit: int,
    ) -> TrendingResult:
        """
        Ranked list for (kind, timeframe, limit), served from cache when warm.

        Never raises for data problems: on DataUnavailable the last cached
        list is returned marked ``stale``, or an empty ``degraded`` result.
        """
        if limit <= 0:
            return TrendingResult(kind=kind, timeframe=timeframe)

        key = self.cache_key(kind, timeframe, limit)
        try:
            return await self._cache.get_or_compute(
                key,
                lambda: self._compute(kind, timeframe, limit),
                ttl_seconds=self._ttl,
                tags=[TRENDING_TAG, kind.value],
                priority=CachePriority.HIGH,
                tags_for=_item_tags,
            )
        except DataUnavailableError as e:
            return self._fallback(key, kind, timeframe, e)

    async def categories(self, timeframe: Timeframe = Timeframe.WEEK) -> TrendingCategories:
        """Hottest / rising / new shows and popular / breaking-out artists."""
        shows, artists = await asyncio.gather(
            self.rank(TrendingKind.SHOWS, timeframe, CATEGORY_POOL_SIZE),
            self.rank(TrendingKind.ARTISTS, timeframe, CATEGORY_POOL_SIZE),
        )
        new_since = self._clock() - timedelta(days=NEW_AND_NOTEWORTHY_DAYS)

        return TrendingCategories(
            hottest=shows.items[:5],
            rising=shows.items[5:10],
            new_and_noteworthy=[
                s for s in shows.items if s.item.created_at >= new_since
            ][:5],
            popular_artists=artists.items[:8],
            breaking_out=[
                a for a in artists.items if a.item.followers < BREAKING_OUT_MAX_FOLLOWERS
            ][:6],
            degraded=shows.degraded or artists.degraded,
        )

    async def warm_up(self, limit: int, timeframes: Sequence[Timeframe] = tuple(Timeframe)) -> int:
        """Precompute every (kind, timeframe) list at ``limit``; returns lists warmed."""
        loaders = [
            (
                self.cache_key(kind, timeframe, limit),
                lambda kind=kind, timeframe=timeframe: self._compute(kind, timeframe, limit),
                self._ttl,
                [TRENDING_TAG, kind.value],
            )
            for kind in TrendingKind
            for timeframe in timeframes
        ]
        return await self._cache.warm_up(loaders)

    def score_candidates(
        self,
        candidates: List[CandidateItem],
        now: Optional[datetime] = None,
    ) -> List[ScoredItem]:
        """
        Score, sort by base score, apply boosts, then sort by final score.
        Candidates that fail to score are logged and excluded.
        """
        now = now or self._clock()
        scored: List[ScoredItem] = []
        for item in candidates:
            item = self._with_live_votes(item)
            try:
                breakdown = score_breakdown(item, self._weights, now)
            except ScoreComputationError as e:
                logger.warning(f"Excluding candidate from ranking: {e.message}")
                continue
            base = breakdown["total"]
            scored.append(
                ScoredItem(item=item, score=base, base_score=base, score_breakdown=breakdown)
            )

        scored.sort(key=_rank_key)

        for entry in scored:
            boosted = special_event_boost(entry.item, entry.base_score, self._boost_rules, now)
            if boosted != entry.base_score:
                entry.score = boosted
                entry.boost_factor = boost_factor(entry.item, self._boost_rules, now)
                entry.score_breakdown["boost"] = entry.boost_factor

        scored.sort(key=_rank_key)
        return scored

    async def _compute(
        self,
        kind: TrendingKind,
        timeframe: Timeframe,
        limit: int,
    ) -> TrendingResult:
        now = self._clock()
        candidate_filter = CandidateFilter(
            since=now - timedelta(days=timeframe.days),
            limit=limit * self._candidate_multiplier,
            upcoming_only=kind is TrendingKind.SHOWS,
        )
        candidates = await self._candidates.fetch(kind.item_kind, candidate_filter)
        ranked = self.score_candidates(candidates, now)

        logger.debug(
            f"Ranked {len(candidates)} {kind.value} candidates -> "
            f"returning {min(limit, len(ranked))} items"
        )
        return TrendingResult(
            kind=kind,
            timeframe=timeframe,
            items=ranked[:limit],
            computed_at=now,
        )

    def _with_live_votes(self, item: CandidateItem) -> CandidateItem:
        """
        Merge the aggregator's windowed counters into the datastore snapshot.

        The aggregator only sees votes cast since this process started, so
        each counter takes the larger of the two sources.
        """
        if self._vote_stats is None:
            return item
        stats = self._vote_stats.vote_stats(item.tag)
        if stats is None:
            return item

        vote_count = max(item.vote_count, stats.vote_count)
        upvotes = max(item.vote_count * item.positive_ratio, float(stats.upvotes))
        return item.model_copy(
            update={
                "vote_count": vote_count,
                "positive_ratio": min(1.0, upvotes / vote_count) if vote_count else item.positive_ratio,
                "vote_velocity": max(item.vote_velocity, stats.vote_velocity),
            }
        )

    def _fallback(
        self,
        key: str,
        kind: TrendingKind,
        timeframe: Timeframe,
        error: DataUnavailableError,
    ) -> TrendingResult:
        stale, found = self._cache.get_stale(key)
        if found:
            logger.warning(f"Serving stale trending list: key={key}, error={error.message}")
            DEGRADED_RESPONSES.labels(operation="trending", reason="stale").inc()
            return stale.model_copy(update={"stale": True, "warning": error.message})

        logger.warning(f"Trending unavailable, returning empty list: key={key}, error={error.message}")
        DEGRADED_RESPONSES.labels(operation="trending", reason="empty").inc()
        return TrendingResult(
            kind=kind,
            timeframe=timeframe,
            degraded=True,
            warning=error.message,
        )
