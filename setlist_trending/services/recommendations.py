"""
Recommendation engine.
Hybrid of content-based filtering (genre preferences) and collaborative
filtering (behaviorally similar users), merged by the user's prediction
confidence and re-ranked for diversity. New users get popular items.

Pipeline per request:
    ColdStart -> ContentScoring + CollaborativeScoring -> Merge -> Diversify
Each scoring stage yields a StageResult; a failed stage degrades the
response instead of failing it.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from setlist_trending.config.settings import Settings
from setlist_trending.core.cache import CacheLayer
from setlist_trending.core.exceptions import DataUnavailableError
from setlist_trending.core.results import StageResult, StageStatus
from setlist_trending.core.telemetry import DEGRADED_RESPONSES
from setlist_trending.models.interfaces import EngagementRepository, UserProfileRepository
from setlist_trending.models.schemas import (
    CandidateFilter,
    CandidateItem,
    ItemKind,
    ItemRef,
    Recommendation,
    RecommendationOptions,
    RecommendationResult,
    RecommendationSource,
    RecommendationTimeframe,
    SimilarUser,
    Timeframe,
    TrendingKind,
    UserFeatureProfile,
    utcnow,
)
from setlist_trending.services.candidates import CandidateSource
from setlist_trending.services.scoring import content_match_score
from setlist_trending.services.similarity import find_nearest_neighbors
from setlist_trending.services.trending import TrendingRanker

logger = logging.getLogger(__name__)

RECOMMENDATIONS_TAG = "recommendations"
TOP_GENRES = 3


class RecommendationConfig(BaseModel):
    """Tunable constants of the hybrid recommender."""

    neighbors_k: int = 10
    neighbor_threshold: float = 0.6
    high_confidence_threshold: float = 0.7
    high_confidence_content_weight: float = 0.6
    low_confidence_content_weight: float = 0.4
    cold_start_confidence: float = 0.5
    content_confidence: float = 0.8
    collaborative_confidence: float = 0.7
    candidate_multiplier: int = 2
    stage_timeout_seconds: float = 1.0
    profile_timeout_seconds: float = 0.2
    ttl_seconds: float = 600

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecommendationConfig":
        return cls(
            neighbors_k=settings.COLLABORATIVE_NEIGHBORS,
            neighbor_threshold=settings.COLLABORATIVE_THRESHOLD,
            high_confidence_threshold=settings.HIGH_CONFIDENCE_THRESHOLD,
            high_confidence_content_weight=settings.HIGH_CONFIDENCE_CONTENT_WEIGHT,
            low_confidence_content_weight=settings.LOW_CONFIDENCE_CONTENT_WEIGHT,
            cold_start_confidence=settings.COLD_START_CONFIDENCE,
            content_confidence=settings.CONTENT_CONFIDENCE,
            collaborative_confidence=settings.COLLABORATIVE_CONFIDENCE,
            candidate_multiplier=settings.TRENDING_CANDIDATE_MULTIPLIER,
            stage_timeout_seconds=settings.RECOMMENDATION_STAGE_TIMEOUT_MS / 1000,
            profile_timeout_seconds=settings.PROFILE_FETCH_TIMEOUT_MS / 1000,
            ttl_seconds=settings.RECOMMENDATION_TTL_SEC,
        )


# =============================================================================
# Pure helpers
# =============================================================================


def source_weights(profile: UserFeatureProfile, config: RecommendationConfig) -> Tuple[float, float]:
    """(content_weight, collaborative_weight) for this user's confidence."""
    if profile.prediction_confidence > config.high_confidence_threshold:
        content_weight = config.high_confidence_content_weight
    else:
        content_weight = config.low_confidence_content_weight
    return content_weight, 1.0 - content_weight


def merge_candidates(
    content: List[Recommendation],
    collaborative: List[Recommendation],
    content_weight: float,
    collaborative_weight: float,
) -> List[Recommendation]:
    """Weight each source, then keep the best-scoring occurrence per item."""
    weighted = [
        rec.model_copy(update={"score": rec.score * content_weight}) for rec in content
    ] + [
        rec.model_copy(update={"score": rec.score * collaborative_weight}) for rec in collaborative
    ]

    best: Dict[ItemRef, Recommendation] = {}
    for rec in weighted:
        current = best.get(rec.ref)
        if current is None or rec.score > current.score:
            best[rec.ref] = rec
    return list(best.values())


def diversify(
    candidates: List[Recommendation],
    diversity: float,
    limit: int,
) -> List[Recommendation]:
    """
    Greedy re-ranking that penalizes kinds already selected.

    adjusted = score * (1 - diversity * same_kind_fraction); the best raw
    score is taken first. ``diversity == 0`` reduces to a score sort.
    """
    remaining = sorted(candidates, key=lambda r: (-r.score, r.kind.value, r.item_id))
    selected: List[Recommendation] = []
    kind_counts: Dict[ItemKind, int] = {}

    while remaining and len(selected) < limit:
        best_index = 0
        if selected and diversity > 0:
            best_adjusted = None
            for index, rec in enumerate(remaining):
                same_kind_fraction = kind_counts.get(rec.kind, 0) / len(selected)
                adjusted = rec.score * (1 - diversity * same_kind_fraction)
                # remaining is pre-sorted, so strict > keeps the raw-score order on ties
                if best_adjusted is None or adjusted > best_adjusted:
                    best_index, best_adjusted = index, adjusted

        pick = remaining.pop(best_index)
        selected.append(pick)
        kind_counts[pick.kind] = kind_counts.get(pick.kind, 0) + 1

    return selected


def _content_reason(item: CandidateItem, preferences: Dict[str, float]) -> str:
    matching = sorted(
        (g for g in set(item.genres) if g in preferences),
        key=lambda g: (-preferences[g], g),
    )
    return f"Matches your preference for {' and '.join(matching[:2])}"


def _collaborative_reason(count: int) -> str:
    if count == 1:
        return "1 similar user follows this"
    return f"{count} similar users follow this"


def _recommendation_tags(result: RecommendationResult) -> List[str]:
    return [rec.ref.tag for rec in result.recommendations]


def _popular_timeframe(timeframe: RecommendationTimeframe) -> Timeframe:
    if timeframe is RecommendationTimeframe.THIS_MONTH:
        return Timeframe.MONTH
    return Timeframe.WEEK


# =============================================================================
# Engine
# =============================================================================


class RecommendationEngine:
    """
    Personalized recommendations for artists and shows.

    Usage:
        engine = RecommendationEngine(candidates, profiles, engagements, ranker, cache)
        result = await engine.get_recommendations("user_1", RecommendationOptions(limit=5))
    """

    def __init__(
        self,
        candidates: CandidateSource,
        profiles: UserProfileRepository,
        engagements: EngagementRepository,
        ranker: TrendingRanker,
        cache: CacheLayer,
        config: Optional[RecommendationConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._candidates = candidates
        self._profiles = profiles
        self._engagements = engagements
        self._ranker = ranker
        self._cache = cache
        self._config = config or RecommendationConfig()
        self._clock = clock

    @staticmethod
    def cache_key(user_id: str, options: RecommendationOptions) -> str:
        return (
            f"recommendations:{user_id}:{options.type.value}:{options.limit}:"
            f"{options.diversity:.2f}:{options.timeframe.value}:{int(options.exclude_engaged)}"
        )

    async def get_recommendations(
        self,
        user_id: str,
        options: RecommendationOptions,
    ) -> RecommendationResult:
        """Load the user's profile and return cached or fresh recommendations."""
        try:
            profile = await self._load_profile(user_id)
        except DataUnavailableError as e:
            logger.warning(f"Profile unavailable, serving popular items: user={user_id}, error={e.message}")
            result = await self.recommend(None, options)
            return result.model_copy(
                update={"user_id": user_id, "degraded": True, "warning": e.message}
            )

        if profile is None:
            result = await self.recommend(None, options)
            return result.model_copy(update={"user_id": user_id})

        key = self.cache_key(user_id, options)
        result = await self._cache.get_or_compute(
            key,
            lambda: self.recommend(profile, options),
            ttl_seconds=self._config.ttl_seconds,
            tags=[RECOMMENDATIONS_TAG, f"user:{user_id}"],
            tags_for=_recommendation_tags,
        )
        if result.degraded:
            # Serve it, but let the next request retry the failed stage
            self._cache.delete(key)
        return result

    async def recommend(
        self,
        profile: Optional[UserFeatureProfile],
        options: RecommendationOptions,
    ) -> RecommendationResult:
        """Run the pipeline for a profile; ``None`` takes the cold-start path."""
        if profile is None:
            popular = await self._popular(options)
            return RecommendationResult(
                personalized=False,
                recommendations=popular,
                stages={"cold_start": StageStatus.OK.value},
            )

        content, collaborative = await asyncio.gather(
            self._run_stage("content", lambda: self._content_candidates(profile, options)),
            self._run_stage("collaborative", lambda: self._collaborative_candidates(profile, options)),
        )
        stages = {
            content.stage: content.status.value,
            collaborative.stage: collaborative.status.value,
        }

        if not content.usable and not collaborative.usable:
            logger.warning(f"All scoring stages failed, serving popular items: user={profile.user_id}")
            DEGRADED_RESPONSES.labels(operation="recommendations", reason="popular").inc()
            popular = await self._popular(options)
            return RecommendationResult(
                user_id=profile.user_id,
                personalized=False,
                recommendations=popular,
                stages=stages,
                degraded=True,
                warning=str(content.error),
            )

        content_weight, collaborative_weight = source_weights(profile, self._config)
        merged = merge_candidates(
            content.value, collaborative.value, content_weight, collaborative_weight
        )
        recommendations = diversify(merged, options.diversity, options.limit)

        impaired = [r for r in (content, collaborative) if r.status is not StageStatus.OK]
        if impaired:
            DEGRADED_RESPONSES.labels(operation="recommendations", reason=impaired[0].stage).inc()

        logger.debug(
            f"Recommendations: user={profile.user_id}, content={len(content.value)}, "
            f"collaborative={len(collaborative.value)}, returned={len(recommendations)}"
        )
        return RecommendationResult(
            user_id=profile.user_id,
            personalized=True,
            recommendations=recommendations,
            stages=stages,
            degraded=bool(impaired),
            warning=str(impaired[0].error) if impaired else None,
        )

    async def find_similar_users(
        self,
        user_id: str,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> List[SimilarUser]:
        """Nearest neighbors of a user by behavior vector; empty when the profile store fails."""
        try:
            profile = await self._load_profile(user_id)
            if profile is None or not profile.behavior_vector:
                return []
            pool = await asyncio.wait_for(
                self._profiles.list_profiles(exclude_user_id=user_id),
                timeout=self._config.stage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Similar users unavailable: user={user_id}, error=timeout")
            DEGRADED_RESPONSES.labels(operation="similar_users", reason="timeout").inc()
            return []
        except Exception as e:
            logger.warning(f"Similar users unavailable: user={user_id}, error={e}")
            DEGRADED_RESPONSES.labels(operation="similar_users", reason="error").inc()
            return []
        neighbors = find_nearest_neighbors(
            profile.behavior_vector,
            [(p.user_id, p.behavior_vector) for p in pool],
            k=limit,
            threshold=threshold,
        )
        return [SimilarUser(user_id=n.id, similarity=n.similarity) for n in neighbors]

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _run_stage(
        self,
        name: str,
        stage: Callable[[], Awaitable[StageResult[Recommendation]]],
    ) -> StageResult[Recommendation]:
        try:
            result = await asyncio.wait_for(stage(), timeout=self._config.stage_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Recommendation stage '{name}' timed out")
            return StageResult.failed(name, DataUnavailableError(name, "timeout"))
        except Exception as e:
            logger.warning(f"Recommendation stage '{name}' failed: {e}")
            return StageResult.failed(name, e)
        if result.status is StageStatus.DEGRADED:
            logger.warning(f"Recommendation stage '{name}' degraded: {result.error}")
        return result

    async def _content_candidates(
        self,
        profile: UserFeatureProfile,
        options: RecommendationOptions,
    ) -> StageResult[Recommendation]:
        preferences = profile.genre_preference_weights
        if not preferences:
            return StageResult.ok("content", [])

        now = self._clock()
        top_genres = [
            genre
            for genre, _ in sorted(preferences.items(), key=lambda kv: (-kv[1], kv[0]))[:TOP_GENRES]
        ]
        unbounded = options.timeframe is RecommendationTimeframe.ALL
        candidate_filter = CandidateFilter(
            since=now - timedelta(days=365) if unbounded else now,
            until=options.window(now),
            limit=options.limit * self._config.candidate_multiplier,
            upcoming_only=not unbounded,
            genres=top_genres,
        )

        fetched = await asyncio.gather(
            *(self._candidates.fetch(kind, candidate_filter) for kind in options.type.item_kinds),
            return_exceptions=True,
        )
        errors = [batch for batch in fetched if isinstance(batch, BaseException)]
        if len(errors) == len(fetched):
            raise errors[0]
        batches = [batch for batch in fetched if not isinstance(batch, BaseException)]

        excluded = set()
        if options.exclude_engaged:
            try:
                engagements = await self._engagements.get_engagements([profile.user_id])
                excluded = set(engagements.get(profile.user_id, []))
            except Exception as e:
                errors.append(e)

        multiplier = profile.activity_level.multiplier
        recommendations = []
        for item in (item for batch in batches for item in batch):
            if item.ref in excluded:
                continue
            score = min(1.0, content_match_score(item, preferences) * multiplier)
            if score <= 0:
                continue
            recommendations.append(
                Recommendation(
                    item_id=item.id,
                    kind=item.kind,
                    score=score,
                    confidence=self._config.content_confidence,
                    reason=_content_reason(item, preferences),
                    source=RecommendationSource.CONTENT,
                )
            )
        if errors:
            # Partial: a kind could not be fetched or engaged items could not be excluded
            return StageResult.degraded("content", recommendations, errors[0])
        return StageResult.ok("content", recommendations)

    async def _collaborative_candidates(
        self,
        profile: UserFeatureProfile,
        options: RecommendationOptions,
    ) -> StageResult[Recommendation]:
        if not profile.behavior_vector:
            return StageResult.ok("collaborative", [])

        pool = await self._profiles.list_profiles(exclude_user_id=profile.user_id)
        neighbors = find_nearest_neighbors(
            profile.behavior_vector,
            [(p.user_id, p.behavior_vector) for p in pool],
            k=self._config.neighbors_k,
            threshold=self._config.neighbor_threshold,
        )
        if not neighbors:
            return StageResult.ok("collaborative", [])

        engagements = await self._engagements.get_engagements(
            [profile.user_id] + [n.id for n in neighbors]
        )
        own = set(engagements.get(profile.user_id, []))
        kinds = set(options.type.item_kinds)

        counts: Dict[ItemRef, int] = {}
        for neighbor in neighbors:
            for ref in set(engagements.get(neighbor.id, [])):
                if ref in own or ref.kind not in kinds:
                    continue
                counts[ref] = counts.get(ref, 0) + 1

        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0].kind.value, kv[0].id))
        recommendations = [
            Recommendation(
                item_id=ref.id,
                kind=ref.kind,
                score=count / len(neighbors),
                confidence=self._config.collaborative_confidence,
                reason=_collaborative_reason(count),
                source=RecommendationSource.COLLABORATIVE,
            )
            for ref, count in ordered
        ]
        return StageResult.ok("collaborative", recommendations)

    async def _popular(self, options: RecommendationOptions) -> List[Recommendation]:
        """Cold-start fallback: trending items normalized to 0..1 per kind."""
        kinds = [
            TrendingKind.SHOWS if kind is ItemKind.SHOW else TrendingKind.ARTISTS
            for kind in options.type.item_kinds
        ]
        timeframe = _popular_timeframe(options.timeframe)
        results = await asyncio.gather(
            *(self._ranker.rank(kind, timeframe, options.limit) for kind in kinds)
        )

        popular: List[Recommendation] = []
        for result in results:
            top = max((s.score for s in result.items), default=0.0)
            for scored in result.items:
                popular.append(
                    Recommendation(
                        item_id=scored.item.id,
                        kind=scored.item.kind,
                        score=scored.score / top if top > 0 else 0.0,
                        confidence=self._config.cold_start_confidence,
                        reason=f"Trending {scored.item.kind.value}",
                        source=RecommendationSource.POPULAR,
                    )
                )

        popular.sort(key=lambda r: (-r.score, r.kind.value, r.item_id))
        return popular[: options.limit]

    async def _load_profile(self, user_id: str) -> Optional[UserFeatureProfile]:
        try:
            return await asyncio.wait_for(
                self._profiles.get_profile(user_id),
                timeout=self._config.profile_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise DataUnavailableError("profile_store", "timeout") from e
        except Exception as e:
            raise DataUnavailableError("profile_store", str(e)) from e
