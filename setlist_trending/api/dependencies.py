"""
Dependency injection container.
Creates and wires all application components.
Uses FastAPI's dependency injection system.
"""
from functools import lru_cache

from setlist_trending.config import get_settings
from setlist_trending.core.cache import CacheLayer
from setlist_trending.core.circuit_breaker import CircuitBreaker
from setlist_trending.repositories.memory import (
    InMemoryCandidateRepository,
    InMemoryEngagementRepository,
    InMemoryUserProfileRepository,
)
from setlist_trending.services.candidates import CandidateSource
from setlist_trending.services.discovery import DiscoveryService
from setlist_trending.services.recommendations import RecommendationConfig, RecommendationEngine
from setlist_trending.services.scoring import default_boost_rules, weights_from_settings
from setlist_trending.services.trending import TrendingRanker
from setlist_trending.services.vote_aggregator import VoteAggregator


# =============================================================================
# Singleton Instances (Application Lifetime)
# =============================================================================


@lru_cache()
def get_candidate_repository() -> InMemoryCandidateRepository:
    """Get singleton candidate repository."""
    return InMemoryCandidateRepository()


@lru_cache()
def get_profile_repository() -> InMemoryUserProfileRepository:
    """Get singleton user profile repository."""
    return InMemoryUserProfileRepository()


@lru_cache()
def get_engagement_repository() -> InMemoryEngagementRepository:
    """Get singleton engagement repository."""
    return InMemoryEngagementRepository()


@lru_cache()
def get_cache_layer() -> CacheLayer:
    """Get the process-wide ranking cache."""
    settings = get_settings()
    return CacheLayer(
        l1_max_entries=settings.CACHE_L1_MAX_ENTRIES,
        l2_max_entries=settings.CACHE_L2_MAX_ENTRIES,
        l1_max_entry_bytes=settings.CACHE_L1_MAX_ENTRY_BYTES,
        default_ttl_seconds=settings.TRENDING_TTL_SEC,
        stale_grace_seconds=settings.CACHE_STALE_GRACE_SEC,
    )


@lru_cache()
def get_candidate_circuit_breaker() -> CircuitBreaker:
    """Get singleton circuit breaker for the candidate store."""
    settings = get_settings()
    return CircuitBreaker(
        name=CandidateSource.SOURCE_NAME,
        failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout_sec=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SEC,
    )


@lru_cache()
def get_candidate_source() -> CandidateSource:
    settings = get_settings()
    return CandidateSource(
        repository=get_candidate_repository(),
        circuit_breaker=get_candidate_circuit_breaker(),
        timeout_seconds=settings.CANDIDATE_FETCH_TIMEOUT_MS / 1000,
    )


@lru_cache()
def get_vote_aggregator() -> VoteAggregator:
    """Get singleton vote aggregator."""
    settings = get_settings()
    return VoteAggregator(
        cache=get_cache_layer(),
        window_days=settings.VOTE_WINDOW_DAYS,
        debounce_seconds=settings.VOTE_DEBOUNCE_MS / 1000,
        max_wait_seconds=settings.VOTE_DEBOUNCE_MAX_WAIT_MS / 1000,
    )


@lru_cache()
def get_trending_ranker() -> TrendingRanker:
    """Get singleton trending ranker."""
    settings = get_settings()
    return TrendingRanker(
        candidates=get_candidate_source(),
        cache=get_cache_layer(),
        weights=weights_from_settings(settings),
        boost_rules=default_boost_rules(settings),
        vote_stats=get_vote_aggregator(),
        ttl_seconds=settings.TRENDING_TTL_SEC,
        candidate_multiplier=settings.TRENDING_CANDIDATE_MULTIPLIER,
    )


@lru_cache()
def get_recommendation_engine() -> RecommendationEngine:
    """Get singleton recommendation engine."""
    return RecommendationEngine(
        candidates=get_candidate_source(),
        profiles=get_profile_repository(),
        engagements=get_engagement_repository(),
        ranker=get_trending_ranker(),
        cache=get_cache_layer(),
        config=RecommendationConfig.from_settings(get_settings()),
    )


# =============================================================================
# Request-Scoped Dependencies (Per-Request Lifetime)
# =============================================================================


def get_discovery_service() -> DiscoveryService:
    """
    Get discovery service with all dependencies wired.
    This is the entry point for every v1 endpoint.
    """
    return DiscoveryService(
        ranker=get_trending_ranker(),
        recommender=get_recommendation_engine(),
        aggregator=get_vote_aggregator(),
        cache=get_cache_layer(),
        max_limit=get_settings().MAX_LIMIT,
    )


# =============================================================================
# Cleanup Functions
# =============================================================================


def clear_caches() -> None:
    """Clear all cached singleton instances (for testing)."""
    get_candidate_repository.cache_clear()
    get_profile_repository.cache_clear()
    get_engagement_repository.cache_clear()
    get_cache_layer.cache_clear()
    get_candidate_circuit_breaker.cache_clear()
    get_candidate_source.cache_clear()
    get_vote_aggregator.cache_clear()
    get_trending_ranker.cache_clear()
    get_recommendation_engine.cache_clear()
