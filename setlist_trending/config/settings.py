"""
Centralized configuration using Pydantic BaseSettings.
All environment variables are loaded here - no hardcoded values.
"""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Setlist Trending Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Telemetry
    ENABLE_OTEL: bool = False  # Default to False to prevent gRPC errors in dev
    ENABLE_PROMETHEUS: bool = True

    # Trending score weights
    TRENDING_VOTE_WEIGHT: float = 0.4
    TRENDING_VELOCITY_WEIGHT: float = 0.3
    TRENDING_POPULARITY_WEIGHT: float = 0.2
    TRENDING_URGENCY_WEIGHT: float = 0.1
    TRENDING_DECAY_FACTOR: float = 0.1
    TRENDING_DEFAULT_DAYS_UNTIL_EVENT: float = 30.0
    TRENDING_CANDIDATE_MULTIPLIER: int = 2

    # Special event boosts
    BOOST_FESTIVAL_FACTOR: float = 1.5
    BOOST_LANDMARK_VENUE_FACTOR: float = 1.3
    BOOST_HEADLINER_FACTOR: float = 1.4
    BOOST_VERIFIED_FACTOR: float = 1.2
    BOOST_VERIFIED_WITHIN_DAYS: int = 7

    # Cache TTLs (seconds)
    TRENDING_TTL_SEC: int = 300  # 5 minutes
    RECOMMENDATION_TTL_SEC: int = 600  # 10 minutes
    CACHE_STALE_GRACE_SEC: int = 600  # Expired entries kept for stale reads

    # Cache tiers
    CACHE_L1_MAX_ENTRIES: int = 1000
    CACHE_L2_MAX_ENTRIES: int = 5000
    CACHE_L1_MAX_ENTRY_BYTES: int = 10240
    CACHE_EVICTION_INTERVAL_SEC: int = 60

    # Timeouts (milliseconds) - Strict budgets per dependency
    CANDIDATE_FETCH_TIMEOUT_MS: int = 500
    PROFILE_FETCH_TIMEOUT_MS: int = 200
    RECOMMENDATION_STAGE_TIMEOUT_MS: int = 1000

    # Circuit Breaker
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SEC: int = 30

    # Vote aggregation
    VOTE_WINDOW_DAYS: float = 7.0
    VOTE_DEBOUNCE_MS: int = 2000
    VOTE_DEBOUNCE_MAX_WAIT_MS: int = 10000

    # Recommendations
    COLLABORATIVE_NEIGHBORS: int = 10
    COLLABORATIVE_THRESHOLD: float = 0.6
    HIGH_CONFIDENCE_THRESHOLD: float = 0.7
    HIGH_CONFIDENCE_CONTENT_WEIGHT: float = 0.6
    LOW_CONFIDENCE_CONTENT_WEIGHT: float = 0.4
    COLD_START_CONFIDENCE: float = 0.5
    CONTENT_CONFIDENCE: float = 0.8
    COLLABORATIVE_CONFIDENCE: float = 0.7

    # Pagination
    DEFAULT_LIMIT: int = 20
    MAX_LIMIT: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - singleton pattern."""
    return Settings()
