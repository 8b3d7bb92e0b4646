"""Models package - domain entities and interfaces."""
from .interfaces import (
    CandidateRepository,
    EngagementRepository,
    UserProfileRepository,
    VoteStatsProvider,
)
from .schemas import (
    ActivityLevel,
    BoostRule,
    CandidateFilter,
    CandidateItem,
    ErrorResponse,
    InvalidationResponse,
    ItemKind,
    ItemRef,
    Recommendation,
    RecommendationOptions,
    RecommendationResult,
    RecommendationSource,
    RecommendationTimeframe,
    RecommendationType,
    ScoredItem,
    SimilarUser,
    SimilarUsersRequest,
    SimilarUsersResponse,
    Timeframe,
    TrendingCategories,
    TrendingKind,
    TrendingResult,
    TrendingWeights,
    UserFeatureProfile,
    VoteAccepted,
    VoteDelta,
    VoteSignal,
    VoteStats,
)

__all__ = [
    # Interfaces
    "CandidateRepository",
    "EngagementRepository",
    "UserProfileRepository",
    "VoteStatsProvider",
    # Schemas
    "ActivityLevel",
    "BoostRule",
    "CandidateFilter",
    "CandidateItem",
    "ErrorResponse",
    "InvalidationResponse",
    "ItemKind",
    "ItemRef",
    "Recommendation",
    "RecommendationOptions",
    "RecommendationResult",
    "RecommendationSource",
    "RecommendationTimeframe",
    "RecommendationType",
    "ScoredItem",
    "SimilarUser",
    "SimilarUsersRequest",
    "SimilarUsersResponse",
    "Timeframe",
    "TrendingCategories",
    "TrendingKind",
    "TrendingResult",
    "TrendingWeights",
    "UserFeatureProfile",
    "VoteAccepted",
    "VoteDelta",
    "VoteSignal",
    "VoteStats",
]
