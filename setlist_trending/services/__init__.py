"""Services package - business logic layer."""
from .candidates import CandidateSource
from .discovery import DiscoveryService
from .recommendations import RecommendationConfig, RecommendationEngine
from .scoring import (
    PopularityTerm,
    TrendingTerm,
    UrgencyTerm,
    VelocityTerm,
    VoteActivityTerm,
)
from .trending import TrendingRanker
from .vote_aggregator import VoteAggregator

__all__ = [
    "CandidateSource",
    "DiscoveryService",
    "PopularityTerm",
    "RecommendationConfig",
    "RecommendationEngine",
    "TrendingRanker",
    "TrendingTerm",
    "UrgencyTerm",
    "VelocityTerm",
    "VoteActivityTerm",
    "VoteAggregator",
]
