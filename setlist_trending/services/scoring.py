"""
Score functions for trending and content matching.
Pure functions over CandidateItem snapshots - no state.
"""
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from setlist_trending.config.settings import Settings
from setlist_trending.core.exceptions import ScoreComputationError
from setlist_trending.models.schemas import (
    BoostRule,
    CandidateItem,
    TrendingWeights,
    utcnow,
)


# =============================================================================
# Trending Terms (Strategy Pattern)
# =============================================================================


class TrendingTerm(ABC):
    """One additive term of the trending score."""

    @abstractmethod
    def calculate(
        self,
        item: CandidateItem,
        weights: TrendingWeights,
        now: datetime,
    ) -> Tuple[float, str]:
        """
        Calculate this term's contribution.

        Returns:
            Tuple of (value, term_name)
        """
        pass


class VoteActivityTerm(TrendingTerm):
    """Total votes scaled by how positive they are."""

    def calculate(self, item, weights, now):
        return item.vote_count * item.positive_ratio * weights.vote, "votes"


class VelocityTerm(TrendingTerm):
    """Recent voting rate."""

    def calculate(self, item, weights, now):
        return max(0.0, item.vote_velocity) * weights.velocity, "velocity"


class PopularityTerm(TrendingTerm):
    """Log-scaled follower count so large artists do not swamp activity."""

    def calculate(self, item, weights, now):
        return math.log(max(0, item.followers) + 1) * weights.popularity, "popularity"


class UrgencyTerm(TrendingTerm):
    """Exponential boost as the event approaches; past events saturate at one day."""

    def calculate(self, item, weights, now):
        days = item.days_until_event(now)
        if days is None:
            days = weights.default_days_until_event
        decay = math.exp(-weights.decay_factor * max(1.0, days))
        return decay * weights.urgency, "urgency"


DEFAULT_TERMS: Sequence[TrendingTerm] = (
    VoteActivityTerm(),
    VelocityTerm(),
    PopularityTerm(),
    UrgencyTerm(),
)


def weights_from_settings(settings: Settings) -> TrendingWeights:
    return TrendingWeights(
        vote=settings.TRENDING_VOTE_WEIGHT,
        velocity=settings.TRENDING_VELOCITY_WEIGHT,
        popularity=settings.TRENDING_POPULARITY_WEIGHT,
        urgency=settings.TRENDING_URGENCY_WEIGHT,
        decay_factor=settings.TRENDING_DECAY_FACTOR,
        default_days_until_event=settings.TRENDING_DEFAULT_DAYS_UNTIL_EVENT,
    )


def score_breakdown(
    item: CandidateItem,
    weights: Optional[TrendingWeights] = None,
    now: Optional[datetime] = None,
    terms: Sequence[TrendingTerm] = DEFAULT_TERMS,
) -> Dict[str, float]:
    """Per-term contributions plus their total under ``"total"``."""
    weights = weights or TrendingWeights()
    now = now or utcnow()

    breakdown: Dict[str, float] = {}
    total = 0.0
    for term in terms:
        value, name = term.calculate(item, weights, now)
        breakdown[name] = value
        total += value

    if not math.isfinite(total):
        raise ScoreComputationError(item.id, f"non-finite score {total!r}")
    breakdown["total"] = max(0.0, total)
    return breakdown


def trending_score(
    item: CandidateItem,
    weights: Optional[TrendingWeights] = None,
    now: Optional[datetime] = None,
) -> float:
    """
    Weighted sum of vote activity, velocity, popularity and urgency.

    Raises:
        ScoreComputationError: If the item's features yield a non-finite score
    """
    return score_breakdown(item, weights, now)["total"]


# =============================================================================
# Special Event Boost
# =============================================================================


def default_boost_rules(settings: Settings) -> List[BoostRule]:
    """Festival, landmark venue, headliner and verified-soon rules."""
    return [
        BoostRule(
            name="festival",
            factor=settings.BOOST_FESTIVAL_FACTOR,
            name_keywords=["festival", "fest"],
        ),
        BoostRule(
            name="landmark_venue",
            factor=settings.BOOST_LANDMARK_VENUE_FACTOR,
            venue_keywords=["madison square garden", "wembley"],
        ),
        BoostRule(
            name="headliner",
            factor=settings.BOOST_HEADLINER_FACTOR,
            artist_names=["taylor swift", "beyoncé", "drake", "adele", "billie eilish"],
        ),
        BoostRule(
            name="verified_soon",
            factor=settings.BOOST_VERIFIED_FACTOR,
            require_verified=True,
            within_days=settings.BOOST_VERIFIED_WITHIN_DAYS,
        ),
    ]


def boost_factor(
    item: CandidateItem,
    rules: Sequence[BoostRule],
    now: Optional[datetime] = None,
) -> float:
    """Factor of the first matching rule, 1.0 when none match."""
    now = now or utcnow()
    for rule in rules:
        if rule.matches(item, now):
            return rule.factor
    return 1.0


def special_event_boost(
    item: CandidateItem,
    base_score: float,
    rules: Sequence[BoostRule],
    now: Optional[datetime] = None,
) -> float:
    """Boosted score; depends only on its inputs, so reapplying is stable."""
    return base_score * boost_factor(item, rules, now)


# =============================================================================
# Content Matching
# =============================================================================


def content_match_score(
    item: CandidateItem,
    genre_preferences: Mapping[str, float],
) -> float:
    """Summed preference weight of matching genres over the item's genre count."""
    if not item.genres:
        return 0.0
    total = sum(
        genre_preferences[genre] for genre in item.genres if genre in genre_preferences
    )
    return total / len(item.genres)
