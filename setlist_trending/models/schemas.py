"""
Domain models using Pydantic.
Explicit typed shapes at the datastore boundary: unknown fields are
ignored and missing numeric fields are defaulted before they can reach
the scoring math.
"""
import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================


class ItemKind(str, Enum):
    """Kind of rankable entity."""
    ARTIST = "artist"
    SHOW = "show"


class TrendingKind(str, Enum):
    """Trending list selector exposed to callers."""
    SHOWS = "shows"
    ARTISTS = "artists"

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind.SHOW if self is TrendingKind.SHOWS else ItemKind.ARTIST


class Timeframe(str, Enum):
    """Trending window."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def days(self) -> int:
        return {"day": 1, "week": 7, "month": 30}[self.value]


class RecommendationType(str, Enum):
    ARTISTS = "artists"
    SHOWS = "shows"
    MIXED = "mixed"

    @property
    def item_kinds(self) -> List[ItemKind]:
        if self is RecommendationType.ARTISTS:
            return [ItemKind.ARTIST]
        if self is RecommendationType.SHOWS:
            return [ItemKind.SHOW]
        return [ItemKind.ARTIST, ItemKind.SHOW]


class RecommendationTimeframe(str, Enum):
    UPCOMING = "upcoming"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    ALL = "all"

    @property
    def horizon_days(self) -> Optional[int]:
        """Days ahead an event may be; None means unbounded."""
        return {"this_week": 7, "this_month": 30}.get(self.value)


class RecommendationSource(str, Enum):
    CONTENT = "content"
    COLLABORATIVE = "collaborative"
    POPULAR = "popular"


class ActivityLevel(str, Enum):
    INACTIVE = "inactive"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def multiplier(self) -> float:
        return {"high": 1.2, "medium": 1.0, "low": 0.8, "inactive": 0.5}[self.value]


# =============================================================================
# Domain Models (Internal)
# =============================================================================


class ItemRef(BaseModel):
    """Identity of an artist or show, usable as a dict key."""

    model_config = ConfigDict(frozen=True)

    kind: ItemKind
    id: str

    @property
    def tag(self) -> str:
        return f"{self.kind.value}:{self.id}"


class CandidateItem(BaseModel):
    """
    Artist or show snapshot being ranked.
    Immutable for the duration of a ranking pass.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Unique item identifier")
    kind: ItemKind
    name: str = Field(default="", description="Display name")
    artist_id: Optional[str] = Field(default=None, description="Performing artist (shows)")
    artist_name: Optional[str] = None
    venue_name: Optional[str] = None
    verified: bool = Field(default=False, description="Artist is verified")
    followers: int = Field(default=0, ge=0, description="Artist followers")
    vote_count: int = Field(default=0, ge=0, description="Total up + down votes")
    positive_ratio: float = Field(default=0.5, ge=0, le=1, description="Upvotes / total votes")
    vote_velocity: float = Field(default=0.0, ge=0, description="Votes per day in window")
    genres: List[str] = Field(default_factory=list)
    event_date: Optional[datetime] = Field(
        default=None,
        description="Show date, or an artist's next show",
    )
    created_at: datetime = Field(..., description="Creation timestamp")

    @field_validator("followers", "vote_count", "vote_velocity", mode="before")
    @classmethod
    def _missing_count_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("positive_ratio", mode="before")
    @classmethod
    def _missing_ratio_is_neutral(cls, value: Any) -> Any:
        return 0.5 if value is None else value

    @field_validator("genres", mode="before")
    @classmethod
    def _missing_genres_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("event_date", "created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def ref(self) -> ItemRef:
        return ItemRef(kind=self.kind, id=self.id)

    @property
    def tag(self) -> str:
        return self.ref.tag

    def days_until_event(self, now: datetime) -> Optional[float]:
        """Fractional days until the event; negative for past events."""
        if self.event_date is None:
            return None
        return (self.event_date - now).total_seconds() / 86400


class CandidateFilter(BaseModel):
    """Cheap pre-filter applied by the datastore before scoring."""

    since: datetime = Field(..., description="Start of the activity window")
    until: Optional[datetime] = Field(default=None, description="Latest event date")
    limit: int = Field(..., ge=1, description="Maximum rows to return")
    upcoming_only: bool = True
    genres: List[str] = Field(default_factory=list, description="Match any of these")


class TrendingWeights(BaseModel):
    """Weights of the four trending terms."""

    vote: float = 0.4
    velocity: float = 0.3
    popularity: float = 0.2
    urgency: float = 0.1
    decay_factor: float = 0.1
    default_days_until_event: float = 30.0


class BoostRule(BaseModel):
    """
    Special-event boost predicate. Every configured condition must hold;
    keyword conditions match case-insensitive substrings.
    """

    name: str
    factor: float = Field(..., gt=1.0)
    name_keywords: List[str] = Field(default_factory=list)
    venue_keywords: List[str] = Field(default_factory=list)
    artist_names: List[str] = Field(default_factory=list)
    require_verified: bool = False
    within_days: Optional[float] = Field(default=None, ge=0)

    def matches(self, item: CandidateItem, now: datetime) -> bool:
        if self.name_keywords and not _contains_any(item.name, self.name_keywords):
            return False
        if self.venue_keywords and not _contains_any(item.venue_name, self.venue_keywords):
            return False
        if self.artist_names:
            artist = item.artist_name if item.kind is ItemKind.SHOW else item.name
            if not _contains_any(artist, self.artist_names):
                return False
        if self.require_verified and not item.verified:
            return False
        if self.within_days is not None:
            days = item.days_until_event(now)
            if days is None or days < 0 or days > self.within_days:
                return False
        return True


def _contains_any(text: Optional[str], needles: List[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles)


class ScoredItem(BaseModel):
    """Ranked item with computed score."""

    item: CandidateItem
    score: float
    base_score: float
    boost_factor: float = 1.0
    score_breakdown: Dict[str, float] = Field(default_factory=dict)


class UserFeatureProfile(BaseModel):
    """
    User features produced by the analytics ETL.
    Read-only for the engine.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., min_length=1)
    genre_preference_weights: Dict[str, float] = Field(default_factory=dict)
    behavior_vector: List[float] = Field(default_factory=list)
    activity_level: ActivityLevel = ActivityLevel.LOW
    prediction_confidence: float = Field(default=0.1, ge=0, le=1)

    @field_validator("genre_preference_weights", mode="before")
    @classmethod
    def _clamp_weights(cls, value: Any) -> Any:
        if value is None:
            return {}
        return {
            genre: min(1.0, max(0.0, float(weight)))
            for genre, weight in dict(value).items()
            if weight is not None and math.isfinite(float(weight))
        }

    @field_validator("behavior_vector", mode="before")
    @classmethod
    def _missing_vector_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("activity_level", mode="before")
    @classmethod
    def _unknown_activity_is_low(cls, value: Any) -> Any:
        valid = {level.value for level in ActivityLevel}
        return value if value in valid or isinstance(value, ActivityLevel) else "low"


class VoteStats(BaseModel):
    """Windowed vote counters for one item."""

    vote_count: int = 0
    upvotes: int = 0
    positive_ratio: float = 0.5
    vote_velocity: float = 0.0


class Recommendation(BaseModel):
    """Single recommended item."""

    item_id: str
    kind: ItemKind
    score: float = Field(..., ge=0, le=1)
    confidence: float = Field(..., ge=0, le=1)
    reason: str
    source: RecommendationSource

    @property
    def ref(self) -> ItemRef:
        return ItemRef(kind=self.kind, id=self.item_id)


# =============================================================================
# API Models (External)
# =============================================================================


class VoteDelta(BaseModel):
    up: int = Field(default=0, ge=0)
    down: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.up + self.down


class VoteSignal(BaseModel):
    """A vote was cast on a predicted setlist song."""

    setlist_song_id: str
    show_id: str
    artist_id: str
    delta: VoteDelta
    at: datetime = Field(default_factory=utcnow)

    @field_validator("at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class TrendingResult(BaseModel):
    """Ranked trending list; the cached unit for one (kind, timeframe, limit)."""

    kind: TrendingKind
    timeframe: Timeframe
    items: List[ScoredItem] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=utcnow)
    stale: bool = Field(default=False, description="Served past TTL after a fetch failure")
    degraded: bool = Field(default=False, description="Empty because data was unavailable")
    warning: Optional[str] = None


class TrendingCategories(BaseModel):
    """Curated slices of the trending lists."""

    hottest: List[ScoredItem] = Field(default_factory=list)
    rising: List[ScoredItem] = Field(default_factory=list)
    new_and_noteworthy: List[ScoredItem] = Field(default_factory=list)
    popular_artists: List[ScoredItem] = Field(default_factory=list)
    breaking_out: List[ScoredItem] = Field(default_factory=list)
    degraded: bool = False


class RecommendationOptions(BaseModel):
    """Request parameters for recommendations."""

    type: RecommendationType = RecommendationType.MIXED
    limit: int = Field(default=10, ge=1, le=50)
    diversity: float = Field(default=0.7, ge=0, le=1, description="0 = similar, 1 = diverse")
    timeframe: RecommendationTimeframe = RecommendationTimeframe.UPCOMING
    exclude_engaged: bool = False

    def window(self, now: datetime) -> Optional[datetime]:
        days = self.timeframe.horizon_days
        return None if days is None else now + timedelta(days=days)


class RecommendationResult(BaseModel):
    """Recommendations for one user."""

    user_id: Optional[str] = None
    personalized: bool
    recommendations: List[Recommendation] = Field(default_factory=list)
    stages: Dict[str, str] = Field(default_factory=dict, description="Stage -> status")
    generated_at: datetime = Field(default_factory=utcnow)
    degraded: bool = False
    warning: Optional[str] = None


class SimilarUsersRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    limit: int = Field(default=5, ge=1, le=20)
    similarity_threshold: float = Field(default=0.7, ge=0, le=1)


class SimilarUser(BaseModel):
    user_id: str
    similarity: float


class SimilarUsersResponse(BaseModel):
    similar_users: List[SimilarUser]
    algorithm: str = "cosine_similarity"
    threshold: float


class InvalidationResponse(BaseModel):
    scope: str
    invalidated: int


class VoteAccepted(BaseModel):
    accepted: bool = True
    show_id: str
    pending_invalidations: int


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: Dict[str, Any] = Field(..., description="Error details")
