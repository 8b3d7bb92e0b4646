"""
In-memory repository implementations.
Used for prototyping and testing.
Production would replace these with Postgres-backed implementations.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from setlist_trending.models.schemas import (
    CandidateFilter,
    CandidateItem,
    ItemKind,
    ItemRef,
    UserFeatureProfile,
    utcnow,
)

logger = logging.getLogger(__name__)


def _validated_rows(model, rows: Iterable[Dict[str, Any]]) -> List[Any]:
    """Validate raw datastore rows, skipping malformed ones."""
    valid = []
    for row in rows:
        try:
            valid.append(model.model_validate(row))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} row {row.get('id') or row.get('user_id')}: {e.error_count()} errors")
    return valid


class InMemoryCandidateRepository:
    """
    In-memory implementation of CandidateRepository.
    Simulates the artists/shows tables with their denormalized vote counters.
    """

    def __init__(
        self,
        rows: Optional[Iterable[Dict[str, Any]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._items: Dict[ItemRef, CandidateItem] = {}
        self.load(rows if rows is not None else self._mock_rows())

    def load(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Insert or replace rows; returns how many were accepted."""
        items = _validated_rows(CandidateItem, rows)
        for item in items:
            self._items[item.ref] = item
        return len(items)

    async def fetch_candidates(
        self, kind: ItemKind, candidate_filter: CandidateFilter
    ) -> List[CandidateItem]:
        now = self._clock()
        wanted_genres = set(candidate_filter.genres)

        matches = []
        for item in self._items.values():
            if item.kind is not kind:
                continue
            active = item.created_at >= candidate_filter.since or (
                item.event_date is not None and item.event_date >= candidate_filter.since
            )
            if not active:
                continue
            if candidate_filter.upcoming_only and (item.event_date is None or item.event_date < now):
                continue
            if candidate_filter.until is not None and (
                item.event_date is None or item.event_date > candidate_filter.until
            ):
                continue
            if wanted_genres and not wanted_genres.intersection(item.genres):
                continue
            matches.append(item)

        # Same pre-sort the SQL query uses: most voted first
        matches.sort(key=lambda i: (-i.vote_count, i.id))
        return matches[: candidate_filter.limit]

    def _mock_rows(self) -> List[Dict[str, Any]]:
        """Mock artists and shows relative to the current time."""
        now = self._clock()
        day = timedelta(days=1)

        artists = [
            {
                "id": "a1", "kind": "artist", "name": "Taylor Swift", "verified": True,
                "followers": 950_000, "vote_count": 420, "positive_ratio": 0.9,
                "vote_velocity": 60.0, "genres": ["pop"], "event_date": now + 12 * day,
                "created_at": now - 400 * day,
            },
            {
                "id": "a2", "kind": "artist", "name": "The National", "verified": True,
                "followers": 310_000, "vote_count": 180, "positive_ratio": 0.8,
                "vote_velocity": 22.0, "genres": ["indie", "rock"], "event_date": now + 5 * day,
                "created_at": now - 200 * day,
            },
            {
                "id": "a3", "kind": "artist", "name": "Wet Leg", "verified": False,
                "followers": 45_000, "vote_count": 95, "positive_ratio": 0.85,
                "vote_velocity": 18.0, "genres": ["indie", "post-punk"], "event_date": now + 20 * day,
                "created_at": now - 3 * day,
            },
            {
                "id": "a4", "kind": "artist", "name": "Metallica", "verified": True,
                "followers": 1_200_000, "vote_count": 260, "positive_ratio": 0.7,
                "vote_velocity": 9.0, "genres": ["metal", "rock"], "event_date": now + 45 * day,
                "created_at": now - 900 * day,
            },
            {
                "id": "a5", "kind": "artist", "name": "Khruangbin", "verified": False,
                "followers": 80_000, "vote_count": 40, "positive_ratio": 0.75,
                "vote_velocity": 4.0, "genres": ["psychedelic", "funk"], "event_date": now + 2 * day,
                "created_at": now - 6 * day,
            },
            {
                "id": "a6", "kind": "artist", "name": "Fred again..", "verified": True,
                "followers": 220_000, "vote_count": 130, "positive_ratio": 0.88,
                "vote_velocity": 30.0, "genres": ["electronic"], "event_date": now + 9 * day,
                "created_at": now - 60 * day,
            },
        ]
        shows = [
            {
                "id": "s1", "kind": "show", "name": "Eras Tour - Wembley Night 1",
                "artist_id": "a1", "artist_name": "Taylor Swift", "venue_name": "Wembley Stadium",
                "verified": True, "followers": 950_000, "vote_count": 380, "positive_ratio": 0.92,
                "vote_velocity": 55.0, "genres": ["pop"], "event_date": now + 12 * day,
                "created_at": now - 20 * day,
            },
            {
                "id": "s2", "kind": "show", "name": "Glastonbury Festival - Pyramid Stage",
                "artist_id": "a2", "artist_name": "The National", "venue_name": "Worthy Farm",
                "verified": True, "followers": 310_000, "vote_count": 150, "positive_ratio": 0.8,
                "vote_velocity": 20.0, "genres": ["indie", "rock"], "event_date": now + 5 * day,
                "created_at": now - 10 * day,
            },
            {
                "id": "s3", "kind": "show", "name": "Wet Leg at Brixton",
                "artist_id": "a3", "artist_name": "Wet Leg", "venue_name": "O2 Academy Brixton",
                "verified": False, "followers": 45_000, "vote_count": 70, "positive_ratio": 0.86,
                "vote_velocity": 14.0, "genres": ["indie", "post-punk"], "event_date": now + 20 * day,
                "created_at": now - 2 * day,
            },
            {
                "id": "s4", "kind": "show", "name": "M72 World Tour",
                "artist_id": "a4", "artist_name": "Metallica", "venue_name": "Madison Square Garden",
                "verified": True, "followers": 1_200_000, "vote_count": 210, "positive_ratio": 0.7,
                "vote_velocity": 7.0, "genres": ["metal", "rock"], "event_date": now + 45 * day,
                "created_at": now - 25 * day,
            },
            {
                "id": "s5", "kind": "show", "name": "Khruangbin Live",
                "artist_id": "a5", "artist_name": "Khruangbin", "venue_name": "The Fillmore",
                "verified": False, "followers": 80_000, "vote_count": 35, "positive_ratio": 0.75,
                "vote_velocity": 3.5, "genres": ["psychedelic", "funk"], "event_date": now + 2 * day,
                "created_at": now - 5 * day,
            },
            {
                "id": "s6", "kind": "show", "name": "USB002 Warehouse",
                "artist_id": "a6", "artist_name": "Fred again..", "venue_name": "Printworks",
                "verified": True, "followers": 220_000, "vote_count": 120, "positive_ratio": 0.9,
                "vote_velocity": 28.0, "genres": ["electronic"], "event_date": now + 9 * day,
                "created_at": now - 1 * day,
            },
            {
                "id": "s7", "kind": "show", "name": "The National - Red Rocks",
                "artist_id": "a2", "artist_name": "The National", "venue_name": "Red Rocks Amphitheatre",
                "verified": True, "followers": 310_000, "vote_count": 60, "positive_ratio": 0.82,
                "vote_velocity": 6.0, "genres": ["indie", "rock"], "event_date": now + 28 * day,
                "created_at": now - 4 * day,
            },
            {
                "id": "s8", "kind": "show", "name": "Metallica - Download Festival",
                "artist_id": "a4", "artist_name": "Metallica", "venue_name": "Donington Park",
                "verified": True, "followers": 1_200_000, "vote_count": 90, "positive_ratio": 0.74,
                "vote_velocity": 5.0, "genres": ["metal"], "event_date": now - 3 * day,
                "created_at": now - 40 * day,
            },
        ]
        return artists + shows


class InMemoryUserProfileRepository:
    """
    In-memory implementation of UserProfileRepository.
    Simulates the analytics ETL's user feature table.
    """

    def __init__(self, rows: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self._profiles: Dict[str, UserFeatureProfile] = {}
        self.load(rows if rows is not None else self._mock_rows())

    def load(self, rows: Iterable[Dict[str, Any]]) -> int:
        profiles = _validated_rows(UserFeatureProfile, rows)
        for profile in profiles:
            self._profiles[profile.user_id] = profile
        return len(profiles)

    async def get_profile(self, user_id: str) -> Optional[UserFeatureProfile]:
        """Fetch one profile; None for users the ETL has not seen yet."""
        return self._profiles.get(user_id)

    async def list_profiles(self, exclude_user_id: Optional[str] = None) -> List[UserFeatureProfile]:
        return [
            profile
            for user_id, profile in sorted(self._profiles.items())
            if user_id != exclude_user_id and profile.behavior_vector
        ]

    @staticmethod
    def _mock_rows() -> List[Dict[str, Any]]:
        return [
            {
                "user_id": "user_indie",
                "genre_preference_weights": {"indie": 0.9, "rock": 0.6, "post-punk": 0.5},
                "behavior_vector": [0.9, 0.7, 0.1, 0.2, 0.0],
                "activity_level": "high",
                "prediction_confidence": 0.85,
            },
            {
                "user_id": "user_indie_2",
                "genre_preference_weights": {"indie": 0.8, "post-punk": 0.7},
                "behavior_vector": [0.85, 0.75, 0.15, 0.1, 0.05],
                "activity_level": "medium",
                "prediction_confidence": 0.6,
            },
            {
                "user_id": "user_rock",
                "genre_preference_weights": {"rock": 0.9, "metal": 0.8},
                "behavior_vector": [0.8, 0.6, 0.2, 0.3, 0.1],
                "activity_level": "medium",
                "prediction_confidence": 0.5,
            },
            {
                "user_id": "user_pop",
                "genre_preference_weights": {"pop": 0.95, "electronic": 0.4},
                "behavior_vector": [0.1, 0.0, 0.9, 0.8, 0.7],
                "activity_level": "low",
                "prediction_confidence": 0.3,
            },
            {
                "user_id": "user_lurker",
                "genre_preference_weights": {},
                "behavior_vector": [],
                "activity_level": "inactive",
                "prediction_confidence": 0.05,
            },
        ]


class InMemoryEngagementRepository:
    """
    In-memory implementation of EngagementRepository.
    Simulates the follows and votes tables.
    """

    def __init__(self, engagements: Optional[Dict[str, List[ItemRef]]] = None) -> None:
        self._engagements: Dict[str, List[ItemRef]] = (
            engagements if engagements is not None else self._mock_engagements()
        )

    def record(self, user_id: str, ref: ItemRef) -> None:
        refs = self._engagements.setdefault(user_id, [])
        if ref not in refs:
            refs.append(ref)

    async def get_engagements(self, user_ids: List[str]) -> Dict[str, List[ItemRef]]:
        return {
            user_id: list(self._engagements[user_id])
            for user_id in user_ids
            if user_id in self._engagements
        }

    @staticmethod
    def _mock_engagements() -> Dict[str, List[ItemRef]]:
        artist = lambda i: ItemRef(kind=ItemKind.ARTIST, id=i)  # noqa: E731
        show = lambda i: ItemRef(kind=ItemKind.SHOW, id=i)  # noqa: E731
        return {
            "user_indie": [artist("a2"), show("s2")],
            "user_indie_2": [artist("a2"), artist("a3"), show("s3"), show("s7")],
            "user_rock": [artist("a3"), artist("a4"), show("s4"), show("s3")],
            "user_pop": [artist("a1"), artist("a6"), show("s1"), show("s6")],
        }
