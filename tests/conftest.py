"""
Pytest configuration and fixtures.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from setlist_trending.api.dependencies import clear_caches
from setlist_trending.core.cache import CacheLayer
from setlist_trending.core.circuit_breaker import CircuitBreaker
from setlist_trending.main import app
from setlist_trending.models.schemas import (
    CandidateFilter,
    CandidateItem,
    ItemKind,
    ItemRef,
    UserFeatureProfile,
)
from setlist_trending.services.candidates import CandidateSource
from setlist_trending.services.trending import TrendingRanker

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubCandidateRepository:
    """CandidateRepository returning fixed items, optionally failing or slow."""

    def __init__(self, items: Optional[List[CandidateItem]] = None) -> None:
        self.items = list(items or [])
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.calls = 0
        self.filters: List[CandidateFilter] = []

    async def fetch_candidates(self, kind: ItemKind, candidate_filter: CandidateFilter) -> List[CandidateItem]:
        self.calls += 1
        self.filters.append(candidate_filter)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        matching = [i for i in self.items if i.kind is kind]
        if candidate_filter.genres:
            matching = [i for i in matching if set(i.genres) & set(candidate_filter.genres)]
        return matching[: candidate_filter.limit]


class StubProfileRepository:
    def __init__(self, profiles: Optional[List[UserFeatureProfile]] = None) -> None:
        self.profiles = {p.user_id: p for p in profiles or []}
        self.error: Optional[Exception] = None

    async def get_profile(self, user_id: str) -> Optional[UserFeatureProfile]:
        return self.profiles.get(user_id)

    async def list_profiles(self, exclude_user_id: Optional[str] = None) -> List[UserFeatureProfile]:
        if self.error is not None:
            raise self.error
        return [p for uid, p in sorted(self.profiles.items()) if uid != exclude_user_id]


class StubEngagementRepository:
    def __init__(self, engagements: Optional[Dict[str, List[ItemRef]]] = None) -> None:
        self.engagements = engagements or {}

    async def get_engagements(self, user_ids: List[str]) -> Dict[str, List[ItemRef]]:
        return {u: self.engagements[u] for u in user_ids if u in self.engagements}


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_item():
    """Factory for candidate items with sensible defaults."""

    def _make(item_id: str, kind: ItemKind = ItemKind.SHOW, **overrides) -> CandidateItem:
        fields = {
            "id": item_id,
            "kind": kind,
            "name": f"Item {item_id}",
            "vote_count": 10,
            "positive_ratio": 0.5,
            "vote_velocity": 1.0,
            "followers": 1000,
            "genres": ["rock"],
            "event_date": NOW + timedelta(days=10),
            "created_at": NOW - timedelta(days=1),
        }
        fields.update(overrides)
        return CandidateItem(**fields)

    return _make


@pytest.fixture
def candidate_repo():
    return StubCandidateRepository()


@pytest.fixture
def cache(fake_clock):
    return CacheLayer(default_ttl_seconds=300, stale_grace_seconds=600, clock=fake_clock)


@pytest.fixture
def candidate_source(candidate_repo):
    breaker = CircuitBreaker("candidate_store", failure_threshold=100)
    return CandidateSource(candidate_repo, circuit_breaker=breaker, timeout_seconds=0.5)


@pytest.fixture
def ranker(candidate_source, cache):
    return TrendingRanker(candidate_source, cache, clock=lambda: NOW)


@pytest.fixture
def profile_repo():
    return StubProfileRepository()


@pytest.fixture
def engagement_repo():
    return StubEngagementRepository()


@pytest.fixture
def test_client():
    """
    TestClient fixture with fresh singletons.
    Uses the seeded in-memory repositories.
    """
    clear_caches()

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    clear_caches()
