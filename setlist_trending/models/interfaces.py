"""
Repository interfaces (abstractions).
Using Protocol for structural subtyping (duck typing with type hints).
These define the narrow contracts the engine consumes from its collaborators.
"""
from typing import Dict, List, Optional, Protocol, runtime_checkable

from setlist_trending.models.schemas import (
    CandidateFilter,
    CandidateItem,
    ItemKind,
    ItemRef,
    UserFeatureProfile,
    VoteStats,
)


@runtime_checkable
class CandidateRepository(Protocol):
    """
    Interface for artist/show candidate queries.
    Production: relational store queried by field.
    Testing: In-memory mock implementation.
    """

    async def fetch_candidates(
        self, kind: ItemKind, candidate_filter: CandidateFilter
    ) -> List[CandidateItem]:
        """
        Fetch candidates of one kind matching the pre-filter.

        Args:
            kind: Artist or show
            candidate_filter: Window, limit and optional genre constraint

        Returns:
            Up to ``candidate_filter.limit`` items (fewer is fine)
        """
        ...


@runtime_checkable
class UserProfileRepository(Protocol):
    """
    Interface for user feature profiles built by the analytics ETL.
    """

    async def get_profile(self, user_id: str) -> Optional[UserFeatureProfile]:
        """
        Fetch one profile.

        Returns:
            UserFeatureProfile if found, None for new users
        """
        ...

    async def list_profiles(self, exclude_user_id: Optional[str] = None) -> List[UserFeatureProfile]:
        """
        Fetch every profile with a behavior vector, used as the
        neighbor pool for collaborative filtering.
        """
        ...


@runtime_checkable
class EngagementRepository(Protocol):
    """
    Interface for which artists/shows users follow or voted on.
    """

    async def get_engagements(self, user_ids: List[str]) -> Dict[str, List[ItemRef]]:
        """
        Fetch engaged items per user.

        Returns:
            Mapping user_id -> engaged items (users without any may be absent)
        """
        ...


@runtime_checkable
class VoteStatsProvider(Protocol):
    """Live windowed vote counters keyed by item tag."""

    def vote_stats(self, tag: str) -> Optional[VoteStats]:
        ...
