"""Repository implementations package."""
from .memory import (
    InMemoryCandidateRepository,
    InMemoryEngagementRepository,
    InMemoryUserProfileRepository,
)

__all__ = [
    "InMemoryCandidateRepository",
    "InMemoryEngagementRepository",
    "InMemoryUserProfileRepository",
]
