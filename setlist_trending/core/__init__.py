"""Core infrastructure components."""
from .cache import (
    CacheEntry,
    CacheLayer,
    CachePriority,
    CacheStats,
    EvictionPolicy,
    PriorityLRUEvictionPolicy,
)
from .circuit_breaker import CircuitBreaker, CircuitState
from .exceptions import (
    AppException,
    CacheError,
    CircuitBreakerOpenError,
    DataUnavailableError,
    ScoreComputationError,
    ValidationError,
)
from .results import StageResult, StageStatus

__all__ = [
    "AppException",
    "CacheEntry",
    "CacheError",
    "CacheLayer",
    "CachePriority",
    "CacheStats",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "DataUnavailableError",
    "EvictionPolicy",
    "PriorityLRUEvictionPolicy",
    "ScoreComputationError",
    "StageResult",
    "StageStatus",
    "ValidationError",
]
