"""
Guarded access to the candidate datastore.
Every fetch is bounded by a timeout and routed through a circuit breaker;
all failure modes surface uniformly as DataUnavailableError.
"""
import asyncio
import logging
from typing import List, Optional

from setlist_trending.core.circuit_breaker import CircuitBreaker
from setlist_trending.core.exceptions import CircuitBreakerOpenError, DataUnavailableError
from setlist_trending.models.interfaces import CandidateRepository
from setlist_trending.models.schemas import CandidateFilter, CandidateItem, ItemKind

logger = logging.getLogger(__name__)


class CandidateSource:
    """Candidate repository wrapped with a deadline and a circuit breaker."""

    SOURCE_NAME = "candidate_store"

    def __init__(
        self,
        repository: CandidateRepository,
        circuit_breaker: Optional[CircuitBreaker] = None,
        timeout_seconds: float = 0.5,
    ) -> None:
        self._repository = repository
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            name=self.SOURCE_NAME,
            failure_threshold=5,
            recovery_timeout_sec=30,
        )
        self._timeout = timeout_seconds

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def fetch(self, kind: ItemKind, candidate_filter: CandidateFilter) -> List[CandidateItem]:
        """
        Fetch candidates or raise DataUnavailableError.
        Caller cancellation propagates and abandons the fetch.
        """
        try:
            return await self._circuit_breaker.call(
                lambda: asyncio.wait_for(
                    self._repository.fetch_candidates(kind, candidate_filter),
                    timeout=self._timeout,
                )
            )
        except asyncio.TimeoutError as e:
            raise DataUnavailableError(self.SOURCE_NAME, f"timeout after {self._timeout}s") from e
        except CircuitBreakerOpenError as e:
            raise DataUnavailableError(self.SOURCE_NAME, "circuit open") from e
        except DataUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Candidate fetch failed: kind={kind.value}, error={e}")
            raise DataUnavailableError(self.SOURCE_NAME, str(e)) from e
