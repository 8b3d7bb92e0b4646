"""
Tiered in-memory cache with TTL, tag-based invalidation and single-flight
compute-on-miss.

L1 holds live objects for hot or small entries. L2 holds encoded payloads
and stands in for a shared byte store (Redis in production). Every store
mutation happens under one lock, so a tag invalidation is observed by
readers either entirely or not at all.
"""
import asyncio
import logging
import pickle
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from threading import Lock
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from setlist_trending.core.exceptions import CacheError
from setlist_trending.core.telemetry import CACHE_EVICTIONS, CACHE_LOOKUPS

logger = logging.getLogger(__name__)

T = TypeVar("T")

ComputeFn = Callable[[], Awaitable[T]]


class CachePriority(IntEnum):
    """Entry priority; high-priority entries are pinned to L1 and evicted last."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class CacheEntry:
    """Single cache entry with expiration and access tracking."""

    __slots__ = (
        "key",
        "payload",
        "tags",
        "created_at",
        "ttl_seconds",
        "priority",
        "last_accessed",
        "hits",
    )

    def __init__(
        self,
        key: str,
        payload: Any,
        tags: FrozenSet[str],
        created_at: float,
        ttl_seconds: float,
        priority: CachePriority,
    ) -> None:
        self.key = key
        self.payload = payload
        self.tags = tags
        self.created_at = created_at
        self.ttl_seconds = ttl_seconds
        self.priority = priority
        self.last_accessed = created_at
        self.hits = 0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        """An entry is visible only while now < created_at + ttl."""
        return now >= self.expires_at

    def touch(self, now: float) -> None:
        self.last_accessed = now
        self.hits += 1


@dataclass
class CacheStats:
    """Point-in-time cache counters."""

    hits: int
    misses: int
    writes: int
    evictions: int
    l1_entries: int
    l2_entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


# =============================================================================
# Eviction Policy (Strategy Pattern)
# =============================================================================


class EvictionPolicy(ABC):
    """Chooses which entry of a full tier gives up its slot."""

    @abstractmethod
    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        """Return the key to evict, or None if nothing is evictable."""
        pass


class PriorityLRUEvictionPolicy(EvictionPolicy):
    """Evict the lowest priority first, least recently accessed within it."""

    def select_victim(self, entries: Dict[str, CacheEntry]) -> Optional[str]:
        if not entries:
            return None
        victim = min(
            entries.values(),
            key=lambda e: (e.priority, e.last_accessed, e.key),
        )
        return victim.key


def _encode(value: Any) -> bytes:
    return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)


def _decode(payload: bytes) -> Any:
    try:
        return pickle.loads(payload)
    except Exception as e:
        raise CacheError("decode", str(e)) from e


# =============================================================================
# Cache Layer
# =============================================================================


class CacheLayer:
    """
    Two-tier cache shared by the trending ranker and the recommendation engine.

    Usage:
        cache = CacheLayer(default_ttl_seconds=300)
        ranked = await cache.get_or_compute(
            "trending:shows:week:20",
            lambda: ranker.compute("shows", "week", 20),
            tags=["trending", "shows"],
        )
        cache.invalidate_by_tags(["trending"])
    """

    def __init__(
        self,
        l1_max_entries: int = 1000,
        l2_max_entries: int = 5000,
        l1_max_entry_bytes: int = 10240,
        default_ttl_seconds: float = 300,
        stale_grace_seconds: float = 600,
        eviction_policy: Optional[EvictionPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._l1: Dict[str, CacheEntry] = {}
        self._l2: Dict[str, CacheEntry] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}

        self._l1_max_entries = l1_max_entries
        self._l2_max_entries = l2_max_entries
        self._l1_max_entry_bytes = l1_max_entry_bytes
        self._default_ttl = default_ttl_seconds
        self._stale_grace = stale_grace_seconds
        self._policy = eviction_policy or PriorityLRUEvictionPolicy()
        self._clock = clock
        self._lock = Lock()

        # Invalidation bookkeeping so an in-flight compute that raced an
        # invalidation does not store its now-outdated result.
        self._epoch = 0
        self._tag_epochs: Dict[str, int] = {}
        self._active_epochs: Dict[int, int] = {}
        self._clear_epoch = 0

        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._evictions = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Tuple[Optional[Any], bool]:
        """Return ``(value, hit)``; expired or undecodable entries are misses."""
        with self._lock:
            return self._lookup_locked(key)

    def get_stale(self, key: str) -> Tuple[Optional[Any], bool]:
        """
        Return ``(value, found)`` ignoring TTL, as long as the entry has not
        been swept or invalidated. Used for stale-while-revalidate fallbacks.
        """
        with self._lock:
            entry = self._l1.get(key) or self._l2.get(key)
            if entry is None:
                return None, False
            if entry.key in self._l1:
                CACHE_LOOKUPS.labels(tier="l1", result="stale").inc()
                return entry.payload, True
            try:
                value = _decode(entry.payload)
            except CacheError as e:
                logger.warning(f"Evicting corrupt cache entry: key={key}, error={e.message}")
                self._remove_locked(key, reason="corrupt")
                return None, False
            CACHE_LOOKUPS.labels(tier="l2", result="stale").inc()
            return value, True

    async def get_or_compute(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl_seconds: Optional[float] = None,
        tags: Iterable[str] = (),
        priority: CachePriority = CachePriority.MEDIUM,
        tags_for: Optional[Callable[[Any], Iterable[str]]] = None,
    ) -> Any:
        """
        Get value or compute and cache it if missing.

        Concurrent callers missing the same key share a single call to
        ``compute_fn``. If it raises, nothing is cached and every waiter
        receives the same exception. ``tags_for`` derives extra tags from
        the computed value.
        """
        tags = tuple(tags)
        while True:
            value, hit = self.get(key)
            if hit:
                return value

            inflight = self._inflight.get(key)
            if inflight is None:
                return await self._compute_and_store(
                    key, compute_fn, ttl_seconds, tags, priority, tags_for
                )

            try:
                return await asyncio.shield(inflight)
            except asyncio.CancelledError:
                if inflight.cancelled():
                    # The leading caller was cancelled; take over.
                    continue
                raise

    async def _compute_and_store(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl_seconds: Optional[float],
        tags: Tuple[str, ...],
        priority: CachePriority,
        tags_for: Optional[Callable[[Any], Iterable[str]]],
    ) -> Any:
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        start_epoch = self._begin_compute()

        try:
            try:
                value = await compute_fn()
                all_tags = set(tags)
                if tags_for is not None:
                    all_tags.update(tags_for(value))
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                future.set_exception(e)
                # Mark retrieved so a future nobody awaited does not warn on GC
                future.exception()
                raise
            finally:
                if self._inflight.get(key) is future:
                    del self._inflight[key]

            self._store(key, value, ttl_seconds, all_tags, priority, start_epoch)
        finally:
            self._end_compute(start_epoch)
        future.set_result(value)
        return value

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        tags: Iterable[str] = (),
        priority: CachePriority = CachePriority.MEDIUM,
    ) -> None:
        """Set value with optional TTL and tags."""
        self._store(key, value, ttl_seconds, set(tags), priority, start_epoch=None)

    def _store(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float],
        tags: Set[str],
        priority: CachePriority,
        start_epoch: Optional[int],
    ) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl

        # Encode outside the lock; the size decides the tier.
        encoded: Optional[bytes] = None
        if priority < CachePriority.HIGH:
            try:
                encoded = _encode(value)
            except (pickle.PicklingError, TypeError, AttributeError):
                encoded = None

        with self._lock:
            if start_epoch is not None and self._invalidated_since(tags, start_epoch):
                logger.debug(f"Discarding result invalidated during compute: key={key}")
                return

            self._remove_locked(key, reason=None)
            entry = CacheEntry(
                key=key,
                payload=value,
                tags=frozenset(tags),
                created_at=self._clock(),
                ttl_seconds=ttl,
                priority=priority,
            )
            if encoded is None or len(encoded) <= self._l1_max_entry_bytes:
                self._insert_l1_locked(entry)
            else:
                entry.payload = encoded
                self._insert_l2_locked(entry)
            self._index_locked(entry)
            self._writes += 1

    def delete(self, key: str) -> bool:
        """Delete key, returns True if existed."""
        with self._lock:
            return self._remove_locked(key, reason=None)

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry whose tag set intersects ``tags``; return count."""
        tags = list(tags)
        with self._lock:
            self._epoch += 1
            keys: Set[str] = set()
            for tag in tags:
                # Only a compute already running can race this invalidation
                if self._active_epochs:
                    self._tag_epochs[tag] = self._epoch
                keys.update(self._tag_index.get(tag, ()))
            for key in keys:
                self._remove_locked(key, reason="invalidated")

        logger.debug(f"Invalidated {len(keys)} cache entries for tags={tags}")
        return len(keys)

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            self._epoch += 1
            self._clear_epoch = self._epoch
            self._l1.clear()
            self._l2.clear()
            self._tag_index.clear()

    async def warm_up(
        self,
        loaders: Iterable[Tuple[str, ComputeFn, Optional[float], Iterable[str]]],
    ) -> int:
        """Populate entries concurrently; failures are logged and skipped."""
        loaders = list(loaders)
        results = await asyncio.gather(
            *(
                self.get_or_compute(key, fn, ttl, tags, priority=CachePriority.HIGH)
                for key, fn, ttl, tags in loaders
            ),
            return_exceptions=True,
        )
        warmed = 0
        for (key, _, _, _), result in zip(loaders, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to warm up cache for key {key}: {result}")
            else:
                warmed += 1
        return warmed

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Remove entries past their TTL and stale grace, return count removed."""
        now = self._clock()
        with self._lock:
            expired = [
                key
                for tier in (self._l1, self._l2)
                for key, entry in tier.items()
                if now >= entry.expires_at + self._stale_grace
            ]
            for key in expired:
                self._remove_locked(key, reason="expired")
        return len(expired)

    async def run_eviction(self, interval_seconds: float) -> None:
        """Background sweeper; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.cleanup_expired()
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries")

    def size(self) -> int:
        """Return number of entries (including possibly expired)."""
        with self._lock:
            return len(self._l1) + len(self._l2)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                writes=self._writes,
                evictions=self._evictions,
                l1_entries=len(self._l1),
                l2_entries=len(self._l2),
            )

    # -------------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------------------------------

    def _lookup_locked(self, key: str) -> Tuple[Optional[Any], bool]:
        now = self._clock()
        tier = "l1"
        entry = self._l1.get(key)
        if entry is None:
            tier = "l2"
            entry = self._l2.get(key)

        if entry is None:
            return self._miss(tier)

        if entry.is_expired(now):
            if now >= entry.expires_at + self._stale_grace:
                self._remove_locked(key, reason="expired")
            return self._miss(tier)

        if tier == "l1":
            value = entry.payload
        else:
            try:
                value = _decode(entry.payload)
            except CacheError as e:
                logger.warning(f"Evicting corrupt cache entry: key={key}, error={e.message}")
                self._remove_locked(key, reason="corrupt")
                return self._miss(tier)
            self._promote_locked(entry, value)

        entry.touch(now)
        self._hits += 1
        CACHE_LOOKUPS.labels(tier=tier, result="hit").inc()
        return value, True

    def _miss(self, tier: str) -> Tuple[None, bool]:
        self._misses += 1
        CACHE_LOOKUPS.labels(tier=tier, result="miss").inc()
        return None, False

    def _begin_compute(self) -> int:
        with self._lock:
            start_epoch = self._epoch
            self._active_epochs[start_epoch] = self._active_epochs.get(start_epoch, 0) + 1
        return start_epoch

    def _end_compute(self, start_epoch: int) -> None:
        with self._lock:
            remaining = self._active_epochs[start_epoch] - 1
            if remaining:
                self._active_epochs[start_epoch] = remaining
                return
            del self._active_epochs[start_epoch]
            if not self._active_epochs:
                self._tag_epochs.clear()
                return
            oldest = min(self._active_epochs)
            self._tag_epochs = {
                tag: epoch for tag, epoch in self._tag_epochs.items() if epoch > oldest
            }

    def _invalidated_since(self, tags: Set[str], start_epoch: int) -> bool:
        if self._clear_epoch > start_epoch:
            return True
        return any(self._tag_epochs.get(tag, 0) > start_epoch for tag in tags)

    def _promote_locked(self, entry: CacheEntry, value: Any) -> None:
        """Move an L2 hit into L1 as a live object."""
        del self._l2[entry.key]
        entry.payload = value
        self._insert_l1_locked(entry)

    def _insert_l1_locked(self, entry: CacheEntry) -> None:
        while len(self._l1) >= self._l1_max_entries:
            victim_key = self._policy.select_victim(self._l1)
            if victim_key is None:
                break
            self._demote_locked(self._l1.pop(victim_key))
        self._l1[entry.key] = entry

    def _insert_l2_locked(self, entry: CacheEntry) -> None:
        while len(self._l2) >= self._l2_max_entries:
            victim_key = self._policy.select_victim(self._l2)
            if victim_key is None:
                break
            self._unindex_locked(self._l2.pop(victim_key))
            self._count_eviction("capacity")
        self._l2[entry.key] = entry

    def _demote_locked(self, entry: CacheEntry) -> None:
        """Push an L1 overflow victim down to L2 in encoded form."""
        try:
            entry.payload = _encode(entry.payload)
        except (pickle.PicklingError, TypeError, AttributeError):
            self._unindex_locked(entry)
            self._count_eviction("capacity")
            return
        self._insert_l2_locked(entry)

    def _remove_locked(self, key: str, reason: Optional[str]) -> bool:
        entry = self._l1.pop(key, None) or self._l2.pop(key, None)
        if entry is None:
            return False
        self._unindex_locked(entry)
        if reason is not None:
            self._count_eviction(reason)
        return True

    def _index_locked(self, entry: CacheEntry) -> None:
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(entry.key)

    def _unindex_locked(self, entry: CacheEntry) -> None:
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(entry.key)
            if not keys:
                del self._tag_index[tag]

    def _count_eviction(self, reason: str) -> None:
        self._evictions += 1
        CACHE_EVICTIONS.labels(reason=reason).inc()
