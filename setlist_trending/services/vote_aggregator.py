"""
Vote aggregation service.
Keeps sliding-window vote counters per show/artist and invalidates the
cached rankings they feed, coalescing bursts into one invalidation.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from threading import Lock
from typing import AsyncIterator, Callable, Deque, Dict, List, Optional, Tuple

from setlist_trending.core.cache import CacheLayer
from setlist_trending.core.telemetry import VOTE_SIGNALS
from setlist_trending.models.schemas import ItemKind, ItemRef, VoteSignal, VoteStats, utcnow

logger = logging.getLogger(__name__)

TRENDING_TAG = "trending"


class _VoteWindow:
    """Vote events for one item inside the sliding window."""

    def __init__(self) -> None:
        self.events: Deque[Tuple[datetime, int, int]] = deque()
        self.up = 0
        self.down = 0

    def add(self, at: datetime, up: int, down: int) -> None:
        self.events.append((at, up, down))
        self.up += up
        self.down += down

    def prune(self, cutoff: datetime) -> None:
        while self.events and self.events[0][0] < cutoff:
            _, up, down = self.events.popleft()
            self.up -= up
            self.down -= down


class _PendingInvalidation:
    """Coalesced tags waiting for the debounce timer of one item."""

    def __init__(self, first_at: float) -> None:
        self.first_at = first_at
        self.tags: List[str] = []
        self.handle: Optional[asyncio.TimerHandle] = None

    def add_tags(self, tags: List[str]) -> None:
        for tag in tags:
            if tag not in self.tags:
                self.tags.append(tag)


class VoteAggregator:
    """
    Consumes vote-cast events.

    Each vote updates the windowed counters of its show and artist, then
    (re)arms a debounce timer keyed by the show's tag. When the timer
    fires, the show, artist and trending tags are invalidated together.
    A vote arriving before the timer fires resets it; ``max_wait_seconds``
    bounds how long a continuously voted item can postpone invalidation.
    """

    def __init__(
        self,
        cache: CacheLayer,
        window_days: float = 7.0,
        debounce_seconds: float = 2.0,
        max_wait_seconds: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._window = timedelta(days=window_days)
        self._window_days = window_days
        self._debounce = debounce_seconds
        self._max_wait = max(max_wait_seconds, debounce_seconds)
        self._clock = clock

        self._windows: Dict[str, _VoteWindow] = {}
        self._pending: Dict[str, _PendingInvalidation] = {}
        self._lock = Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def handle(self, signal: VoteSignal) -> None:
        """Record a vote and schedule the debounced invalidation. Needs a running loop."""
        VOTE_SIGNALS.inc()
        show_tag = ItemRef(kind=ItemKind.SHOW, id=signal.show_id).tag
        artist_tag = ItemRef(kind=ItemKind.ARTIST, id=signal.artist_id).tag

        with self._lock:
            for tag in (show_tag, artist_tag):
                window = self._windows.setdefault(tag, _VoteWindow())
                window.add(signal.at, signal.delta.up, signal.delta.down)

        self._schedule_invalidation(show_tag, [show_tag, artist_tag, TRENDING_TAG])

    async def consume(self, events: AsyncIterator[VoteSignal]) -> None:
        """Drain a push/poll channel of vote events until it is exhausted."""
        async for signal in events:
            self.handle(signal)

    def vote_stats(self, tag: str) -> Optional[VoteStats]:
        """Windowed counters for ``tag`` (e.g. ``show:123``), None if no recent votes."""
        cutoff = self._clock() - self._window
        with self._lock:
            window = self._windows.get(tag)
            if window is None:
                return None
            window.prune(cutoff)
            if not window.events:
                del self._windows[tag]
                return None
            up = window.up
            total = window.up + window.down

        return VoteStats(
            vote_count=total,
            upvotes=up,
            positive_ratio=up / total if total else 0.5,
            vote_velocity=total / self._window_days,
        )

    def prune(self) -> int:
        """Drop votes that left the window and forget idle items; return items forgotten."""
        cutoff = self._clock() - self._window
        with self._lock:
            idle = []
            for tag, window in self._windows.items():
                window.prune(cutoff)
                if not window.events:
                    idle.append(tag)
            for tag in idle:
                del self._windows[tag]
        return len(idle)

    async def run_pruning(self, interval_seconds: float) -> None:
        """Background sweeper for idle vote windows; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            forgotten = self.prune()
            if forgotten:
                logger.debug(f"Vote sweep forgot {forgotten} idle items")

    def flush(self) -> int:
        """Fire every pending invalidation now; return how many groups fired."""
        keys = list(self._pending)
        for key in keys:
            pending = self._pending.get(key)
            if pending is not None and pending.handle is not None:
                pending.handle.cancel()
            self._fire(key)
        return len(keys)

    def close(self) -> None:
        """Cancel pending timers without invalidating."""
        for pending in self._pending.values():
            if pending.handle is not None:
                pending.handle.cancel()
        self._pending.clear()

    def _schedule_invalidation(self, key: str, tags: List[str]) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()

        pending = self._pending.get(key)
        if pending is None:
            pending = _PendingInvalidation(first_at=now)
            self._pending[key] = pending
        elif pending.handle is not None:
            pending.handle.cancel()

        pending.add_tags(tags)
        delay = min(self._debounce, pending.first_at + self._max_wait - now)
        pending.handle = loop.call_later(max(0.0, delay), self._fire, key)

    def _fire(self, key: str) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        removed = self._cache.invalidate_by_tags(pending.tags)
        logger.info(f"Vote invalidation fired: key={key}, tags={pending.tags}, removed={removed}")
