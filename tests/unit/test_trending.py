"""
Unit tests for TrendingRanker.
"""
from datetime import timedelta

import pytest

from setlist_trending.config.settings import Settings
from setlist_trending.core.circuit_breaker import CircuitBreaker
from setlist_trending.models.schemas import (
    CandidateItem,
    ItemKind,
    Timeframe,
    TrendingKind,
    VoteDelta,
    VoteSignal,
    VoteStats,
)
from setlist_trending.services.candidates import CandidateSource
from setlist_trending.services.scoring import default_boost_rules
from setlist_trending.services.trending import TrendingRanker
from setlist_trending.services.vote_aggregator import VoteAggregator


class TestRank:
    @pytest.mark.asyncio
    async def test_ranks_by_score_descending(self, ranker, candidate_repo, make_item):
        candidate_repo.items = [
            make_item("low", vote_count=1),
            make_item("high", vote_count=100),
            make_item("mid", vote_count=20),
        ]

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=10)

        assert [s.item.id for s in result.items] == ["high", "mid", "low"]
        assert not result.stale and not result.degraded

    @pytest.mark.asyncio
    async def test_truncates_to_limit_and_over_fetches(self, ranker, candidate_repo, make_item):
        candidate_repo.items = [make_item(f"s{i}", vote_count=i) for i in range(10)]

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.DAY, limit=3)

        assert len(result.items) == 3
        assert candidate_repo.filters[0].limit == 6
        assert candidate_repo.filters[0].upcoming_only is True

    @pytest.mark.asyncio
    async def test_zero_limit_returns_empty_without_fetching(self, ranker, candidate_repo):
        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=0)

        assert result.items == []
        assert candidate_repo.calls == 0

    @pytest.mark.asyncio
    async def test_empty_candidate_set(self, ranker):
        result = await ranker.rank(TrendingKind.ARTISTS, Timeframe.MONTH, limit=5)

        assert result.items == []
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_warm_cache_returns_identical_results(self, ranker, candidate_repo, make_item):
        candidate_repo.items = [make_item(f"s{i}", vote_count=i * 3) for i in range(5)]

        first = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)
        second = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        assert first.model_dump_json() == second.model_dump_json()
        assert candidate_repo.calls == 1

    @pytest.mark.asyncio
    async def test_ties_break_by_recency_then_id(self, ranker, candidate_repo, make_item, now):
        candidate_repo.items = [
            make_item("b", created_at=now - timedelta(days=2)),
            make_item("a", created_at=now - timedelta(days=2)),
            make_item("newest", created_at=now - timedelta(hours=1)),
        ]

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=3)

        assert [s.item.id for s in result.items] == ["newest", "a", "b"]

    @pytest.mark.asyncio
    async def test_malformed_candidate_is_excluded(self, ranker, candidate_repo, make_item):
        broken = CandidateItem.model_construct(
            **{**make_item("broken").model_dump(), "positive_ratio": float("nan")}
        )
        candidate_repo.items = [make_item("ok"), broken]

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        assert [s.item.id for s in result.items] == ["ok"]


class TestBoostsAndLiveVotes:
    @pytest.mark.asyncio
    async def test_boost_can_reorder(self, candidate_source, cache, candidate_repo, make_item, now):
        ranker = TrendingRanker(
            candidate_source, cache, boost_rules=default_boost_rules(Settings()), clock=lambda: now
        )
        candidate_repo.items = [
            make_item("club", name="Club Night", vote_count=22, event_date=now + timedelta(days=30)),
            make_item("fest", name="Reading Festival", vote_count=18, event_date=now + timedelta(days=30)),
        ]

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=2)

        assert result.items[0].item.id == "fest"
        assert result.items[0].boost_factor == 1.5
        assert result.items[0].score == pytest.approx(result.items[0].base_score * 1.5)
        assert result.items[1].boost_factor == 1.0

    def test_live_velocity_overrides_snapshot(self, candidate_source, cache, make_item, now):
        class Stats:
            def vote_stats(self, tag):
                if tag == "show:hot":
                    return VoteStats(vote_count=70, upvotes=70, positive_ratio=1.0, vote_velocity=10.0)
                return None

        ranker = TrendingRanker(candidate_source, cache, vote_stats=Stats(), clock=lambda: now)

        scored = ranker.score_candidates(
            [make_item("hot", vote_velocity=0), make_item("cold", vote_velocity=0)], now
        )

        hot = next(s for s in scored if s.item.id == "hot")
        assert hot.item.vote_velocity == 10.0
        assert hot.score_breakdown["velocity"] == pytest.approx(3.0)
        assert scored[0].item.id == "hot"

    @pytest.mark.asyncio
    async def test_new_vote_never_lowers_a_hot_item(self, candidate_source, cache, make_item, now):
        aggregator = VoteAggregator(cache, debounce_seconds=10, clock=lambda: now)
        ranker = TrendingRanker(candidate_source, cache, vote_stats=aggregator, clock=lambda: now)
        hot = make_item("hot", vote_count=500, positive_ratio=0.9, vote_velocity=80.0)

        before = ranker.score_candidates([hot], now)[0]
        aggregator.handle(
            VoteSignal(setlist_song_id="song-1", show_id="hot", artist_id="a1", delta=VoteDelta(up=1), at=now)
        )
        after = ranker.score_candidates([hot], now)[0]
        aggregator.close()

        assert after.item.vote_velocity == 80.0
        assert after.item.vote_count == 500
        assert after.score >= before.score

    def test_live_counts_extend_a_thin_snapshot(self, candidate_source, cache, make_item, now):
        class Stats:
            def vote_stats(self, tag):
                return VoteStats(vote_count=40, upvotes=30, positive_ratio=0.75, vote_velocity=40 / 7)

        ranker = TrendingRanker(candidate_source, cache, vote_stats=Stats(), clock=lambda: now)

        item = ranker.score_candidates(
            [make_item("s1", vote_count=10, positive_ratio=0.5, vote_velocity=1.0)], now
        )[0].item

        assert item.vote_count == 40
        assert item.positive_ratio == pytest.approx(0.75)
        assert item.vote_velocity == pytest.approx(40 / 7)


class TestDegradation:
    @pytest.mark.asyncio
    async def test_unavailable_without_cache_returns_degraded_empty(self, ranker, candidate_repo):
        candidate_repo.error = ConnectionError("db down")

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        assert result.items == []
        assert result.degraded is True
        assert "candidate_store" in result.warning

    @pytest.mark.asyncio
    async def test_serves_stale_list_when_datastore_fails(
        self, ranker, candidate_repo, fake_clock, make_item
    ):
        candidate_repo.items = [make_item("s1", vote_count=5)]
        fresh = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        fake_clock.advance(301)
        candidate_repo.error = ConnectionError("db down")
        stale = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        assert stale.stale is True
        assert [s.item.id for s in stale.items] == [s.item.id for s in fresh.items]

    @pytest.mark.asyncio
    async def test_slow_datastore_times_out(self, cache, candidate_repo, make_item, now):
        candidate_repo.items = [make_item("s1")]
        candidate_repo.delay = 0.2
        source = CandidateSource(candidate_repo, timeout_seconds=0.01)
        ranker = TrendingRanker(source, cache, clock=lambda: now)

        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)

        assert result.degraded is True
        assert "timeout" in result.warning

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, cache, candidate_repo, now):
        candidate_repo.error = ConnectionError("db down")
        breaker = CircuitBreaker("candidate_store", failure_threshold=1, recovery_timeout_sec=60)
        ranker = TrendingRanker(CandidateSource(candidate_repo, circuit_breaker=breaker), cache, clock=lambda: now)

        await ranker.rank(TrendingKind.SHOWS, Timeframe.WEEK, limit=5)
        result = await ranker.rank(TrendingKind.SHOWS, Timeframe.DAY, limit=5)

        assert candidate_repo.calls == 1
        assert "circuit open" in result.warning


class TestCategoriesAndWarmUp:
    @pytest.mark.asyncio
    async def test_categories_slice_ranked_lists(self, ranker, candidate_repo, make_item, now):
        shows = [
            make_item(f"s{i:02d}", vote_count=100 - i, created_at=now - timedelta(days=i))
            for i in range(12)
        ]
        artists = [
            make_item(f"a{i}", kind=ItemKind.ARTIST, vote_count=50 - i, followers=50_000 * (i + 1))
            for i in range(9)
        ]
        candidate_repo.items = shows + artists

        categories = await ranker.categories(Timeframe.WEEK)

        assert [s.item.id for s in categories.hottest] == ["s00", "s01", "s02", "s03", "s04"]
        assert [s.item.id for s in categories.rising] == ["s05", "s06", "s07", "s08", "s09"]
        assert all(s.item.created_at >= now - timedelta(days=7) for s in categories.new_and_noteworthy)
        assert len(categories.popular_artists) == 8
        assert all(a.item.followers < 100_000 for a in categories.breaking_out)
        assert categories.degraded is False

    @pytest.mark.asyncio
    async def test_warm_up_populates_every_list(self, ranker, candidate_repo, cache, make_item):
        candidate_repo.items = [make_item("s1")]

        warmed = await ranker.warm_up(20)

        assert warmed == len(TrendingKind) * len(Timeframe)
        assert cache.get(ranker.cache_key(TrendingKind.SHOWS, Timeframe.DAY, 20))[1] is True
