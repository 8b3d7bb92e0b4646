"""
Unit tests for the hybrid recommendation engine.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from setlist_trending.models.schemas import (
    ItemKind,
    ItemRef,
    Recommendation,
    RecommendationOptions,
    RecommendationSource,
    RecommendationType,
    UserFeatureProfile,
)
from setlist_trending.services.recommendations import (
    RecommendationConfig,
    RecommendationEngine,
    diversify,
    merge_candidates,
    source_weights,
)


def _rec(item_id, score, kind=ItemKind.SHOW, source=RecommendationSource.CONTENT):
    return Recommendation(
        item_id=item_id, kind=kind, score=score, confidence=0.8, reason="test", source=source
    )


@pytest.fixture
def engine(candidate_source, profile_repo, engagement_repo, ranker, cache, now):
    return RecommendationEngine(
        candidate_source,
        profile_repo,
        engagement_repo,
        ranker,
        cache,
        clock=lambda: now,
    )


@pytest.fixture
def rock_fan():
    return UserFeatureProfile(
        user_id="u1",
        genre_preference_weights={"rock": 0.9, "indie": 0.5},
        behavior_vector=[1.0, 0.0, 0.2],
        activity_level="medium",
        prediction_confidence=0.9,
    )


@pytest.fixture
def seeded(candidate_repo, profile_repo, engagement_repo, make_item, rock_fan):
    candidate_repo.items = [
        make_item("s1", genres=["rock"], vote_count=50),
        make_item("s2", genres=["indie", "rock"], vote_count=40),
        make_item("s3", genres=["jazz"], vote_count=30),
        make_item("a1", kind=ItemKind.ARTIST, genres=["rock"], vote_count=20),
    ]
    profile_repo.profiles = {
        "u1": rock_fan,
        "u2": UserFeatureProfile(user_id="u2", behavior_vector=[0.9, 0.1, 0.2]),
        "u3": UserFeatureProfile(user_id="u3", behavior_vector=[0.0, 1.0, 0.0]),
    }
    engagement_repo.engagements = {
        "u1": [ItemRef(kind=ItemKind.SHOW, id="s1")],
        "u2": [ItemRef(kind=ItemKind.SHOW, id="s1"), ItemRef(kind=ItemKind.SHOW, id="s3")],
        "u3": [ItemRef(kind=ItemKind.ARTIST, id="a1")],
    }


class TestDiversify:
    def test_single_kind_degenerates_to_score_order(self):
        candidates = [_rec(f"s{i}", score=(i + 1) / 10) for i in range(10)]

        ranked = diversify(candidates, diversity=1.0, limit=10)

        assert [r.item_id for r in ranked] == [f"s{i}" for i in range(9, -1, -1)]

    def test_penalizes_repeated_kind(self):
        candidates = [
            _rec("s1", 0.9),
            _rec("s2", 0.8),
            _rec("s3", 0.7),
            _rec("a1", 0.6, kind=ItemKind.ARTIST),
        ]

        ranked = diversify(candidates, diversity=1.0, limit=2)

        assert [r.item_id for r in ranked] == ["s1", "a1"]

    def test_zero_diversity_is_plain_score_order(self):
        candidates = [_rec("a1", 0.6, kind=ItemKind.ARTIST), _rec("s1", 0.9), _rec("s2", 0.8)]

        ranked = diversify(candidates, diversity=0.0, limit=3)

        assert [r.item_id for r in ranked] == ["s1", "s2", "a1"]

    def test_reported_scores_are_not_penalized(self):
        ranked = diversify([_rec("s1", 0.9), _rec("s2", 0.8)], diversity=0.7, limit=2)
        assert [r.score for r in ranked] == [0.9, 0.8]


class TestMerge:
    def test_source_weights_follow_confidence(self, rock_fan):
        config = RecommendationConfig()

        assert source_weights(rock_fan, config) == pytest.approx((0.6, 0.4))
        unsure = rock_fan.model_copy(update={"prediction_confidence": 0.3})
        assert source_weights(unsure, config) == pytest.approx((0.4, 0.6))

    def test_duplicates_keep_best_weighted_score(self):
        content = [_rec("s1", 0.5), _rec("s2", 1.0)]
        collaborative = [
            _rec("s1", 1.0, source=RecommendationSource.COLLABORATIVE),
        ]

        merged = {r.item_id: r for r in merge_candidates(content, collaborative, 0.6, 0.4)}

        assert merged["s1"].score == pytest.approx(0.4)
        assert merged["s1"].source is RecommendationSource.COLLABORATIVE
        assert merged["s2"].score == pytest.approx(0.6)


class TestColdStart:
    @pytest.mark.asyncio
    async def test_unknown_user_gets_exactly_limit_popular_items(
        self, engine, candidate_repo, make_item
    ):
        candidate_repo.items = [make_item(f"s{i}", vote_count=i) for i in range(8)] + [
            make_item(f"a{i}", kind=ItemKind.ARTIST, vote_count=i) for i in range(8)
        ]

        result = await engine.recommend(None, RecommendationOptions(limit=5))

        assert len(result.recommendations) == 5
        assert result.personalized is False
        assert all(r.source is RecommendationSource.POPULAR for r in result.recommendations)
        assert all(r.confidence == 0.5 for r in result.recommendations)
        assert all(0.0 <= r.score <= 1.0 for r in result.recommendations)

    @pytest.mark.asyncio
    async def test_missing_profile_falls_back_to_popular(self, engine, candidate_repo, make_item):
        candidate_repo.items = [make_item("s1")]

        result = await engine.get_recommendations(
            "ghost", RecommendationOptions(type=RecommendationType.SHOWS, limit=3)
        )

        assert result.user_id == "ghost"
        assert [r.item_id for r in result.recommendations] == ["s1"]
        assert result.recommendations[0].score == 1.0

    @pytest.mark.asyncio
    async def test_slow_profile_store_degrades_to_popular(self, engine, profile_repo, candidate_repo, make_item):
        candidate_repo.items = [make_item("s1")]

        async def slow_profile(user_id):
            await asyncio.sleep(1)

        profile_repo.get_profile = slow_profile

        result = await engine.get_recommendations("u1", RecommendationOptions(limit=3))

        assert result.degraded is True
        assert result.personalized is False
        assert "profile_store" in result.warning


class TestPersonalized:
    @pytest.mark.asyncio
    async def test_hybrid_pipeline(self, engine, seeded, rock_fan):
        result = await engine.recommend(rock_fan, RecommendationOptions(limit=10, diversity=0.0))

        by_id = {r.item_id: r for r in result.recommendations}
        assert result.personalized is True
        assert result.stages == {"content": "ok", "collaborative": "ok"}
        # Content: rock 0.9 x medium activity, weighted 0.6
        assert by_id["s1"].score == pytest.approx(0.9 * 0.6)
        assert by_id["s1"].reason == "Matches your preference for rock"
        assert by_id["s2"].reason == "Matches your preference for rock and indie"
        # Collaborative: u2 is the only neighbor; s1 is already engaged, s3 is new
        assert by_id["s3"].source is RecommendationSource.COLLABORATIVE
        assert by_id["s3"].score == pytest.approx(1.0 * 0.4)
        assert by_id["s3"].reason == "1 similar user follows this"
        scores = [r.score for r in result.recommendations]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_type_filter_limits_kinds(self, engine, seeded, rock_fan):
        result = await engine.recommend(
            rock_fan, RecommendationOptions(type=RecommendationType.ARTISTS, limit=10)
        )

        assert {r.kind for r in result.recommendations} == {ItemKind.ARTIST}

    @pytest.mark.asyncio
    async def test_exclude_engaged_skips_followed_items(self, engine, seeded, rock_fan):
        result = await engine.recommend(
            rock_fan, RecommendationOptions(limit=10, exclude_engaged=True)
        )

        assert "s1" not in {r.item_id for r in result.recommendations}

    @pytest.mark.asyncio
    async def test_collaborative_failure_degrades_to_content_only(
        self, engine, seeded, profile_repo, rock_fan
    ):
        profile_repo.error = RuntimeError("neighbor index unavailable")

        result = await engine.recommend(rock_fan, RecommendationOptions(limit=10))

        assert result.personalized is True
        assert result.degraded is True
        assert result.stages["collaborative"] == "failed"
        assert result.recommendations
        assert all(r.source is RecommendationSource.CONTENT for r in result.recommendations)

    @pytest.mark.asyncio
    async def test_content_stage_degrades_when_engagements_are_unavailable(
        self, engine, seeded, engagement_repo, rock_fan
    ):
        engagement_repo.get_engagements = AsyncMock(side_effect=ConnectionError("engagements down"))

        result = await engine.recommend(
            rock_fan, RecommendationOptions(limit=10, exclude_engaged=True)
        )

        assert result.stages == {"content": "degraded", "collaborative": "failed"}
        assert result.personalized is True
        assert result.degraded is True
        assert "s1" in {r.item_id for r in result.recommendations}

    @pytest.mark.asyncio
    async def test_all_stages_failing_still_returns_a_list(
        self, engine, seeded, candidate_repo, profile_repo, rock_fan
    ):
        candidate_repo.error = ConnectionError("db down")
        profile_repo.error = RuntimeError("down too")

        result = await engine.recommend(rock_fan, RecommendationOptions(limit=5))

        assert result.degraded is True
        assert result.personalized is False
        assert isinstance(result.recommendations, list)

    @pytest.mark.asyncio
    async def test_results_are_cached_per_user_and_options(self, engine, seeded, candidate_repo):
        options = RecommendationOptions(limit=5)

        first = await engine.get_recommendations("u1", options)
        calls = candidate_repo.calls
        second = await engine.get_recommendations("u1", options)

        assert candidate_repo.calls == calls
        assert first.model_dump_json() == second.model_dump_json()

    @pytest.mark.asyncio
    async def test_degraded_results_are_not_cached(self, engine, seeded, profile_repo, cache):
        profile_repo.error = RuntimeError("neighbor index unavailable")
        options = RecommendationOptions(limit=5)

        await engine.get_recommendations("u1", options)

        assert cache.get(engine.cache_key("u1", options)) == (None, False)


class TestSimilarUsers:
    @pytest.mark.asyncio
    async def test_returns_neighbors_above_threshold(self, engine, seeded):
        similar = await engine.find_similar_users("u1", limit=5, threshold=0.7)

        assert [s.user_id for s in similar] == ["u2"]
        assert similar[0].similarity > 0.9

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_neighbors(self, engine, seeded):
        assert await engine.find_similar_users("ghost") == []

    @pytest.mark.asyncio
    async def test_profile_store_failure_returns_empty_list(self, engine, seeded, profile_repo):
        profile_repo.error = RuntimeError("profile store down")

        assert await engine.find_similar_users("u1", limit=5, threshold=0.7) == []

    @pytest.mark.asyncio
    async def test_slow_profile_store_returns_empty_list(
        self, candidate_source, profile_repo, engagement_repo, ranker, cache, seeded, now
    ):
        engine = RecommendationEngine(
            candidate_source,
            profile_repo,
            engagement_repo,
            ranker,
            cache,
            config=RecommendationConfig(stage_timeout_seconds=0.05),
            clock=lambda: now,
        )

        async def slow_pool(exclude_user_id=None):
            await asyncio.sleep(1)
            return []

        profile_repo.list_profiles = slow_pool

        assert await engine.find_similar_users("u1") == []
