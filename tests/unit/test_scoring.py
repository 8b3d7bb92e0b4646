"""
Unit tests for trending score functions and special-event boosts.
"""
import math
from datetime import timedelta

import pytest

from setlist_trending.config.settings import Settings
from setlist_trending.core.exceptions import ScoreComputationError
from setlist_trending.models.schemas import BoostRule, CandidateItem, ItemKind, TrendingWeights
from setlist_trending.services.scoring import (
    UrgencyTerm,
    boost_factor,
    content_match_score,
    default_boost_rules,
    score_breakdown,
    special_event_boost,
    trending_score,
    weights_from_settings,
)


class TestTrendingScore:
    def test_score_is_finite_and_non_negative_for_empty_item(self, make_item, now):
        item = make_item("s1", vote_count=0, followers=0, vote_velocity=0, event_date=None)

        score = trending_score(item, now=now)

        assert math.isfinite(score)
        assert score >= 0

    def test_vote_activity_beats_raw_followers(self, make_item, now):
        """A million idle followers lose to a hundred positive votes."""
        famous = make_item("famous", followers=1_000_000, vote_count=0, vote_velocity=0)
        buzzing = make_item(
            "buzzing", followers=0, vote_count=100, positive_ratio=0.9, vote_velocity=5
        )

        assert trending_score(buzzing, now=now) > trending_score(famous, now=now)

    def test_breakdown_terms_sum_to_total(self, make_item, now):
        item = make_item("s1", vote_count=50, positive_ratio=0.8, vote_velocity=4, followers=999)

        breakdown = score_breakdown(item, now=now)

        assert set(breakdown) == {"votes", "velocity", "popularity", "urgency", "total"}
        assert breakdown["votes"] == pytest.approx(50 * 0.8 * 0.4)
        assert breakdown["velocity"] == pytest.approx(4 * 0.3)
        assert breakdown["popularity"] == pytest.approx(math.log(1000) * 0.2)
        parts = sum(v for k, v in breakdown.items() if k != "total")
        assert breakdown["total"] == pytest.approx(parts)

    def test_urgency_grows_as_event_approaches(self, make_item, now):
        term = UrgencyTerm()
        weights = TrendingWeights()
        soon = make_item("soon", event_date=now + timedelta(days=2))
        later = make_item("later", event_date=now + timedelta(days=40))

        assert term.calculate(soon, weights, now)[0] > term.calculate(later, weights, now)[0]

    def test_urgency_saturates_for_today_and_past_events(self, make_item, now):
        term = UrgencyTerm()
        weights = TrendingWeights()
        today = make_item("today", event_date=now + timedelta(hours=3))
        past = make_item("past", event_date=now - timedelta(days=5))

        expected = math.exp(-0.1) * 0.1
        assert term.calculate(today, weights, now)[0] == pytest.approx(expected)
        assert term.calculate(past, weights, now)[0] == pytest.approx(expected)

    def test_missing_event_date_uses_default_horizon(self, make_item, now):
        term = UrgencyTerm()
        item = make_item("artist", kind=ItemKind.ARTIST, event_date=None)

        value, name = term.calculate(item, TrendingWeights(), now)

        assert name == "urgency"
        assert value == pytest.approx(math.exp(-0.1 * 30) * 0.1)

    def test_non_finite_feature_raises_compute_failure(self, make_item, now):
        broken = CandidateItem.model_construct(
            **{**make_item("bad").model_dump(), "positive_ratio": float("nan")}
        )

        with pytest.raises(ScoreComputationError) as exc_info:
            trending_score(broken, now=now)

        assert exc_info.value.error_code == "COMPUTE_FAILURE"
        assert exc_info.value.details["item_id"] == "bad"

    def test_weights_from_settings(self):
        settings = Settings(TRENDING_VOTE_WEIGHT=1.0, TRENDING_DECAY_FACTOR=0.5)

        weights = weights_from_settings(settings)

        assert weights.vote == 1.0
        assert weights.decay_factor == 0.5
        assert weights.velocity == 0.3


class TestSpecialEventBoost:
    @pytest.fixture
    def rules(self):
        return default_boost_rules(Settings())

    def test_festival_name_boosts(self, make_item, rules, now):
        item = make_item("s1", name="Glastonbury Festival 2026")
        assert boost_factor(item, rules, now) == 1.5

    def test_landmark_venue_boosts(self, make_item, rules, now):
        item = make_item("s1", venue_name="Madison Square Garden")
        assert boost_factor(item, rules, now) == 1.3

    def test_headliner_artist_boosts_shows_and_artists(self, make_item, rules, now):
        show = make_item("s1", artist_name="Taylor Swift", event_date=now + timedelta(days=60))
        artist = make_item(
            "a1", kind=ItemKind.ARTIST, name="Taylor Swift", event_date=now + timedelta(days=60)
        )

        assert boost_factor(show, rules, now) == 1.4
        assert boost_factor(artist, rules, now) == 1.4

    def test_verified_artist_playing_soon(self, make_item, rules, now):
        soon = make_item("s1", verified=True, event_date=now + timedelta(days=3))
        far = make_item("s2", verified=True, event_date=now + timedelta(days=30))
        unverified = make_item("s3", verified=False, event_date=now + timedelta(days=3))

        assert boost_factor(soon, rules, now) == 1.2
        assert boost_factor(far, rules, now) == 1.0
        assert boost_factor(unverified, rules, now) == 1.0

    def test_first_matching_rule_wins(self, make_item, rules, now):
        item = make_item("s1", name="Wembley Fest", venue_name="Wembley Stadium")
        assert boost_factor(item, rules, now) == 1.5

    def test_boost_is_monotonic(self, make_item, rules, now):
        plain = make_item("s1", name="Club Night", event_date=now + timedelta(days=30))
        festival = make_item("s2", name="Summer Festival")

        assert special_event_boost(plain, 10.0, rules, now) == 10.0
        assert special_event_boost(festival, 10.0, rules, now) > 10.0

    def test_boost_is_stable_across_calls(self, make_item, rules, now):
        item = make_item("s1", name="Download Festival")

        first = special_event_boost(item, 7.0, rules, now)
        second = special_event_boost(item, 7.0, rules, now)

        assert first == second == pytest.approx(10.5)

    def test_rule_requires_every_condition(self, make_item, now):
        rule = BoostRule(name="combo", factor=2.0, name_keywords=["tour"], require_verified=True)

        assert rule.matches(make_item("s1", name="World Tour", verified=True), now)
        assert not rule.matches(make_item("s2", name="World Tour", verified=False), now)

    def test_factor_must_exceed_one(self):
        with pytest.raises(ValueError):
            BoostRule(name="bad", factor=0.9)


class TestContentMatch:
    def test_average_over_item_genres(self, make_item):
        item = make_item("s1", genres=["indie", "rock", "jazz"])

        score = content_match_score(item, {"indie": 0.9, "rock": 0.6})

        assert score == pytest.approx(0.5)

    def test_item_without_genres_scores_zero(self, make_item):
        assert content_match_score(make_item("s1", genres=[]), {"rock": 1.0}) == 0.0
