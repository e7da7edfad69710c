"""
Tests for the Country Instability Index.

Level boundaries, floors, the high-volume log compression, the news-derived
conflict floor, trends and the learning-mode warmup window.
"""

import math

import pytest

from backend.models import InstabilityLevel, Trend
from fusion_engine.country_config import MONITORED_COUNTRIES, baseline_risk
from fusion_engine.country_instability import (
    BASELINE_WEIGHT, EVENT_WEIGHT, WEIGHTS, InstabilityScorer, LearningMode,
    level_for_score,
)
from fusion_engine.signal_store import SignalStore


@pytest.fixture()
def store(resolver):
    return SignalStore(resolver)


@pytest.fixture()
def scorer(store, resolver, clock):
    return InstabilityScorer(store, resolver, clock=clock)


def _by_code(scores):
    return {s.code: s for s in scores}


@pytest.mark.parametrize("score, expected", [
    (0, InstabilityLevel.LOW),
    (30, InstabilityLevel.LOW),
    (31, InstabilityLevel.NORMAL),
    (50, InstabilityLevel.NORMAL),
    (51, InstabilityLevel.ELEVATED),
    (65, InstabilityLevel.ELEVATED),
    (66, InstabilityLevel.HIGH),
    (80, InstabilityLevel.HIGH),
    (81, InstabilityLevel.CRITICAL),
    (100, InstabilityLevel.CRITICAL),
])
def test_level_boundaries(score, expected):
    assert level_for_score(score) == expected


class TestCalculateAll:

    def test_scores_every_monitored_country_without_signals(self, scorer):
        scores = scorer.calculate_all()
        assert set(MONITORED_COUNTRIES) <= {s.code for s in scores}
        assert all(0 <= s.score <= 100 for s in scores)

    def test_includes_countries_with_stored_signals(self, scorer, store):
        store.ingest_protests([{"country": "Lesotho"}])
        scores = _by_code(scorer.calculate_all())
        assert "LS" in scores
        assert scores["LS"].name == "Lesotho"

    def test_sorted_descending(self, scorer, store):
        store.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        scores = scorer.calculate_all()
        assert [s.score for s in scores] == sorted((s.score for s in scores), reverse=True)
        assert scores[0].code == "DE"

    def test_baseline_only_score(self, scorer):
        # Ukraine: baseline 50 × 0.4, no events
        assert _by_code(scorer.calculate_all())["UA"].score == 20


class TestFloors:

    def test_ucdp_war_floor(self, scorer, store):
        store.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        de = _by_code(scorer.calculate_all())["DE"]
        assert de.score >= 70
        assert de.level == InstabilityLevel.HIGH

    def test_ucdp_minor_floor(self, scorer, store):
        store.ingest_ucdp([{"country": "Germany", "intensity": "minor"}])
        assert _by_code(scorer.calculate_all())["DE"].score >= 50

    def test_do_not_travel_floor(self, scorer, store):
        store.ingest_advisories([{"country": "France", "sourceCountry": "US", "level": "do-not-travel"}])
        assert _by_code(scorer.calculate_all())["FR"].score == 60


class TestComponents:

    def _unrest(self, resolver, clock, protests):
        store = SignalStore(resolver)
        store.ingest_protests(protests)
        scorer = InstabilityScorer(store, resolver, clock=clock)
        return _by_code(scorer.calculate_all())["FR"].components.unrest

    def test_high_volume_protests_are_log_compressed(self, resolver, clock):
        protests = [
            {"country": "France", "severity": "low"},
            {"country": "France", "severity": "high"},
            {"country": "France", "severity": "medium"},
        ]
        without_fatality = self._unrest(resolver, clock, protests)
        with_fatality = self._unrest(resolver, clock, [*protests[:2], {**protests[2], "fatalities": 1}])

        assert without_fatality == 54
        assert 0 < without_fatality < with_fatality

    def test_score_blends_published_components(self, scorer, store):
        store.ingest_protests([
            {"country": "France", "severity": "low"},
            {"country": "France", "severity": "high"},
            {"country": "France", "severity": "medium"},
        ])
        fr = _by_code(scorer.calculate_all())["FR"]
        event_score = sum(getattr(fr.components, name) * w for name, w in WEIGHTS.items())
        expected = math.floor(baseline_risk("FR") * BASELINE_WEIGHT + event_score * EVENT_WEIGHT + 0.5)
        assert fr.score == expected
        assert scorer.score_one("FR") == expected

    def test_outages_feed_unrest(self, scorer, store):
        store.ingest_outages([{"id": "o1", "country": "Iran", "severity": "total"}])
        assert _by_code(scorer.calculate_all())["IR"].components.unrest == 30

    def test_news_floor_needs_trusted_corroboration(self, scorer, store):
        store.ingest_news([
            {"id": "n1", "title": "Iran border clash", "sources": ["Reuters"],
             "threat": {"level": "high", "category": "conflict"}},
            {"id": "n2", "title": "Fighting near Iran border", "sources": ["Al Jazeera"],
             "threat": {"level": "high", "category": "military"}},
        ])
        assert _by_code(scorer.calculate_all())["IR"].components.conflict == 25

    def test_news_floor_ignores_untrusted_sources(self, scorer, store):
        store.ingest_news([
            {"id": "n1", "title": "Iran border clash", "sources": ["Blog A"],
             "threat": {"category": "conflict"}},
            {"id": "n2", "title": "Fighting near Iran border", "sources": ["Blog B"],
             "threat": {"category": "conflict"}},
        ])
        assert _by_code(scorer.calculate_all())["IR"].components.conflict == 0

    def test_stale_news_ignored_for_floor(self, scorer, store, clock):
        store.ingest_news([
            {"id": "n1", "title": "Iran border clash", "sources": ["Reuters"],
             "threat": {"category": "conflict"}},
            {"id": "n2", "title": "Fighting near Iran border", "sources": ["AFP"],
             "threat": {"category": "conflict"}},
        ])
        clock.advance(hours=25)
        assert _by_code(scorer.calculate_all())["IR"].components.conflict == 0

    def test_foreign_military_weighs_double(self, scorer, store):
        store.ingest_military(
            flights=[{"operatorCountry": "Russia", "lat": 49.0, "lon": 30.0}],
            vessels=[],
        )
        scores = _by_code(scorer.calculate_all())
        assert scores["UA"].components.security == 6
        assert scores["RU"].components.security == 3

    def test_aviation_closures(self, scorer, store):
        store.ingest_aviation([
            {"country": "Israel", "airport": "TLV", "delayType": "closure"},
            {"country": "Israel", "airport": "HFA", "severity": "severe"},
        ])
        assert _by_code(scorer.calculate_all())["IL"].components.security == 30


class TestTrend:

    def test_first_run_is_stable(self, scorer):
        de = _by_code(scorer.calculate_all())["DE"]
        assert de.trend == Trend.STABLE
        assert de.change_24h == 0

    def test_rising_after_jump(self, scorer, store):
        scorer.calculate_all()
        store.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        de = _by_code(scorer.calculate_all())["DE"]
        assert de.trend == Trend.RISING
        assert de.change_24h == 68

    def test_score_one_does_not_advance_baseline(self, scorer, store):
        scorer.calculate_all()
        store.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        assert scorer.score_one("DE") == 70
        assert scorer.previous_scores["DE"] == 2

    def test_score_one_unknown_country(self, scorer):
        assert scorer.score_one("QQ") is None


class TestBoosts:

    def test_focal_urgency(self, scorer):
        scorer.set_focal_urgencies({"DE": "critical"})
        assert _by_code(scorer.calculate_all())["DE"].score == 10

    def test_displacement(self, scorer, store):
        store.ingest_displacement([{"code": "DE", "refugees": 1_000_000}])
        assert _by_code(scorer.calculate_all())["DE"].score == 10


class TestLearningMode:

    def test_not_started_counts_as_learning(self, clock):
        learning = LearningMode(15, clock=clock)
        assert learning.in_learning()
        assert learning.progress() == {"in_learning": True, "remaining_minutes": 15, "progress": 0}

    def test_completes_after_duration(self, clock):
        learning = LearningMode(15, clock=clock)
        learning.start()
        clock.advance(minutes=5)
        progress = learning.progress()
        assert progress["in_learning"] is True
        assert progress["remaining_minutes"] == 10
        assert progress["progress"] == 33

        clock.advance(minutes=10)
        assert not learning.in_learning()
        assert learning.progress()["progress"] == 100

    def test_cached_scores_skip_learning(self, clock):
        learning = LearningMode(15, clock=clock)
        learning.start()
        learning.set_has_cached_scores(True)
        assert not learning.in_learning()
        assert learning.progress()["remaining_minutes"] == 0
