"""Tests for the geographic signal aggregator."""

from datetime import timedelta

import pytest

from backend.models import SignalType
from fusion_engine.signal_aggregator import SignalAggregator


@pytest.fixture()
def aggregator(resolver, clock):
    return SignalAggregator(resolver, clock=clock)


def _of_type(aggregator, signal_type):
    return [s for s in aggregator.signals() if s.type == signal_type]


class TestIngestion:

    def test_protests_collapse_per_country(self, aggregator):
        aggregator.ingest_protests([{"country": "France"}] * 3)
        [signal] = aggregator.signals()
        assert signal.country == "FR"
        assert signal.title == "3 protest events"
        assert signal.severity == "low"

    def test_each_ingest_replaces_its_type(self, aggregator):
        aggregator.ingest_protests([{"country": "France"}] * 3)
        aggregator.ingest_outages([{"country": "Iran", "severity": "total"}])
        aggregator.ingest_protests([{"country": "Ukraine"}])

        protests = _of_type(aggregator, SignalType.PROTEST)
        assert [s.country for s in protests] == ["UA"]
        assert len(_of_type(aggregator, SignalType.INTERNET_OUTAGE)) == 1

    def test_flight_severity_tiers(self, aggregator):
        aggregator.ingest_flights([{"lat": 55.0, "lon": 50.0}] * 6)
        [signal] = aggregator.signals()
        assert signal.country == "RU"
        assert signal.severity == "medium"

    def test_temporal_anomalies_replace_by_source_type(self, aggregator):
        aggregator.ingest_temporal_anomalies([
            {"type": "news", "message": "a"},
            {"type": "flights", "message": "b"},
        ])
        aggregator.ingest_temporal_anomalies([{"type": "news", "message": "c"}])
        assert {s.title for s in aggregator.signals()} == {"b", "c"}

    def test_strikes_deduplicated_and_attributed(self, aggregator):
        strike = {"id": "s1", "latitude": 30.0, "longitude": 52.0, "severity": "high"}
        aggregator.ingest_conflict_events([strike, strike, {"id": "s2", "latitude": 0.0, "longitude": 0.0}])
        [signal] = aggregator.signals()
        assert signal.country == "IR"
        assert signal.strike_count == 1
        assert signal.high_severity_strike_count == 1

    def test_fire_severity_from_brightness(self, aggregator):
        aggregator.ingest_satellite_fires([{"lat": 30.0, "lon": 52.0, "brightness": 370, "frp": 12.5}])
        [signal] = aggregator.signals()
        assert signal.country == "IR"
        assert signal.severity == "high"

    def test_theater_posture_backfills_missing_types(self, aggregator):
        aggregator.ingest_flights([{"lat": 30.0, "lon": 52.0}])
        aggregator.ingest_theater_postures([{
            "targetNation": "Iran", "totalAircraft": 12, "totalVessels": 3,
            "postureLevel": "elevated", "theaterName": "Persian Gulf",
        }])
        ir = [s for s in aggregator.signals() if s.country == "IR"]
        assert sorted(s.type.value for s in ir) == ["military_flight", "military_vessel"]

    def test_signals_outside_window_are_pruned(self, aggregator, clock):
        stale = (clock() - timedelta(hours=30)).isoformat()
        aggregator.ingest_outages([
            {"country": "Iran", "pubDate": stale},
            {"country": "Ukraine"},
        ])
        assert [s.country for s in aggregator.signals()] == ["UA"]


class TestClustering:

    def test_country_convergence_score(self, aggregator):
        aggregator.ingest_outages([
            {"country": "Ukraine", "severity": "total"},
            {"country": "Ukraine", "severity": "major"},
        ])
        aggregator.ingest_protests([{"country": "Ukraine"}])

        [cluster] = aggregator.get_country_clusters()
        assert cluster.country == "UA"
        assert cluster.total_count == 3
        assert cluster.high_severity_count == 1
        # 2 types × 20 + 3 signals × 5 + 1 high × 10
        assert cluster.convergence_score == 65

    def test_unknown_country_excluded_from_clusters(self, aggregator):
        aggregator.ingest_temporal_anomalies([{"type": "news", "message": "spike"}])
        assert aggregator.signal_count == 1
        assert aggregator.get_country_clusters() == []

    def test_regional_convergence(self, aggregator):
        aggregator.ingest_protests([{"country": "Ukraine"}])
        aggregator.ingest_flights([{"lat": 55.0, "lon": 50.0}])

        [region] = aggregator.get_regional_convergence()
        assert region.region == "Eastern Europe"
        assert sorted(region.countries) == ["RU", "UA"]
        assert len(region.signal_types) == 2

    def test_single_type_region_is_not_convergence(self, aggregator):
        aggregator.ingest_protests([{"country": "Ukraine"}, {"country": "Russia"}])
        assert aggregator.get_regional_convergence() == []


class TestDigest:

    def test_empty_context(self, aggregator):
        assert aggregator.generate_context() == ""

    def test_context_lists_regions_and_countries(self, aggregator):
        aggregator.ingest_protests([{"country": "Ukraine"}])
        aggregator.ingest_flights([{"lat": 55.0, "lon": 50.0}])
        context = aggregator.generate_context()
        assert context.startswith("[GEOGRAPHIC SIGNALS]")
        assert "Eastern Europe:" in context
        assert "Ukraine: 1 signals" in context

    def test_summary_counts_by_type(self, aggregator):
        aggregator.ingest_protests([{"country": "Ukraine"}])
        summary = aggregator.get_summary()
        assert summary.total_signals == 1
        assert summary.by_type[SignalType.PROTEST] == 1
        assert summary.by_type[SignalType.ACTIVE_STRIKE] == 0

    def test_clear(self, aggregator):
        aggregator.ingest_protests([{"country": "Ukraine"}])
        aggregator.clear()
        assert aggregator.signal_count == 0
