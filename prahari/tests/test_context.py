"""
End-to-end tests for one intelligence context: ingest, refresh, alerts.
"""

from backend.models import AlertType
from fusion_engine.context import IntelligenceContext


def _converging_inputs(ctx):
    ctx.ingest_protests([{"country": "Ukraine", "lat": 49.2, "lon": 30.3}])
    ctx.ingest_conflicts([{"country": "Ukraine", "lat": 49.5, "lon": 30.7, "eventType": "battle"}])
    ctx.ingest_military(flights=[{"operatorCountry": "Russia", "lat": 49.9, "lon": 30.1}], vessels=[])


class TestRefresh:

    def test_refresh_scores_and_detects_convergence(self, ctx):
        _converging_inputs(ctx)
        result = ctx.refresh()

        assert [c.cell_id for c in result.convergence_alerts] == ["49:30"]
        assert any(a.id == "conv-49:30" for a in result.new_alerts)
        assert ctx.last_scores == result.scores
        ua = next(s for s in result.scores if s.code == "UA")
        assert ua.components.conflict > 0

    def test_repeat_refresh_does_not_duplicate_convergence(self, ctx):
        _converging_inputs(ctx)
        ctx.refresh()
        ctx.refresh()
        assert [a.id for a in ctx.alerts.get_alerts()] == ["conv-49:30"]

    def test_cii_alerts_suppressed_while_learning(self, ctx):
        ctx.refresh()
        ctx.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        result = ctx.refresh()
        assert not any(a.type == AlertType.CII_SPIKE for a in result.new_alerts)

    def test_cii_alert_after_cached_scores(self, ctx):
        ctx.set_has_cached_scores(True)
        ctx.refresh()
        ctx.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        result = ctx.refresh()

        [alert] = [a for a in result.new_alerts if a.id == "cii-DE"]
        assert alert.components.cii_change.previous_score == 2
        assert alert.components.cii_change.current_score == 70

    def test_cii_alert_once_learning_window_passes(self, ctx, clock):
        ctx.refresh()
        clock.advance(minutes=16)
        ctx.ingest_ucdp([{"country": "Germany", "intensity": "war"}])
        result = ctx.refresh()
        assert any(a.id == "cii-DE" for a in result.new_alerts)


class TestIngestion:

    def test_malformed_counted_once(self, ctx):
        stats = ctx.ingest_protests([{"lat": 1.0}, {"country": "France"}])
        assert stats.malformed == 1
        assert stats.processed == 1

    def test_malformed_temporal_anomalies_counted(self, ctx):
        stats = ctx.ingest_temporal_anomalies([
            {"region": "no type"},
            {"type": "military_flights", "region": "Black Sea", "message": "Flights 3x normal"},
        ])
        assert stats.malformed == 1
        assert ctx.aggregator.get_summary().total_signals == 1

    def test_cascade_creates_alerts(self, ctx):
        created = ctx.ingest_cascades([{
            "source": {"id": "cable-1", "name": "Cable A", "type": "cable"},
            "countriesAffected": [{"country": "UA", "impactLevel": "high"}],
        }])
        assert len(created) == 1
        assert ctx.alerts.infrastructure_incidents() == 1

    def test_signals_feed_aggregator(self, ctx):
        ctx.ingest_outages([{"country": "Iran", "severity": "total"}])
        ctx.ingest_satellite_fires([{"lat": 30.0, "lon": 52.0, "brightness": 340}])
        [cluster] = ctx.aggregator.get_country_clusters()
        assert cluster.country == "IR"
        assert len(cluster.signal_types) == 2


class TestStrategicRisk:

    def test_overview_after_refresh(self, ctx):
        _converging_inputs(ctx)
        ctx.refresh()
        overview = ctx.strategic_risk()
        assert overview.convergence_alerts == 1
        assert overview.top_risks[0].startswith("Convergence: Ukraine")
        assert 0 <= overview.composite_score <= 100

    def test_trend_uses_previous_overview(self, ctx):
        ctx.refresh()
        assert ctx.strategic_risk().trend == "stable"
        assert ctx.strategic_risk(breaking_alert_score=15).trend == "escalating"


def test_contexts_are_independent(test_settings, geometry, clock):
    a = IntelligenceContext(test_settings, geometry=geometry, clock=clock)
    b = IntelligenceContext(test_settings, geometry=geometry, clock=clock)
    a.ingest_protests([{"country": "France"}])
    assert a.store.get("FR") is not None
    assert b.store.get("FR") is None


def test_clear(ctx):
    _converging_inputs(ctx)
    ctx.refresh()
    ctx.clear()
    assert ctx.store.codes() == []
    assert ctx.alerts.get_alerts() == []
    assert ctx.last_scores == []
