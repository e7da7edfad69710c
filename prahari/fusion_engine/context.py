"""Prahari — Intelligence Context.

Owns every piece of mutable fusion state (signal buckets, previous scores,
alert store, aggregator snapshots, convergence grid) for one independent
instance. Callers serialize access: one writer at a time.

Refresh cycle order:
  convergence detection → scoring → alert prune → CII deltas → convergence alerts
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, Field

from backend.config import Settings, settings as default_settings
from backend.models import (
    AisDisruption, CascadeResult, ConflictEvent, CountryScore, FireDetection,
    GeoConvergenceAlert, IngestStats, InternetOutage, MilitaryFlight,
    MilitaryVessel, ProtestEvent, StrategicRiskOverview, StrikeEvent,
    TemporalAnomaly, TheaterPosture, UnifiedAlert, utcnow,
)
from fusion_engine.alert_correlation import AlertCorrelator
from fusion_engine.country_geometry import CountryGeometryIndex
from fusion_engine.country_instability import InstabilityScorer, LearningMode
from fusion_engine.country_resolution import CountryResolver
from fusion_engine.geo_convergence import GeoConvergenceDetector
from fusion_engine.normalizer import normalize_batch
from fusion_engine.risk_calculator import calculate_strategic_risk
from fusion_engine.signal_aggregator import SignalAggregator
from fusion_engine.signal_store import SignalStore

logger = logging.getLogger("prahari.fusion")


class RefreshResult(BaseModel):
    scores: list[CountryScore] = Field(default_factory=list)
    new_alerts: list[UnifiedAlert] = Field(default_factory=list)
    convergence_alerts: list[GeoConvergenceAlert] = Field(default_factory=list)


def _points(records: Iterable[Any], lat: str = "lat", lon: str = "lon",
            timestamp: Optional[str] = None) -> list[dict]:
    return [
        {
            "latitude": getattr(r, lat),
            "longitude": getattr(r, lon),
            "timestamp": getattr(r, timestamp) if timestamp else None,
        }
        for r in records
    ]


class IntelligenceContext:
    """One fusion instance: ingestion, scoring, correlation and aggregation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        geometry: Optional[CountryGeometryIndex] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or default_settings
        self._clock = clock or utcnow
        s = self.settings

        self.geometry = geometry or CountryGeometryIndex()
        self.resolver = CountryResolver(self.geometry)
        self.store = SignalStore(self.resolver)
        self.learning = LearningMode(s.learning_minutes, clock=self._clock)
        self.scorer = InstabilityScorer(
            self.store, self.resolver, clock=self._clock,
            news_recency_hours=s.news_recency_hours,
            strike_recency_hours=s.strike_recency_hours,
        )
        self.alerts = AlertCorrelator(
            self.resolver, self.learning, clock=self._clock,
            max_alerts=s.alert_max_count,
            retention_hours=s.alert_retention_hours,
            merge_window_minutes=s.alert_merge_window_minutes,
            merge_distance_km=s.alert_merge_distance_km,
        )
        self.aggregator = SignalAggregator(self.resolver, clock=self._clock,
                                           window_hours=s.signal_window_hours)
        self.convergence = GeoConvergenceDetector(clock=self._clock,
                                                  window_hours=s.signal_window_hours)

        self._theater_postures: list[TheaterPosture] = []
        self._last_scores: list[CountryScore] = []
        self._last_convergence: list[GeoConvergenceAlert] = []
        self._previous_composite: Optional[int] = None

        self.learning.start()

    async def load_geometry(self, source: Optional[str | Path] = None) -> bool:
        return await self.geometry.load(source or self.settings.geometry_source)

    def _validated(self, records: Iterable[Any], model: type[BaseModel]) -> list:
        valid, dropped = normalize_batch(records, model)
        self.store.record_malformed(dropped)
        return valid

    # ─── Ingestion ───────────────────────────────────

    def ingest_protests(self, events: Iterable[Any]) -> IngestStats:
        records = self._validated(events, ProtestEvent)
        self.aggregator.ingest_protests(records)
        self.convergence.set_events("protest", _points(records))
        return self.store.ingest_protests(records)

    def ingest_conflicts(self, events: Iterable[Any]) -> IngestStats:
        records = self._validated(events, ConflictEvent)
        self.convergence.set_events("conflict", _points(records))
        return self.store.ingest_conflicts(records)

    def ingest_military(self, flights: Iterable[Any], vessels: Iterable[Any]) -> IngestStats:
        flight_records = self._validated(flights, MilitaryFlight)
        vessel_records = self._validated(vessels, MilitaryVessel)
        self.aggregator.ingest_flights(flight_records)
        self.aggregator.ingest_vessels(vessel_records)
        self.convergence.set_events("military", _points(flight_records))
        self.convergence.set_events("military_marine", _points(vessel_records))
        return self.store.ingest_military(flight_records, vessel_records)

    def ingest_outages(self, outages: Iterable[Any]) -> IngestStats:
        records = self._validated(outages, InternetOutage)
        self.aggregator.ingest_outages(records)
        self.convergence.set_events("outage", _points(records, timestamp="pub_date"))
        return self.store.ingest_outages(records)

    def ingest_strikes(self, strikes: Iterable[Any]) -> IngestStats:
        records = self._validated(strikes, StrikeEvent)
        self.aggregator.ingest_conflict_events(records)
        self.convergence.set_events("strike", _points(records, "latitude", "longitude", "timestamp"))
        return self.store.ingest_strikes(records)

    def ingest_ais_disruptions(self, events: Iterable[Any]) -> IngestStats:
        records = self._validated(events, AisDisruption)
        self.aggregator.ingest_ais_disruptions(records)
        self.convergence.set_events("ais", _points(records))
        return self.store.get_ingest_stats()

    def ingest_satellite_fires(self, fires: Iterable[Any]) -> IngestStats:
        records = self._validated(fires, FireDetection)
        self.aggregator.ingest_satellite_fires(records)
        self.convergence.set_events("fire", _points(records, timestamp="acq_date"))
        return self.store.get_ingest_stats()

    def ingest_temporal_anomalies(self, anomalies: Iterable[Any]) -> IngestStats:
        self.aggregator.ingest_temporal_anomalies(self._validated(anomalies, TemporalAnomaly))
        return self.store.get_ingest_stats()

    def ingest_theater_postures(self, postures: Iterable[Any]) -> IngestStats:
        self._theater_postures = self._validated(postures, TheaterPosture)
        self.aggregator.ingest_theater_postures(self._theater_postures)
        return self.store.get_ingest_stats()

    def ingest_cascades(self, results: Iterable[Any]) -> list[UnifiedAlert]:
        created = []
        for result in self._validated(results, CascadeResult):
            alert = self.alerts.create_cascade_alert(result)
            if alert:
                created.append(alert)
        return created

    # Store-only feeds
    def ingest_ucdp(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_ucdp(records)

    def ingest_hapi(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_hapi(records)

    def ingest_displacement(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_displacement(records)

    def ingest_climate(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_climate(records)

    def ingest_news(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_news(records)

    def ingest_aviation(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_aviation(records)

    def ingest_advisories(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_advisories(records)

    def ingest_region_alerts(self, records: Iterable[Any]) -> IngestStats:
        return self.store.ingest_region_alerts(records)

    # ─── Cycle ───────────────────────────────────────

    def set_has_cached_scores(self, has_scores: bool) -> None:
        self.learning.set_has_cached_scores(has_scores)

    def set_focal_urgencies(self, urgencies: dict[str, str]) -> None:
        self.scorer.set_focal_urgencies(urgencies)

    def refresh(self, theater_postures: Optional[Iterable[Any]] = None) -> RefreshResult:
        """Run one fusion cycle over whatever has been ingested so far."""
        if theater_postures is not None:
            self.ingest_theater_postures(theater_postures)

        convergence = self.convergence.detect()
        scores = self.scorer.calculate_all()
        new_alerts = self.alerts.update_alerts(convergence, scores)

        self._last_scores = scores
        self._last_convergence = convergence
        logger.info("[context] Refresh: %d scores, %d convergence cells, %d alerts touched",
                    len(scores), len(convergence), len(new_alerts))
        return RefreshResult(scores=scores, new_alerts=new_alerts, convergence_alerts=convergence)

    def strategic_risk(self, breaking_alert_score: float = 0,
                       theater_stale_factor: float = 1.0) -> StrategicRiskOverview:
        """Global overview from the most recent refresh; advances the composite trend."""
        overview = calculate_strategic_risk(
            self._last_scores,
            self._last_convergence,
            self.alerts.get_alerts(),
            theater_postures=self._theater_postures,
            breaking_alert_score=breaking_alert_score,
            theater_stale_factor=theater_stale_factor,
            previous_composite=self._previous_composite,
            location_name=self._location_name,
        )
        self._previous_composite = overview.composite_score
        return overview

    def _location_name(self, lat: float, lon: float) -> str:
        countries = self.alerts.countries_near(lat, lon)
        if not countries:
            return f"{lat:.1f}°, {lon:.1f}°"
        return ", ".join(self.resolver.display_name(c) for c in countries[:3])

    @property
    def last_scores(self) -> list[CountryScore]:
        return list(self._last_scores)

    def clear(self) -> None:
        self.store.clear()
        self.aggregator.clear()
        self.convergence.clear()
        self.alerts.clear()
        self._theater_postures = []
        self._last_scores = []
        self._last_convergence = []
