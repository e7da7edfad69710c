"""Prahari — Per-Country Signal Store & Ingestion.

One ingestion method per upstream event kind. Each resolves records to a
canonical ISO2 code (see country_resolution) and writes into a lazily-created
per-country bucket. How a batch combines with what is already stored is
declared per field in FIELD_POLICIES:

  APPEND   accumulates across calls until clear()
  UPSERT   keyed overwrite in place (same identity → same slot)
  REPLACE  the field is reset on every bucket before the batch is applied

Malformed records are skipped and counted; unresolvable records are counted
as unmapped and dropped. No ingestion call raises on record content.
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from backend.models import (
    AviationDisruption, ClimateAnomaly, ConflictEvent, DisplacementRecord,
    HapiSummary, IngestStats, InternetOutage, MilitaryFlight, MilitaryVessel,
    NewsCluster, ProtestEvent, RegionAlertSnapshot, SecurityAdvisory,
    StrikeEvent, UcdpClassification,
)
from fusion_engine.country_config import (
    CONFLICT_ZONE_RADIUS_KM, CONFLICT_ZONES, HOTSPOT_RADIUS_KM, INTEL_HOTSPOTS,
    MONITORED_COUNTRIES, STRATEGIC_WATERWAYS, WATERWAY_RADIUS_KM, ZONE_COUNTRY_MAP,
)
from fusion_engine.country_geometry import haversine_km
from fusion_engine.country_resolution import (
    IDENTITY_RULES, LOCATION_RULES, STRIKE_RULES, CountryResolver,
)
from fusion_engine.normalizer import normalize_batch

logger = logging.getLogger("prahari.ingest")


class MergePolicy(str, Enum):
    APPEND = "append"
    UPSERT = "upsert"
    REPLACE = "replace"


# Travel advisory severity ranking (higher = more severe)
ADVISORY_RANK = {
    "info": 0,
    "normal": 1,
    "caution": 2,
    "reconsider": 3,
    "do-not-travel": 4,
}


class CountrySignals(BaseModel):
    """Mutable signal bucket for one country."""
    protests: list[ProtestEvent] = Field(default_factory=list)
    conflicts: list[ConflictEvent] = Field(default_factory=list)
    ucdp_status: Optional[UcdpClassification] = None
    hapi_summary: Optional[HapiSummary] = None
    own_flights: int = 0
    own_vessels: int = 0
    foreign_flights: int = 0
    foreign_vessels: int = 0
    news_events: dict[str, NewsCluster] = Field(default_factory=dict)
    outages: dict[str, InternetOutage] = Field(default_factory=dict)
    strikes: dict[str, StrikeEvent] = Field(default_factory=dict)
    aviation: list[AviationDisruption] = Field(default_factory=list)
    displacement_outflow: int = 0
    climate_stress: int = 0
    region_alerts_active: int = 0
    region_alerts_24h: int = 0
    advisory_level: Optional[str] = None
    advisory_sources: int = 0
    hotspot_activity: float = 0.0


FIELD_POLICIES: dict[str, MergePolicy] = {
    "protests": MergePolicy.APPEND,
    "conflicts": MergePolicy.APPEND,
    "ucdp_status": MergePolicy.UPSERT,
    "hapi_summary": MergePolicy.UPSERT,
    "own_flights": MergePolicy.APPEND,
    "own_vessels": MergePolicy.APPEND,
    "foreign_flights": MergePolicy.APPEND,
    "foreign_vessels": MergePolicy.APPEND,
    "news_events": MergePolicy.UPSERT,
    "outages": MergePolicy.UPSERT,
    "strikes": MergePolicy.UPSERT,
    "aviation": MergePolicy.REPLACE,
    "displacement_outflow": MergePolicy.REPLACE,
    "climate_stress": MergePolicy.REPLACE,
    "region_alerts_active": MergePolicy.REPLACE,
    "region_alerts_24h": MergePolicy.REPLACE,
    "advisory_level": MergePolicy.REPLACE,
    "advisory_sources": MergePolicy.REPLACE,
    "hotspot_activity": MergePolicy.APPEND,
}


class SignalStore:
    """Owns every country bucket plus the global ingest counters."""

    def __init__(self, resolver: CountryResolver):
        self.resolver = resolver
        self._buckets: dict[str, CountrySignals] = {}
        self._stats = IngestStats()

    # ── Bucket access ──

    def bucket(self, code: str) -> CountrySignals:
        """Bucket for `code`, created on first reference."""
        data = self._buckets.get(code)
        if data is None:
            data = CountrySignals()
            self._buckets[code] = data
        return data

    def get(self, code: str) -> Optional[CountrySignals]:
        return self._buckets.get(code)

    def codes(self) -> list[str]:
        return list(self._buckets)

    def clear(self) -> None:
        self._buckets.clear()
        logger.info("[ingest] Signal store cleared")

    def get_ingest_stats(self) -> IngestStats:
        return self._stats.model_copy()

    def record_malformed(self, count: int) -> None:
        """Count records rejected upstream of the store (e.g. by the context)."""
        self._stats.malformed += count

    # ── Internals ──

    def _reset_field(self, field: str) -> None:
        if FIELD_POLICIES[field] is not MergePolicy.REPLACE:
            raise ValueError(f"{field} is not a replace-on-ingest field")
        default = CountrySignals.model_fields[field].get_default(call_default_factory=True)
        for data in self._buckets.values():
            setattr(data, field, default)

    def _validate(self, records: Iterable[Any], model: type[BaseModel]) -> list:
        valid, dropped = normalize_batch(records, model)
        self._stats.malformed += dropped
        return valid

    def _count(self, mapped: bool) -> None:
        self._stats.processed += 1
        if not mapped:
            self._stats.unmapped += 1

    def _log_batch(self, kind: str, total: int, unmapped_before: int) -> IngestStats:
        unmapped = self._stats.unmapped - unmapped_before
        logger.info("[ingest] %s: %d records (%d unmapped)", kind, total, unmapped)
        return self.get_ingest_stats()

    def _resolve(self, text: Optional[str], lat: Optional[float] = None,
                 lon: Optional[float] = None) -> Optional[str]:
        return self.resolver.resolve(text=text, code=text, lat=lat, lon=lon)

    def _resolve_identity(self, text: Optional[str], code: Optional[str] = None) -> Optional[str]:
        return self.resolver.resolve(text=text, code=code, rules=IDENTITY_RULES)

    def track_hotspot_activity(self, lat: Optional[float], lon: Optional[float],
                               weight: float = 1.0) -> None:
        """Credit countries near tracked hotspots, conflict zones and waterways.

        Only monitored countries are credited.
        """
        if lat is None or lon is None:
            return
        credits: list[tuple[str, float]] = []
        for hot_lat, hot_lon, code in INTEL_HOTSPOTS.values():
            if haversine_km(lat, lon, hot_lat, hot_lon) < HOTSPOT_RADIUS_KM:
                credits.append((code, weight))
        for zone_lat, zone_lon, codes in CONFLICT_ZONES.values():
            if haversine_km(lat, lon, zone_lat, zone_lon) < CONFLICT_ZONE_RADIUS_KM:
                credits.extend((code, weight * 2) for code in codes)
        for way_lat, way_lon, codes in STRATEGIC_WATERWAYS.values():
            if haversine_km(lat, lon, way_lat, way_lon) < WATERWAY_RADIUS_KM:
                credits.extend((code, weight * 1.5) for code in codes)
        for code, amount in credits:
            if code in MONITORED_COUNTRIES:
                self.bucket(code).hotspot_activity += amount

    # ── Event ingestion (append) ──

    def ingest_protests(self, events: Iterable[Any]) -> IngestStats:
        records: list[ProtestEvent] = self._validate(events, ProtestEvent)
        before = self._stats.unmapped
        for e in records:
            code = self._resolve(e.country, e.lat, e.lon)
            self._count(code is not None)
            if not code:
                continue
            self.bucket(code).protests.append(e)
            self.track_hotspot_activity(e.lat, e.lon, 2 if e.severity == "high" else 1)
        return self._log_batch("protests", len(records), before)

    def ingest_conflicts(self, events: Iterable[Any]) -> IngestStats:
        records: list[ConflictEvent] = self._validate(events, ConflictEvent)
        before = self._stats.unmapped
        for e in records:
            code = self._resolve(e.country, e.lat, e.lon)
            self._count(code is not None)
            if not code:
                continue
            self.bucket(code).conflicts.append(e)
            self.track_hotspot_activity(e.lat, e.lon, 3 if e.fatalities > 0 else 2)
        return self._log_batch("conflicts", len(records), before)

    def ingest_military(self, flights: Iterable[Any], vessels: Iterable[Any]) -> IngestStats:
        """Credit the operator with own activity and the location country with foreign presence."""
        flight_records: list[MilitaryFlight] = self._validate(flights, MilitaryFlight)
        vessel_records: list[MilitaryVessel] = self._validate(vessels, MilitaryVessel)
        before = self._stats.unmapped

        for asset, own_field, foreign_field, weight in (
            *((f, "own_flights", "foreign_flights", 1.5) for f in flight_records),
            *((v, "own_vessels", "foreign_vessels", 2.0) for v in vessel_records),
        ):
            operator = self._resolve_identity(asset.operator_country) if asset.operator_country else None
            location = self.resolver.resolve(lat=asset.lat, lon=asset.lon, rules=LOCATION_RULES)
            self._count(operator is not None or location is not None)

            if operator:
                data = self.bucket(operator)
                setattr(data, own_field, getattr(data, own_field) + 1)
            if location and location != operator:
                data = self.bucket(location)
                setattr(data, foreign_field, getattr(data, foreign_field) + 1)
            self.track_hotspot_activity(asset.lat, asset.lon, weight)

        return self._log_batch("military", len(flight_records) + len(vessel_records), before)

    # ── Keyed ingestion (upsert) ──

    def ingest_ucdp(self, classifications: Iterable[Any]) -> IngestStats:
        records: list[UcdpClassification] = self._validate(classifications, UcdpClassification)
        before = self._stats.unmapped
        for c in records:
            code = self._resolve_identity(c.country, c.country)
            self._count(code is not None)
            if code:
                self.bucket(code).ucdp_status = c
        return self._log_batch("ucdp", len(records), before)

    def ingest_hapi(self, summaries: Iterable[Any]) -> IngestStats:
        records: list[HapiSummary] = self._validate(summaries, HapiSummary)
        before = self._stats.unmapped
        for s in records:
            code = self._resolve_identity(s.country_code, s.country_code)
            self._count(code is not None)
            if code:
                self.bucket(code).hapi_summary = s
        return self._log_batch("hapi", len(records), before)

    def ingest_news(self, clusters: Iterable[Any]) -> IngestStats:
        """Attribute each cluster to every country it mentions, keyed by cluster id."""
        records: list[NewsCluster] = self._validate(clusters, NewsCluster)
        before = self._stats.unmapped
        for cluster in records:
            codes = self.resolver.resolve_all_in_text(cluster.title)
            self._count(bool(codes))
            for code in codes:
                self.bucket(code).news_events[cluster.id] = cluster
        return self._log_batch("news", len(records), before)

    def ingest_outages(self, outages: Iterable[Any]) -> IngestStats:
        records: list[InternetOutage] = self._validate(outages, InternetOutage)
        before = self._stats.unmapped
        for o in records:
            code = self._resolve(o.country, o.lat, o.lon)
            self._count(code is not None)
            if not code:
                continue
            key = o.id or f"{code}:{o.title}:{o.pub_date.isoformat()}"
            self.bucket(code).outages[key] = o
        return self._log_batch("outages", len(records), before)

    def ingest_strikes(self, strikes: Iterable[Any]) -> IngestStats:
        records: list[StrikeEvent] = self._validate(strikes, StrikeEvent)
        before = self._stats.unmapped
        for s in records:
            code = self.resolver.resolve(lat=s.latitude, lon=s.longitude, rules=STRIKE_RULES)
            self._count(code is not None)
            if code:
                self.bucket(code).strikes[s.id] = s
        return self._log_batch("strikes", len(records), before)

    # ── Snapshot ingestion (replace) ──

    def ingest_displacement(self, countries: Iterable[Any]) -> IngestStats:
        self._reset_field("displacement_outflow")
        records: list[DisplacementRecord] = self._validate(countries, DisplacementRecord)
        before = self._stats.unmapped
        for c in records:
            code = self._resolve_identity(c.name, c.code)
            self._count(code is not None)
            if code:
                self.bucket(code).displacement_outflow = c.refugees + c.asylum_seekers
        return self._log_batch("displacement", len(records), before)

    def ingest_climate(self, anomalies: Iterable[Any]) -> IngestStats:
        self._reset_field("climate_stress")
        records: list[ClimateAnomaly] = self._validate(anomalies, ClimateAnomaly)
        before = self._stats.unmapped
        for a in records:
            if a.severity == "normal":
                self._count(True)
                continue
            codes = ZONE_COUNTRY_MAP.get(a.zone)
            if codes is None:
                resolved = self._resolve_identity(a.zone)
                codes = [resolved] if resolved else []
            self._count(bool(codes))
            stress = 15 if a.severity == "extreme" else 8
            for code in codes:
                data = self.bucket(code)
                data.climate_stress = max(data.climate_stress, stress)
        return self._log_batch("climate", len(records), before)

    def ingest_aviation(self, disruptions: Iterable[Any]) -> IngestStats:
        self._reset_field("aviation")
        records: list[AviationDisruption] = self._validate(disruptions, AviationDisruption)
        before = self._stats.unmapped
        for d in records:
            code = self._resolve_identity(d.country, d.country)
            self._count(code is not None)
            if code:
                self.bucket(code).aviation.append(d)
        return self._log_batch("aviation", len(records), before)

    def ingest_region_alerts(self, snapshots: Iterable[Any]) -> IngestStats:
        self._reset_field("region_alerts_active")
        self._reset_field("region_alerts_24h")
        records: list[RegionAlertSnapshot] = self._validate(snapshots, RegionAlertSnapshot)
        before = self._stats.unmapped
        for snap in records:
            code = self._resolve_identity(snap.country, snap.country)
            self._count(code is not None)
            if code:
                data = self.bucket(code)
                data.region_alerts_active += snap.active
                data.region_alerts_24h += snap.history_24h
        return self._log_batch("region_alerts", len(records), before)

    def ingest_advisories(self, advisories: Iterable[Any]) -> IngestStats:
        """Aggregate advisories into max level and corroborating-source count per country."""
        self._reset_field("advisory_level")
        self._reset_field("advisory_sources")
        records: list[SecurityAdvisory] = self._validate(advisories, SecurityAdvisory)
        before = self._stats.unmapped

        per_country: dict[str, dict[str, str]] = {}
        for adv in records:
            code = None
            if adv.country:
                code = self._resolve_identity(adv.country, adv.country)
            if not code and adv.title:
                code = self._resolve_identity(adv.title)
            self._count(code is not None)
            if not code:
                continue
            sources = per_country.setdefault(code, {})
            current = sources.get(adv.source_country)
            if current is None or ADVISORY_RANK.get(adv.level, 0) > ADVISORY_RANK.get(current, 0):
                sources[adv.source_country] = adv.level

        for code, sources in per_country.items():
            data = self.bucket(code)
            data.advisory_level = max(sources.values(), key=lambda lvl: ADVISORY_RANK.get(lvl, 0))
            data.advisory_sources = sum(
                1 for lvl in sources.values() if ADVISORY_RANK.get(lvl, 0) >= ADVISORY_RANK["caution"]
            )
        return self._log_batch("advisories", len(records), before)
