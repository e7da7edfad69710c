"""Prahari — Geographic Signal Aggregator.

Collects map signals per type, groups them by country and region, and
renders a short digest for downstream summarization.

Every ingest call replaces that type's previous snapshot, then a rolling
window prune runs across all types. Flights, vessels, protests and strikes
are materialized as one aggregate signal per country with a count-based
severity tier.

Country convergence score:
  min(100, 20 × distinct types + min(30, 5 × signals) + 10 × high-severity)
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from backend.models import (
    AisDisruption, CountrySignalCluster, FireDetection, GeoSignal,
    InternetOutage, MilitaryFlight, MilitaryVessel, ProtestEvent,
    RegionalConvergence, SignalSummary, SignalType, StrikeEvent,
    TemporalAnomaly, TheaterPosture, utcnow,
)
from fusion_engine.country_resolution import (
    IDENTITY_RULES, LOCATION_RULES, STRIKE_RULES, CountryResolver,
)
from fusion_engine.normalizer import normalize_batch

logger = logging.getLogger("prahari.signals")

UNKNOWN_COUNTRY = "XX"
MAX_STRIKES_PER_COUNTRY = 50

REGION_DEFINITIONS: dict[str, dict] = {
    "middle_east": {
        "name": "Middle East",
        "countries": ["IR", "IL", "SA", "AE", "IQ", "SY", "YE", "JO", "LB", "KW", "QA", "OM", "BH"],
    },
    "east_asia": {
        "name": "East Asia",
        "countries": ["CN", "TW", "JP", "KR", "KP", "HK", "MN"],
    },
    "south_asia": {
        "name": "South Asia",
        "countries": ["IN", "PK", "BD", "AF", "NP", "LK", "MM"],
    },
    "europe_east": {
        "name": "Eastern Europe",
        "countries": ["UA", "RU", "BY", "PL", "RO", "MD", "HU", "CZ", "SK", "BG"],
    },
    "africa_north": {
        "name": "North Africa",
        "countries": ["EG", "LY", "DZ", "TN", "MA", "SD", "SS"],
    },
    "africa_sahel": {
        "name": "Sahel Region",
        "countries": ["ML", "NE", "BF", "TD", "NG", "CM", "CF"],
    },
}

TYPE_LABELS: dict[SignalType, str] = {
    SignalType.INTERNET_OUTAGE: "internet disruptions",
    SignalType.MILITARY_FLIGHT: "military air activity",
    SignalType.MILITARY_VESSEL: "naval presence",
    SignalType.PROTEST: "civil unrest",
    SignalType.AIS_DISRUPTION: "shipping anomalies",
    SignalType.SATELLITE_FIRE: "thermal anomalies",
    SignalType.TEMPORAL_ANOMALY: "baseline anomalies",
    SignalType.ACTIVE_STRIKE: "active strikes",
}

# Theater posture target → country
THEATER_TARGET_CODES = {
    "Iran": "IR", "Taiwan": "TW", "North Korea": "KP", "Gaza": "PS", "Yemen": "YE",
}

OUTAGE_SEVERITY = {"total": "high", "major": "medium"}
AIS_SEVERITY = {"elevated": "medium", "high": "high", "medium": "medium"}


def _tier(count: int, high: int, medium: int) -> str:
    if count >= high:
        return "high"
    if count >= medium:
        return "medium"
    return "low"


class SignalAggregator:
    """Rolling per-type signal snapshots with country and regional clustering."""

    def __init__(self, resolver: CountryResolver,
                 clock: Callable[[], datetime] = utcnow,
                 window_hours: float = 24):
        self.resolver = resolver
        self._clock = clock
        self.window = timedelta(hours=window_hours)
        self._signals: list[GeoSignal] = []

    @property
    def signal_count(self) -> int:
        return len(self._signals)

    def signals(self) -> list[GeoSignal]:
        return list(self._signals)

    # ── Internals ──

    def _clear_type(self, signal_type: SignalType) -> None:
        self._signals = [s for s in self._signals if s.type != signal_type]

    def _prune(self) -> None:
        cutoff = self._clock() - self.window
        self._signals = [s for s in self._signals if s.timestamp > cutoff]

    def _coords_to_country(self, lat: float, lon: float) -> str:
        return self.resolver.resolve(lat=lat, lon=lon, rules=LOCATION_RULES) or UNKNOWN_COUNTRY

    def _country_for(self, country: str, lat: float | None, lon: float | None) -> str:
        return self.resolver.resolve(text=country, code=country, lat=lat, lon=lon) or UNKNOWN_COUNTRY

    def _name(self, code: str) -> str:
        return self.resolver.display_name(code)

    def _replace(self, signal_type: SignalType, signals: list[GeoSignal]) -> None:
        self._clear_type(signal_type)
        self._signals.extend(signals)
        self._prune()
        logger.debug("[signals] %s: %d signals", signal_type.value, len(signals))

    def _per_country(self, signal_type: SignalType, located: Iterable[tuple[str, float, float]],
                     tiers: tuple[int, int], title: str) -> list[GeoSignal]:
        """One aggregate signal per country, positioned at its first observation."""
        counts: dict[str, list] = {}
        for code, lat, lon in located:
            entry = counts.setdefault(code, [0, lat, lon])
            entry[0] += 1
        now = self._clock()
        return [
            GeoSignal(
                type=signal_type,
                country=code,
                country_name=self._name(code),
                lat=lat,
                lon=lon,
                severity=_tier(count, *tiers),
                title=title.format(count=count),
                timestamp=now,
            )
            for code, (count, lat, lon) in counts.items()
        ]

    # ── Ingestion ──

    def ingest_outages(self, outages: Iterable[Any]) -> None:
        records, _ = normalize_batch(outages, InternetOutage)
        signals = []
        for o in records:
            code = self._country_for(o.country, o.lat, o.lon)
            signals.append(GeoSignal(
                type=SignalType.INTERNET_OUTAGE,
                country=code,
                country_name=o.country,
                lat=o.lat or 0.0,
                lon=o.lon or 0.0,
                severity=OUTAGE_SEVERITY.get(o.severity, "low"),
                title=o.title,
                timestamp=o.pub_date,
            ))
        self._replace(SignalType.INTERNET_OUTAGE, signals)

    def ingest_flights(self, flights: Iterable[Any]) -> None:
        records, _ = normalize_batch(flights, MilitaryFlight)
        located = ((self._coords_to_country(f.lat, f.lon), 0.0, 0.0) for f in records)
        self._replace(SignalType.MILITARY_FLIGHT, self._per_country(
            SignalType.MILITARY_FLIGHT, located, (10, 5), "{count} military aircraft detected",
        ))

    def ingest_vessels(self, vessels: Iterable[Any]) -> None:
        records, _ = normalize_batch(vessels, MilitaryVessel)
        located = ((self._coords_to_country(v.lat, v.lon), v.lat, v.lon) for v in records)
        self._replace(SignalType.MILITARY_VESSEL, self._per_country(
            SignalType.MILITARY_VESSEL, located, (5, 2), "{count} naval vessels near region",
        ))

    def ingest_protests(self, events: Iterable[Any]) -> None:
        records, _ = normalize_batch(events, ProtestEvent)
        located = ((self._country_for(e.country, e.lat, e.lon), e.lat or 0.0, e.lon or 0.0) for e in records)
        self._replace(SignalType.PROTEST, self._per_country(
            SignalType.PROTEST, located, (10, 5), "{count} protest events",
        ))

    def ingest_ais_disruptions(self, events: Iterable[Any]) -> None:
        records, _ = normalize_batch(events, AisDisruption)
        now = self._clock()
        signals = [
            GeoSignal(
                type=SignalType.AIS_DISRUPTION,
                country=self._coords_to_country(e.lat, e.lon),
                country_name=e.name,
                lat=e.lat,
                lon=e.lon,
                severity=AIS_SEVERITY.get(e.severity, "low"),
                title=e.description,
                timestamp=now,
            )
            for e in records
        ]
        self._replace(SignalType.AIS_DISRUPTION, signals)

    def ingest_satellite_fires(self, fires: Iterable[Any]) -> None:
        records, _ = normalize_batch(fires, FireDetection)
        signals = []
        for fire in records:
            code = self._coords_to_country(fire.lat, fire.lon)
            if code == UNKNOWN_COUNTRY and fire.region:
                code = self.resolver.resolve(text=fire.region, rules=IDENTITY_RULES) or UNKNOWN_COUNTRY
            severity = "high" if fire.brightness > 360 else "medium" if fire.brightness > 320 else "low"
            signals.append(GeoSignal(
                type=SignalType.SATELLITE_FIRE,
                country=code,
                country_name=fire.region,
                lat=fire.lat,
                lon=fire.lon,
                severity=severity,
                title=f"Thermal anomaly detected ({round(fire.brightness)}K, {fire.frp:.1f}MW)",
                timestamp=fire.acq_date,
            ))
        self._replace(SignalType.SATELLITE_FIRE, signals)

    def ingest_temporal_anomalies(self, anomalies: Iterable[Any]) -> None:
        """Replace temporal anomalies only for the source types present in this batch."""
        records, _ = normalize_batch(anomalies, TemporalAnomaly)
        incoming = {a.type for a in records}
        self._signals = [
            s for s in self._signals
            if s.type != SignalType.TEMPORAL_ANOMALY or s.source_type not in incoming
        ]
        now = self._clock()
        for a in records:
            self._signals.append(GeoSignal(
                type=SignalType.TEMPORAL_ANOMALY,
                country=UNKNOWN_COUNTRY,
                country_name=a.region,
                severity="high" if a.severity in ("critical", "high") else "medium",
                title=a.message,
                timestamp=now,
                source_type=a.type,
            ))
        self._prune()

    def ingest_conflict_events(self, events: Iterable[Any]) -> None:
        """Aggregate geolocated strikes per country; unattributable strikes are dropped."""
        records, _ = normalize_batch(events, StrikeEvent)
        seen: set[str] = set()
        by_country: dict[str, list[StrikeEvent]] = defaultdict(list)
        for e in records:
            if e.id in seen:
                continue
            seen.add(e.id)
            code = self.resolver.resolve(lat=e.latitude, lon=e.longitude, rules=STRIKE_RULES)
            if code:
                by_country[code].append(e)

        signals = []
        for code, strikes in by_country.items():
            capped = strikes[:MAX_STRIKES_PER_COUNTRY]
            high = sum(1 for e in capped if e.severity.lower() in ("high", "critical"))
            signals.append(GeoSignal(
                type=SignalType.ACTIVE_STRIKE,
                country=code,
                country_name=self._name(code),
                lat=capped[0].latitude,
                lon=capped[0].longitude,
                severity=_tier(high, 5, 2),
                title=f"{len(capped)} strikes ({high} high severity)",
                timestamp=max(e.timestamp for e in capped),
                strike_count=len(capped),
                high_severity_strike_count=high,
            ))
        self._replace(SignalType.ACTIVE_STRIKE, signals)

    def ingest_theater_postures(self, postures: Iterable[Any]) -> None:
        """Backfill flight/vessel signals for targets of elevated theater postures."""
        records, _ = normalize_batch(postures, TheaterPosture)
        now = self._clock()
        for p in records:
            if not p.target_nation or p.posture_level == "normal":
                continue
            code = THEATER_TARGET_CODES.get(p.target_nation) or self.resolver.resolve(
                text=p.target_nation, rules=IDENTITY_RULES,
            )
            if not code:
                continue

            present = {s.type for s in self._signals if s.country == code}
            if SignalType.MILITARY_FLIGHT not in present and p.total_aircraft > 0:
                self._signals.append(GeoSignal(
                    type=SignalType.MILITARY_FLIGHT,
                    country=code,
                    country_name=self._name(code),
                    severity="high" if p.posture_level == "critical" else "medium",
                    title=f"{p.total_aircraft} military aircraft in {p.theater_name}",
                    timestamp=now,
                ))
            if SignalType.MILITARY_VESSEL not in present and p.total_vessels > 0:
                self._signals.append(GeoSignal(
                    type=SignalType.MILITARY_VESSEL,
                    country=code,
                    country_name=self._name(code),
                    severity="high" if p.total_vessels >= 5 else "medium",
                    title=f"{p.total_vessels} naval vessels in {p.theater_name}",
                    timestamp=now,
                ))

    # ── Clustering ──

    def get_country_clusters(self) -> list[CountrySignalCluster]:
        by_country: dict[str, list[GeoSignal]] = defaultdict(list)
        for s in self._signals:
            if s.country != UNKNOWN_COUNTRY:
                by_country[s.country].append(s)

        clusters = []
        for country, signals in by_country.items():
            types = {s.type for s in signals}
            high = sum(1 for s in signals if s.severity == "high")
            score = min(100, len(types) * 20 + min(30, len(signals) * 5) + high * 10)
            clusters.append(CountrySignalCluster(
                country=country,
                country_name=self._name(country),
                signals=signals,
                signal_types=types,
                total_count=len(signals),
                high_severity_count=high,
                convergence_score=score,
            ))
        clusters.sort(key=lambda c: c.convergence_score, reverse=True)
        return clusters

    def get_regional_convergence(self) -> list[RegionalConvergence]:
        clusters = self.get_country_clusters()
        convergences = []
        for region in REGION_DEFINITIONS.values():
            members = [c for c in clusters if c.country in region["countries"]]
            if len(members) < 2:
                continue

            types: list[SignalType] = []
            for cluster in members:
                types.extend(t for t in cluster.signal_types if t not in types)
            if len(types) < 2:
                continue

            labels = ", ".join(TYPE_LABELS[t] for t in types)
            names = ", ".join(c.country_name for c in members)
            convergences.append(RegionalConvergence(
                region=region["name"],
                countries=[c.country for c in members],
                signal_types=types,
                total_signals=sum(c.total_count for c in members),
                description=f"{region['name']}: {labels} detected across {names}",
            ))

        convergences.sort(key=lambda c: len(c.signal_types), reverse=True)
        return convergences

    def generate_context(self) -> str:
        """Plain-text digest of top regional convergences and country clusters."""
        clusters = self.get_country_clusters()[:5]
        convergences = self.get_regional_convergence()[:3]
        if not clusters and not convergences:
            return ""

        lines = ["[GEOGRAPHIC SIGNALS]"]
        if convergences:
            lines.append("Regional convergence detected:")
            lines.extend(f"- {c.description}" for c in convergences)
        if clusters:
            lines.append("Top countries by signal activity:")
            for c in clusters:
                types = ", ".join(sorted(t.value for t in c.signal_types))
                lines.append(f"- {c.country_name}: {c.total_count} signals ({types}), "
                             f"convergence score: {c.convergence_score}")
        return "\n".join(lines)

    def get_summary(self) -> SignalSummary:
        by_type = Counter(s.type for s in self._signals)
        return SignalSummary(
            timestamp=self._clock(),
            total_signals=len(self._signals),
            by_type={t: by_type.get(t, 0) for t in SignalType},
            convergence_zones=self.get_regional_convergence(),
            top_countries=self.get_country_clusters()[:10],
            ai_context=self.generate_context(),
        )

    def clear(self) -> None:
        self._signals = []
