"""Prahari — Alert Correlation Engine.

Turns convergence detections, CII score swings and infrastructure cascades
into one deduplicated feed of UnifiedAlerts.

Merge rules:
  - stable id (cii-<code>, conv-<cell>): update in place, keep the higher
    priority and the later timestamp; two CII swings for one country inside
    the merge window collapse into a composite spanning both
  - otherwise: merge into the first alert sharing a country OR lying within
    200 km, when both fall inside a 2 h window

Store: newest first, capped, pruned by age before every cycle.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from backend.models import (
    AlertComponents, AlertLocation, AlertPriority, AlertType, CascadeAlert,
    CascadeResult, CIIChange, CountryScore, GeoConvergenceAlert,
    InstabilityLevel, UnifiedAlert, utcnow,
)
from fusion_engine.country_geometry import haversine_km
from fusion_engine.country_instability import LearningMode
from fusion_engine.country_resolution import CountryResolver

logger = logging.getLogger("prahari.alerts")

AlertListener = Callable[[UnifiedAlert], None]

PRIORITY_ORDER = [AlertPriority.CRITICAL, AlertPriority.HIGH, AlertPriority.MEDIUM, AlertPriority.LOW]
IMPACT_ORDER = ["critical", "high", "medium", "low"]

CII_ALERT_THRESHOLD = 10
MAX_SUMMARY_FRAGMENTS = 3
SUMMARY_SEPARATOR = " • "

COMPONENT_DRIVERS = {
    "unrest": "Civil Unrest",
    "conflict": "Armed Conflict",
    "security": "Security Activity",
    "information": "Information Velocity",
}

# Fallback region → countries attribution when no polygon claims the point
# (south, north, west, east)
REGION_BOXES: list[tuple[tuple[float, float, float, float], list[str]]] = [
    ((35, 70, -10, 40),   ["DE", "FR", "GB", "PL", "UA"]),
    ((15, 45, 25, 65),    ["IR", "IL", "SA", "TR", "SY", "YE"]),
    ((15, 55, 100, 145),  ["CN", "TW", "KP"]),
    ((5, 40, 65, 100),    ["IN", "PK", "MM"]),
    ((-60, 70, -130, -30), ["US", "VE"]),
]


def higher_priority(a: AlertPriority, b: AlertPriority) -> AlertPriority:
    return a if PRIORITY_ORDER.index(a) <= PRIORITY_ORDER.index(b) else b


def priority_from_convergence(score: float, type_count: int) -> AlertPriority:
    if type_count >= 4 or score >= 90:
        return AlertPriority.CRITICAL
    if type_count >= 3 or score >= 70:
        return AlertPriority.HIGH
    if score >= 50:
        return AlertPriority.MEDIUM
    return AlertPriority.LOW


def priority_from_cii_change(change: int, level: InstabilityLevel) -> AlertPriority:
    abs_change = abs(change)
    if level == InstabilityLevel.CRITICAL:
        return AlertPriority.CRITICAL
    if level == InstabilityLevel.HIGH or abs_change >= 30:
        return AlertPriority.HIGH
    if level == InstabilityLevel.ELEVATED or abs_change >= 15:
        return AlertPriority.MEDIUM
    return AlertPriority.LOW


def priority_from_cascade(impact: str, count: int) -> AlertPriority:
    if impact == "critical" or (impact == "high" and count >= 3):
        return AlertPriority.CRITICAL
    if impact == "high" or count >= 5:
        return AlertPriority.HIGH
    if impact == "medium" or count >= 3:
        return AlertPriority.MEDIUM
    return AlertPriority.LOW


def highest_component(score: CountryScore) -> str:
    """Display name of the component contributing most to a score."""
    components = score.components.model_dump()
    best = max(COMPONENT_DRIVERS, key=lambda name: components[name])
    return COMPONENT_DRIVERS[best]


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def _cii_title(country_name: str, change: int) -> str:
    direction = "Rising" if change > 0 else "Falling"
    return f"{country_name} Instability {direction}"


def _cii_summary(previous: int, current: int, change: int, driver: str) -> str:
    verb = "rose" if change > 0 else "fell"
    return f"Instability index {verb} from {previous} to {current} ({_signed(change)}). Primary driver: {driver}"


class AlertCorrelator:
    """Owns the unified alert store and the previous-score map used for CII deltas."""

    def __init__(
        self,
        resolver: CountryResolver,
        learning: LearningMode,
        clock: Callable[[], datetime] = utcnow,
        max_alerts: int = 50,
        retention_hours: float = 24,
        merge_window_minutes: float = 120,
        merge_distance_km: float = 200.0,
    ):
        self.resolver = resolver
        self.learning = learning
        self._clock = clock
        self.max_alerts = max_alerts
        self.retention = timedelta(hours=retention_hours)
        self.merge_window = timedelta(minutes=merge_window_minutes)
        self.merge_distance_km = merge_distance_km

        self._alerts: list[UnifiedAlert] = []
        self._previous_cii: dict[str, int] = {}
        self._listeners: list[AlertListener] = []
        self._id_counter = 0

    # ─── Listeners ───────────────────────────────────

    def add_listener(self, callback: AlertListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: AlertListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, alert: UnifiedAlert) -> None:
        for callback in list(self._listeners):
            try:
                callback(alert)
            except Exception:
                logger.exception("[alerts] Listener failed for %s", alert.id)

    # ─── Helpers ─────────────────────────────────────

    def _next_id(self) -> str:
        self._id_counter += 1
        return f"alert-{int(self._clock().timestamp() * 1000)}-{self._id_counter}"

    def countries_near(self, lat: float, lon: float) -> list[str]:
        hit = self.resolver.geometry.resolve_country_at(lat, lon)
        if hit:
            return [hit.code]
        for (south, north, west, east), codes in REGION_BOXES:
            if south < lat < north and west < lon < east:
                return list(codes)
        return []

    def _location_label(self, countries: list[str]) -> str:
        if not countries:
            return "Unknown"
        return ", ".join(self.resolver.display_name(c) for c in countries)

    # ─── Creation paths ──────────────────────────────

    def create_convergence_alert(self, convergence: GeoConvergenceAlert) -> UnifiedAlert:
        countries = self.countries_near(convergence.lat, convergence.lon)
        alert = UnifiedAlert(
            id=f"conv-{convergence.cell_id}",
            type=AlertType.CONVERGENCE,
            priority=priority_from_convergence(convergence.score, len(convergence.types)),
            title=f"Geographic Convergence: {self._location_label(countries)}",
            summary=(f"{convergence.total_events} events detected near "
                     f"{convergence.lat:.1f}°, {convergence.lon:.1f}°"),
            components=AlertComponents(convergence=convergence),
            location=AlertLocation(lat=convergence.lat, lon=convergence.lon),
            countries=countries,
            timestamp=self._clock(),
        )
        return self._add_and_merge(alert)

    def create_cii_alert(
        self,
        country: str,
        country_name: str,
        previous_score: int,
        current_score: int,
        level: InstabilityLevel,
        driver: str,
    ) -> Optional[UnifiedAlert]:
        change = current_score - previous_score
        if abs(change) < CII_ALERT_THRESHOLD:
            return None

        cii_change = CIIChange(
            country=country,
            country_name=country_name,
            previous_score=previous_score,
            current_score=current_score,
            change=change,
            level=level,
            driver=driver,
        )
        alert = UnifiedAlert(
            id=f"cii-{country}",
            type=AlertType.CII_SPIKE,
            priority=priority_from_cii_change(change, level),
            title=_cii_title(country_name, change),
            summary=_cii_summary(previous_score, current_score, change, driver),
            components=AlertComponents(cii_change=cii_change),
            countries=[country],
            timestamp=self._clock(),
        )
        return self._add_and_merge(alert)

    def create_cascade_alert(self, cascade: CascadeResult) -> Optional[UnifiedAlert]:
        affected = cascade.countries_affected
        if not affected:
            return None

        highest = min(
            (c.impact_level for c in affected),
            key=lambda lvl: IMPACT_ORDER.index(lvl) if lvl in IMPACT_ORDER else len(IMPACT_ORDER),
        )
        location = None
        if cascade.source.coordinates:
            lon, lat = cascade.source.coordinates
            location = AlertLocation(lat=lat, lon=lon)

        alert = UnifiedAlert(
            id=self._next_id(),
            type=AlertType.CASCADE,
            priority=priority_from_cascade(highest, len(affected)),
            title=f"Infrastructure Alert: {cascade.source.name}",
            summary=f"{len(affected)} countries affected, highest impact: {highest}",
            components=AlertComponents(cascade=CascadeAlert(
                source_id=cascade.source.id,
                source_name=cascade.source.name,
                source_type=cascade.source.type,
                countries_affected=len(affected),
                highest_impact=highest,
            )),
            location=location,
            countries=[c.country for c in affected],
            timestamp=self._clock(),
        )
        return self._add_and_merge(alert)

    # ─── Merge ───────────────────────────────────────

    def _within_window(self, a: UnifiedAlert, b: UnifiedAlert) -> bool:
        return abs(a.timestamp - b.timestamp) < self.merge_window

    def _should_merge(self, a: UnifiedAlert, b: UnifiedAlert) -> bool:
        same_country = any(c in b.countries for c in a.countries)
        same_location = bool(
            a.location and b.location
            and haversine_km(a.location.lat, a.location.lon, b.location.lat, b.location.lon) < self.merge_distance_km
        )
        return (same_country or same_location) and self._within_window(a, b)

    def _composite_title(self, a: UnifiedAlert, b: UnifiedAlert,
                         cii_change: Optional[CIIChange]) -> str:
        if cii_change:
            return _cii_title(cii_change.country_name, cii_change.change)
        code = (a.countries or b.countries or [None])[0]
        location = self.resolver.display_name(code) if code else "Multiple Regions"
        if a.components.convergence or b.components.convergence:
            return f"Geographic Convergence: {location}"
        if a.components.cascade or b.components.cascade:
            return "Infrastructure Cascade Alert"
        return f"Alert: {location}"

    @staticmethod
    def _composite_summary(a: UnifiedAlert, b: UnifiedAlert) -> str:
        seen: set[str] = set()
        parts: list[str] = []
        for summary in (a.summary, b.summary):
            for segment in summary.split(SUMMARY_SEPARATOR):
                segment = segment.strip()
                if segment and segment not in seen:
                    seen.add(segment)
                    parts.append(segment)
        if len(parts) > MAX_SUMMARY_FRAGMENTS:
            extra = len(parts) - MAX_SUMMARY_FRAGMENTS
            return SUMMARY_SEPARATOR.join(parts[:MAX_SUMMARY_FRAGMENTS]) + f" (+{extra} more)"
        return SUMMARY_SEPARATOR.join(parts)

    @staticmethod
    def _span_cii(earlier: CIIChange, later: CIIChange) -> CIIChange:
        change = later.current_score - earlier.previous_score
        return later.model_copy(update={"previous_score": earlier.previous_score, "change": change})

    def _merge(self, existing: UnifiedAlert, incoming: UnifiedAlert) -> UnifiedAlert:
        earlier, later = sorted((existing, incoming), key=lambda a: a.timestamp)
        cii_a = earlier.components.cii_change
        cii_b = later.components.cii_change

        components = AlertComponents(
            convergence=incoming.components.convergence or existing.components.convergence,
            cii_change=incoming.components.cii_change or existing.components.cii_change,
            cascade=incoming.components.cascade or existing.components.cascade,
        )
        if cii_a and cii_b and cii_a.country == cii_b.country:
            spanned = self._span_cii(cii_a, cii_b)
            components.cii_change = spanned
            summary = _cii_summary(spanned.previous_score, spanned.current_score, spanned.change, spanned.driver)
        else:
            summary = self._composite_summary(existing, incoming)

        return UnifiedAlert(
            id=existing.id,
            type=AlertType.COMPOSITE,
            priority=higher_priority(existing.priority, incoming.priority),
            title=self._composite_title(existing, incoming, components.cii_change),
            summary=summary,
            components=components,
            location=existing.location or incoming.location,
            countries=list(dict.fromkeys(existing.countries + incoming.countries)),
            timestamp=max(existing.timestamp, incoming.timestamp),
        )

    def _add_and_merge(self, alert: UnifiedAlert) -> UnifiedAlert:
        for i, existing in enumerate(self._alerts):
            if existing.id != alert.id:
                continue
            if (existing.components.cii_change and alert.components.cii_change
                    and self._within_window(existing, alert)):
                updated = self._merge(existing, alert)
            else:
                updated = alert.model_copy(update={
                    "priority": higher_priority(existing.priority, alert.priority),
                    "timestamp": max(existing.timestamp, alert.timestamp),
                })
            self._alerts[i] = updated
            logger.debug("[alerts] Updated %s (%s)", updated.id, updated.priority.value)
            self._notify(updated)
            return updated

        for i, existing in enumerate(self._alerts):
            if self._should_merge(existing, alert):
                merged = self._merge(existing, alert)
                self._alerts[i] = merged
                logger.info("[alerts] Merged %s into %s", alert.id, merged.id)
                self._notify(merged)
                return merged

        self._alerts.insert(0, alert)
        if len(self._alerts) > self.max_alerts:
            self._alerts.pop()
        logger.info("[alerts] New %s alert %s: %s", alert.priority.value, alert.id, alert.title)
        self._notify(alert)
        return alert

    # ─── Cycle ───────────────────────────────────────

    def prune(self) -> int:
        cutoff = self._clock() - self.retention
        before = len(self._alerts)
        self._alerts = [a for a in self._alerts if a.timestamp >= cutoff]
        removed = before - len(self._alerts)
        if removed:
            logger.info("[alerts] Pruned %d alerts older than %s", removed, self.retention)
        return removed

    def check_cii_changes(self, scores: Iterable[CountryScore]) -> list[UnifiedAlert]:
        """Raise alerts for swings of 10+ since the last check; silent while learning.

        The comparison baseline advances on every call, learning or not.
        """
        in_learning = self.learning.in_learning()
        new_alerts = []
        for score in scores:
            previous = self._previous_cii.get(score.code, score.score)
            change = score.score - previous
            if not in_learning and abs(change) >= CII_ALERT_THRESHOLD:
                alert = self.create_cii_alert(
                    score.code, score.name, previous, score.score, score.level, highest_component(score),
                )
                if alert:
                    new_alerts.append(alert)
            self._previous_cii[score.code] = score.score
        return new_alerts

    def update_alerts(self, convergence_alerts: Iterable[GeoConvergenceAlert],
                      scores: Iterable[CountryScore]) -> list[UnifiedAlert]:
        """One correlation cycle: prune, CII deltas, then convergence alerts."""
        self.prune()
        touched = self.check_cii_changes(scores)
        for conv in convergence_alerts:
            touched.append(self.create_convergence_alert(conv))
        self._alerts.sort(key=lambda a: a.timestamp, reverse=True)
        del self._alerts[self.max_alerts:]
        return touched

    # ─── Accessors ───────────────────────────────────

    def get_alerts(self) -> list[UnifiedAlert]:
        return list(self._alerts)

    def get_recent_alerts(self, hours: float = 24) -> list[UnifiedAlert]:
        cutoff = self._clock() - timedelta(hours=hours)
        return [a for a in self._alerts if a.timestamp > cutoff]

    def alert_counts(self) -> dict[str, int]:
        counts = {p.value: 0 for p in PRIORITY_ORDER}
        for alert in self._alerts:
            counts[alert.priority.value] += 1
        return counts

    def infrastructure_incidents(self) -> int:
        return sum(1 for a in self._alerts if a.components.cascade)

    def clear(self) -> None:
        self._alerts.clear()
