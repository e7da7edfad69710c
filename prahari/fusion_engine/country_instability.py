"""Prahari — Country Instability Index (CII).

Computes a 0-100 instability score for every monitored country and every
country holding stored signals.

Component weights (event score):
  - Civil unrest (protests, outages):                      25%
  - Armed conflict (events, HAPI, news floor, strikes):    30%
  - Security (foreign military presence, aviation):        20%
  - Information (news volume, velocity, breaking alerts):  25%

Published score = 40% static baseline + 60% event score, plus bounded boost
terms (hotspot proximity, news urgency, focal urgency, displacement, climate,
region alerts, travel advisories). Floors then pin the result from below:
  UCDP war >= 70, minor >= 50; advisory do-not-travel >= 60, reconsider >= 50

Endpoint: GET /api/cii
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from backend.models import (
    ComponentScores, CountryScore, InstabilityLevel, Trend, utcnow,
)
from fusion_engine.country_config import (
    MONITORED_COUNTRIES, TRUSTED_SOURCE_TIER, baseline_risk, event_multiplier,
    is_high_volume, source_tier,
)
from fusion_engine.country_resolution import CountryResolver
from fusion_engine.signal_store import CountrySignals, SignalStore

logger = logging.getLogger("prahari.fusion")

# Blend of the four components into the event score
WEIGHTS = {
    "unrest":      0.25,
    "conflict":    0.30,
    "security":    0.20,
    "information": 0.25,
}
BASELINE_WEIGHT = 0.4
EVENT_WEIGHT = 0.6

UCDP_FLOORS = {"war": 70, "minor": 50, "none": 0}
ADVISORY_FLOORS = {"do-not-travel": 60, "reconsider": 50}
ADVISORY_BOOSTS = {"do-not-travel": 10, "reconsider": 5, "caution": 2}
FOCAL_BOOSTS = {"critical": 8, "elevated": 4}

OUTAGE_WEIGHTS = {"total": 30, "major": 15, "partial": 5}
AVIATION_SEVERITY_WEIGHTS = {"severe": 10, "major": 6, "moderate": 3}
AVIATION_CLOSURE_WEIGHT = 20

CONFLICT_NEWS_CATEGORIES = {"conflict", "military", "terrorism"}
HIGH_SEVERITY_STRIKES = {"high", "critical"}

TREND_THRESHOLD = 5


def level_for_score(score: float) -> InstabilityLevel:
    if score >= 81:
        return InstabilityLevel.CRITICAL
    if score >= 66:
        return InstabilityLevel.HIGH
    if score >= 51:
        return InstabilityLevel.ELEVATED
    if score >= 31:
        return InstabilityLevel.NORMAL
    return InstabilityLevel.LOW


def _round(value: float) -> int:
    # Half-up rounding so x.5 scores never round toward the lower level
    return int(math.floor(value + 0.5))


class LearningMode:
    """Cold-start warmup window during which CII-delta alerts are suppressed."""

    def __init__(self, duration_minutes: float = 15,
                 clock: Callable[[], datetime] = utcnow):
        self.duration = timedelta(minutes=duration_minutes)
        self._clock = clock
        self._started_at: Optional[datetime] = None
        self._complete = False
        self._has_cached_scores = False

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()
            logger.info("[cii] Learning mode started (%d min)", self.duration.total_seconds() // 60)

    def set_has_cached_scores(self, has_scores: bool) -> None:
        self._has_cached_scores = has_scores
        if has_scores:
            self._complete = True
            logger.info("[cii] Cached scores available, skipping learning mode")

    def in_learning(self) -> bool:
        if self._has_cached_scores or self._complete:
            return False
        if self._started_at is None:
            return True
        if self._clock() - self._started_at >= self.duration:
            self._complete = True
            logger.info("[cii] Learning mode complete")
            return False
        return True

    def progress(self) -> dict:
        if self._has_cached_scores or self._complete:
            return {"in_learning": False, "remaining_minutes": 0, "progress": 100}
        if self._started_at is None:
            return {
                "in_learning": True,
                "remaining_minutes": math.ceil(self.duration.total_seconds() / 60),
                "progress": 0,
            }
        elapsed = self._clock() - self._started_at
        remaining = max(timedelta(0), self.duration - elapsed)
        return {
            "in_learning": remaining > timedelta(0),
            "remaining_minutes": math.ceil(remaining.total_seconds() / 60),
            "progress": round(min(100.0, elapsed / self.duration * 100)),
        }


class InstabilityScorer:
    """Scores countries from a SignalStore; keeps single-step score memory for trends."""

    def __init__(
        self,
        store: SignalStore,
        resolver: CountryResolver,
        clock: Callable[[], datetime] = utcnow,
        news_recency_hours: float = 24,
        strike_recency_hours: float = 24,
    ):
        self.store = store
        self.resolver = resolver
        self._clock = clock
        self.news_recency = timedelta(hours=news_recency_hours)
        self.strike_recency = timedelta(hours=strike_recency_hours)
        self._previous: dict[str, int] = {}
        self._focal_urgencies: dict[str, str] = {}

    @property
    def previous_scores(self) -> dict[str, int]:
        return dict(self._previous)

    def set_focal_urgencies(self, urgencies: dict[str, str]) -> None:
        """Replace the per-country focal-point urgency map (critical | elevated)."""
        self._focal_urgencies = dict(urgencies)

    # ─── Components ──────────────────────────────────

    def _unrest(self, data: CountrySignals, code: str) -> float:
        multiplier = event_multiplier(code)
        base = fatality_boost = severity_boost = 0.0

        count = len(data.protests)
        if count > 0:
            fatalities = sum(p.fatalities for p in data.protests)
            high = sum(1 for p in data.protests if p.severity == "high")
            if is_high_volume(code):
                adjusted = math.log2(count + 1) * multiplier * 5
            else:
                adjusted = count * multiplier
            base = min(50, adjusted * 8)
            fatality_boost = min(30, fatalities * 5 * multiplier)
            severity_boost = min(20, high * 10 * multiplier)

        outage_boost = min(50, sum(OUTAGE_WEIGHTS.get(o.severity, 0) for o in data.outages.values()))
        return min(100, base + fatality_boost + severity_boost + outage_boost)

    def _news_floor(self, data: CountrySignals) -> float:
        """Conflict floor from corroborated recent news, when no harder data exists."""
        cutoff = self._clock() - self.news_recency
        items = [
            c for c in data.news_events.values()
            if c.threat and c.threat.category in CONFLICT_NEWS_CATEGORIES and c.last_updated >= cutoff
        ]
        if len(items) < 2:
            return 0
        sources = {s for c in items for s in c.sources}
        if len(sources) < 2:
            return 0
        if not any(source_tier(s) <= TRUSTED_SOURCE_TIER for s in sources):
            return 0
        return min(35, 15 + 5 * len(items))

    def _strike_term(self, data: CountrySignals) -> float:
        cutoff = self._clock() - self.strike_recency
        recent = [s for s in data.strikes.values() if s.timestamp >= cutoff]
        high = sum(1 for s in recent if s.severity in HIGH_SEVERITY_STRIKES)
        return min(30, len(recent) * 3 + high * 5)

    def _conflict(self, data: CountrySignals, code: str) -> float:
        multiplier = event_multiplier(code)
        events = data.conflicts

        primary = hapi_fallback = news_floor = 0.0
        if events:
            battles = sum(1 for e in events if e.event_type == "battle")
            explosions = sum(1 for e in events if e.event_type in ("explosion", "remote_violence"))
            civilian = sum(1 for e in events if e.event_type == "violence_against_civilians")
            fatalities = sum(e.fatalities for e in events)
            event_score = min(50, (battles * 3 + explosions * 4 + civilian * 5) * multiplier)
            fatality_score = min(40, math.sqrt(fatalities) * 5 * multiplier)
            civilian_boost = min(10, civilian * 3) if civilian else 0
            primary = event_score + fatality_score + civilian_boost
        elif data.hapi_summary:
            h = data.hapi_summary
            hapi_fallback = min(60, (h.events_political_violence * 2 + h.events_civilian_targeting * 3) * multiplier)
        else:
            news_floor = self._news_floor(data)

        region_term = min(15, math.sqrt(data.region_alerts_24h) * 3)
        return min(100, max(primary, hapi_fallback, news_floor) + self._strike_term(data) + region_term)

    def _security(self, data: CountrySignals) -> float:
        # Foreign assets over a country weigh double its own
        flights = data.own_flights + 2 * data.foreign_flights
        vessels = data.own_vessels + 2 * data.foreign_vessels
        military = min(50, flights * 3) + min(30, vessels * 5)

        closures = sum(1 for d in data.aviation if d.delay_type == "closure")
        delays = sum(
            AVIATION_SEVERITY_WEIGHTS.get(d.severity, 0)
            for d in data.aviation if d.delay_type != "closure"
        )
        aviation = min(40, closures * AVIATION_CLOSURE_WEIGHT + delays)
        return min(100, military + aviation)

    def _information(self, data: CountrySignals, code: str) -> float:
        count = len(data.news_events)
        if count == 0:
            return 0
        multiplier = event_multiplier(code)
        high_volume = is_high_volume(code)
        clusters = data.news_events.values()

        avg_velocity = sum(c.velocity.sources_per_hour if c.velocity else 0 for c in clusters) / count
        if high_volume:
            adjusted = math.log2(count + 1) * multiplier * 3
        else:
            adjusted = count * multiplier
        base = min(40, adjusted * 5)

        threshold = 5 if high_volume else 2
        velocity_boost = min(40, (avg_velocity - threshold) * 10 * multiplier) if avg_velocity > threshold else 0
        alert_boost = 20 * multiplier if any(c.is_alert for c in clusters) else 0
        return min(100, base + velocity_boost + alert_boost)

    def _components(self, data: CountrySignals, code: str) -> dict[str, float]:
        return {
            "unrest": self._unrest(data, code),
            "conflict": self._conflict(data, code),
            "security": self._security(data),
            "information": self._information(data, code),
        }

    # ─── Blend ───────────────────────────────────────

    def _rounded_components(self, data: CountrySignals, code: str) -> ComponentScores:
        # Published components are what the blend sees
        return ComponentScores(**{k: _round(v) for k, v in self._components(data, code).items()})

    def _blend(self, data: CountrySignals, code: str, components: dict[str, float]) -> int:
        event_score = sum(components[name] * weight for name, weight in WEIGHTS.items())

        info = components["information"]
        boosts = [
            min(10, data.hotspot_activity * 1.5),
            5 if info >= 70 else 3 if info >= 50 else 0,
            FOCAL_BOOSTS.get(self._focal_urgencies.get(code, ""), 0),
            8 if data.displacement_outflow >= 1_000_000 else 4 if data.displacement_outflow >= 100_000 else 0,
            data.climate_stress,
            min(10, data.region_alerts_active * 3),
            self._advisory_boost(data),
        ]
        blended = baseline_risk(code) * BASELINE_WEIGHT + event_score * EVENT_WEIGHT + sum(boosts)

        floor = max(
            UCDP_FLOORS.get(data.ucdp_status.intensity, 0) if data.ucdp_status else 0,
            ADVISORY_FLOORS.get(data.advisory_level or "", 0),
        )
        return _round(min(100, max(floor, blended)))

    @staticmethod
    def _advisory_boost(data: CountrySignals) -> float:
        boost = ADVISORY_BOOSTS.get(data.advisory_level or "", 0)
        if not boost:
            return 0
        if data.advisory_sources >= 3:
            boost += 5
        elif data.advisory_sources >= 2:
            boost += 3
        return boost

    def _trend(self, code: str, score: int) -> Trend:
        prev = self._previous.get(code)
        if prev is None:
            return Trend.STABLE
        diff = score - prev
        if diff >= TREND_THRESHOLD:
            return Trend.RISING
        if diff <= -TREND_THRESHOLD:
            return Trend.FALLING
        return Trend.STABLE

    # ─── Public API ──────────────────────────────────

    def calculate_all(self) -> list[CountryScore]:
        """Score every monitored country and every country with stored signals.

        Overwrites the previous-score memory, so each call advances the trend
        baseline by one step.
        """
        now = self._clock()
        codes = list(MONITORED_COUNTRIES)
        codes.extend(c for c in self.store.codes() if c not in MONITORED_COUNTRIES)

        results = []
        for code in codes:
            data = self.store.get(code) or CountrySignals()
            components = self._rounded_components(data, code)
            score = self._blend(data, code, components.model_dump())
            prev = self._previous.get(code, score)

            results.append(CountryScore(
                code=code,
                name=self.resolver.display_name(code),
                score=score,
                level=level_for_score(score),
                trend=self._trend(code, score),
                change_24h=score - prev,
                components=components,
                last_updated=now,
            ))
            self._previous[code] = score

        results.sort(key=lambda r: r.score, reverse=True)
        logger.info("[cii] Computed instability index for %d countries (top: %s = %d)",
                    len(results), results[0].code if results else "?",
                    results[0].score if results else 0)
        return results

    def top_unstable(self, limit: int = 10) -> list[CountryScore]:
        return self.calculate_all()[:limit]

    def score_one(self, code: str) -> Optional[int]:
        """Current score for one country with stored signals; None if it has none.

        Does not touch the previous-score memory.
        """
        data = self.store.get(code)
        if data is None:
            return None
        return self._blend(data, code, self._rounded_components(data, code).model_dump())
