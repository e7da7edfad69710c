"""Prahari — Strategic Risk Overview Calculator."""

from typing import Callable, Iterable, Optional

from backend.models import (
    ConvergenceZone, CountryScore, GeoConvergenceAlert, InstabilityLevel,
    StrategicRiskOverview, TheaterPosture, UnifiedAlert, utcnow,
)

# Composite weights
CONVERGENCE_WEIGHT = 0.3
CII_WEIGHT = 0.5
INFRA_WEIGHT = 0.2

# Top-5 country weighting for the CII risk term
TOP_COUNTRY_WEIGHTS = [0.4, 0.25, 0.2, 0.1, 0.05]

ELEVATED_SCORE = 50
TREND_THRESHOLD = 3

MAX_THEATER_BOOST = 25
MAX_BREAKING_BOOST = 15


def cii_risk_score(scores: list[CountryScore]) -> float:
    """Weighted top-5 country scores plus a bonus per elevated country."""
    if not scores:
        return 0.0
    top = sorted(scores, key=lambda s: s.score, reverse=True)[:len(TOP_COUNTRY_WEIGHTS)]
    weighted = sum(s.score * w for s, w in zip(top, TOP_COUNTRY_WEIGHTS))
    elevated = sum(1 for s in scores if s.score >= ELEVATED_SCORE)
    return min(100.0, weighted + min(20, elevated * 5))


def theater_boost(postures: Iterable[TheaterPosture], stale_factor: float = 1.0) -> int:
    boost = 0
    for p in postures:
        assets = p.total_aircraft + p.total_vessels
        if assets == 0:
            continue
        asset_score = min(10, assets // 5)
        boost += asset_score + 5 if p.strike_capable else asset_score
    return round(min(MAX_THEATER_BOOST, boost) * stale_factor)


def risk_trend(current: int, previous: Optional[int]) -> str:
    if previous is None:
        return "stable"
    diff = current - previous
    if diff >= TREND_THRESHOLD:
        return "escalating"
    if diff <= -TREND_THRESHOLD:
        return "de-escalating"
    return "stable"


def _format_coords(lat: float, lon: float) -> str:
    return f"{lat:.1f}°, {lon:.1f}°"


def calculate_strategic_risk(
    scores: list[CountryScore],
    convergence_alerts: list[GeoConvergenceAlert],
    alerts: list[UnifiedAlert],
    theater_postures: Optional[Iterable[TheaterPosture]] = None,
    breaking_alert_score: float = 0,
    theater_stale_factor: float = 1.0,
    previous_composite: Optional[int] = None,
    location_name: Callable[[float, float], str] = _format_coords,
) -> StrategicRiskOverview:
    """Composite 0-100 global risk from convergence, CII and infrastructure alerts.

    Theater postures add up to 25 points, breaking news up to 15. The trend
    compares against `previous_composite`, which the caller owns.
    """
    infra_incidents = sum(1 for a in alerts if a.components.cascade)

    convergence_score = min(100, len(convergence_alerts) * 25)
    infra_score = min(100, infra_incidents * 25)

    composite = min(100, round(
        convergence_score * CONVERGENCE_WEIGHT
        + cii_risk_score(scores) * CII_WEIGHT
        + infra_score * INFRA_WEIGHT
        + theater_boost(theater_postures or [], theater_stale_factor)
        + min(MAX_BREAKING_BOOST, breaking_alert_score)
    ))

    ranked = sorted(scores, key=lambda s: s.score, reverse=True)

    top_risks = []
    if convergence_alerts:
        top = convergence_alerts[0]
        top_risks.append(f"Convergence: {location_name(top.lat, top.lon)} (score: {top.score})")
    severe = [s for s in ranked if s.level in (InstabilityLevel.CRITICAL, InstabilityLevel.HIGH)]
    for s in severe[:2]:
        top_risks.append(f"{s.name} instability: {s.score} ({s.level.value})")

    return StrategicRiskOverview(
        convergence_alerts=len(convergence_alerts),
        top_cii_score=ranked[0].score if ranked else 0,
        infrastructure_incidents=infra_incidents,
        composite_score=composite,
        trend=risk_trend(composite, previous_composite),
        top_risks=top_risks[:3],
        top_convergence_zones=[
            ConvergenceZone(cell_id=a.cell_id, lat=a.lat, lon=a.lon, score=a.score)
            for a in convergence_alerts[:3]
        ],
        unstable_countries=[s for s in ranked if s.score >= ELEVATED_SCORE][:5],
        timestamp=utcnow(),
    )
