"""Prahari — Record Schemas & Output Models.

Input records mirror the upstream feed shapes (camelCase aliases accepted);
output models are what the fusion engine hands to the UI/notification layer.
"""

from pydantic import (
    AfterValidator, AliasChoices, BaseModel, Field, computed_field, field_validator, model_validator,
)
from typing import Annotated, Optional, Any
from enum import Enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Upstream timestamps without an offset are taken as UTC
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class InstabilityLevel(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class AlertType(str, Enum):
    CONVERGENCE = "convergence"
    CII_SPIKE = "cii_spike"
    CASCADE = "cascade"
    COMPOSITE = "composite"


class AlertPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SignalType(str, Enum):
    """Geographic signal types tracked by the convergence aggregator."""
    INTERNET_OUTAGE = "internet_outage"
    MILITARY_FLIGHT = "military_flight"
    MILITARY_VESSEL = "military_vessel"
    PROTEST = "protest"
    AIS_DISRUPTION = "ais_disruption"
    SATELLITE_FIRE = "satellite_fire"
    TEMPORAL_ANOMALY = "temporal_anomaly"
    ACTIVE_STRIKE = "active_strike"


class _Record(BaseModel):
    """Base for upstream records: accepts field names or camelCase aliases."""
    model_config = {"populate_by_name": True, "extra": "ignore"}


# ─── Input records ─────────────────────────────────

class ProtestEvent(_Record):
    id: str = ""
    country: str
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    severity: str = "low"
    fatalities: int = Field(default=0, ge=0)
    title: str = ""


class ConflictEvent(_Record):
    id: str = ""
    country: str
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    event_type: str = Field(alias="eventType")
    fatalities: int = Field(default=0, ge=0)


class UcdpClassification(_Record):
    country: str
    intensity: str = Field(pattern="^(none|minor|war)$")
    year: Optional[int] = None
    side_a: Optional[str] = Field(default=None, alias="sideA")
    side_b: Optional[str] = Field(default=None, alias="sideB")


class HapiSummary(_Record):
    country_code: str = Field(alias="countryCode")
    events_political_violence: int = Field(default=0, alias="eventsPoliticalViolence")
    events_civilian_targeting: int = Field(default=0, alias="eventsCivilianTargeting")
    events_demonstrations: int = Field(default=0, alias="eventsDemonstrations")
    fatalities: int = 0


class DisplacementRecord(_Record):
    code: Optional[str] = None
    name: Optional[str] = None
    refugees: int = Field(default=0, ge=0)
    asylum_seekers: int = Field(default=0, ge=0, alias="asylumSeekers")

    @model_validator(mode="after")
    def _needs_identity(self):
        if not self.code and not self.name:
            raise ValueError("displacement record needs a code or a name")
        return self


class ClimateAnomaly(_Record):
    zone: str
    severity: str


class MilitaryFlight(_Record):
    id: str = ""
    operator_country: str = Field(default="", alias="operatorCountry")
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class MilitaryVessel(_Record):
    id: str = ""
    operator_country: str = Field(default="", alias="operatorCountry")
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class NewsThreat(_Record):
    level: str = "info"
    category: str = "general"


class NewsVelocity(_Record):
    sources_per_hour: float = Field(default=0.0, alias="sourcesPerHour")


class NewsCluster(_Record):
    id: str
    title: str = Field(validation_alias=AliasChoices("title", "primaryTitle"))
    threat: Optional[NewsThreat] = None
    velocity: Optional[NewsVelocity] = None
    is_alert: bool = Field(default=False, alias="isAlert")
    sources: list[str] = Field(default_factory=list)
    last_updated: UtcDatetime = Field(default_factory=utcnow, alias="lastUpdated")


class InternetOutage(_Record):
    id: str = ""
    country: str
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    severity: str = "partial"
    title: str = ""
    pub_date: UtcDatetime = Field(default_factory=utcnow, alias="pubDate")


class StrikeEvent(_Record):
    id: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    severity: str = "low"
    category: str = ""
    timestamp: UtcDatetime = Field(default_factory=utcnow)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _epoch_to_datetime(cls, v: Any) -> Any:
        # Upstream sends epoch seconds or epoch milliseconds
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            seconds = v / 1000 if v >= 1e12 else v
            try:
                return datetime.fromtimestamp(seconds, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                raise ValueError(f"epoch timestamp out of range: {v}") from e
        return v


class AviationDisruption(_Record):
    country: str
    airport: str = ""
    delay_type: str = Field(default="general", alias="delayType")
    severity: str = "minor"


class SecurityAdvisory(_Record):
    country: Optional[str] = None
    source_country: str = Field(alias="sourceCountry")
    level: str = "info"
    title: str = ""
    source: str = ""


class RegionAlertSnapshot(_Record):
    """Region-specific alert counters (e.g. missile sirens) for one country."""
    country: str
    active: int = Field(default=0, ge=0, alias="activeCount")
    history_24h: int = Field(default=0, ge=0, alias="historyCount24h")


class AisDisruption(_Record):
    name: str = ""
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    severity: str = "low"
    description: str = ""


class FireDetection(_Record):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    brightness: float
    frp: float = 0.0
    region: str = ""
    acq_date: UtcDatetime = Field(default_factory=utcnow, alias="acqDate")


class TemporalAnomaly(_Record):
    type: str
    region: str = ""
    current_count: float = Field(default=0, alias="currentCount")
    expected_count: float = Field(default=0, alias="expectedCount")
    z_score: float = Field(default=0, alias="zScore")
    message: str = ""
    severity: str = "medium"


class TheaterPosture(_Record):
    target_nation: Optional[str] = Field(default=None, alias="targetNation")
    total_aircraft: int = Field(default=0, alias="totalAircraft")
    total_vessels: int = Field(default=0, alias="totalVessels")
    posture_level: str = Field(default="normal", alias="postureLevel")
    theater_name: str = Field(default="", alias="theaterName")
    strike_capable: bool = Field(default=False, alias="strikeCapable")


class CascadeSource(_Record):
    id: str
    name: str
    type: str = ""
    coordinates: Optional[tuple[float, float]] = None  # (lon, lat)


class CascadeCountryImpact(_Record):
    country: str
    country_name: str = Field(default="", alias="countryName")
    impact_level: str = Field(default="low", alias="impactLevel")
    affected_capacity: float = Field(default=0.0, alias="affectedCapacity")


class CascadeResult(_Record):
    """Infrastructure-disruption result: a source asset and the countries it affects."""
    source: CascadeSource
    countries_affected: list[CascadeCountryImpact] = Field(
        default_factory=list, alias="countriesAffected",
    )


# ─── Scores ────────────────────────────────────────

class ComponentScores(BaseModel):
    unrest: int = Field(default=0, ge=0, le=100)
    conflict: int = Field(default=0, ge=0, le=100)
    security: int = Field(default=0, ge=0, le=100)
    information: int = Field(default=0, ge=0, le=100)


class CountryScore(BaseModel):
    code: str
    name: str
    score: int = Field(ge=0, le=100)
    level: InstabilityLevel
    trend: Trend
    change_24h: int = 0
    components: ComponentScores
    last_updated: datetime = Field(default_factory=utcnow)


class IngestStats(BaseModel):
    processed: int = 0
    unmapped: int = 0
    malformed: int = 0

    @computed_field
    @property
    def rate(self) -> float:
        """Share of processed records that could not be attributed to a country."""
        if self.processed == 0:
            return 0.0
        return round(self.unmapped / self.processed, 4)


# ─── Alerts ────────────────────────────────────────

class GeoConvergenceAlert(BaseModel):
    cell_id: str
    lat: float
    lon: float
    types: list[str]
    total_events: int
    score: int
    timestamp: datetime = Field(default_factory=utcnow)


class CIIChange(BaseModel):
    country: str
    country_name: str
    previous_score: int
    current_score: int
    change: int
    level: InstabilityLevel
    driver: str


class CascadeAlert(BaseModel):
    source_id: str
    source_name: str
    source_type: str
    countries_affected: int
    highest_impact: str


class AlertComponents(BaseModel):
    convergence: Optional[GeoConvergenceAlert] = None
    cii_change: Optional[CIIChange] = None
    cascade: Optional[CascadeAlert] = None


class AlertLocation(BaseModel):
    lat: float
    lon: float


class UnifiedAlert(BaseModel):
    id: str
    type: AlertType
    priority: AlertPriority
    title: str
    summary: str
    components: AlertComponents = Field(default_factory=AlertComponents)
    location: Optional[AlertLocation] = None
    countries: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


# ─── Geographic signals ────────────────────────────

class GeoSignal(BaseModel):
    type: SignalType
    country: str
    country_name: str
    lat: float = 0.0
    lon: float = 0.0
    severity: str = Field(default="low", pattern="^(low|medium|high)$")
    title: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    strike_count: Optional[int] = None
    high_severity_strike_count: Optional[int] = None
    # Upstream anomaly kind for temporal anomalies; used for per-source replacement
    source_type: Optional[str] = None


class CountrySignalCluster(BaseModel):
    country: str
    country_name: str
    signals: list[GeoSignal]
    signal_types: set[SignalType]
    total_count: int
    high_severity_count: int
    convergence_score: int


class RegionalConvergence(BaseModel):
    region: str
    countries: list[str]
    signal_types: list[SignalType]
    total_signals: int
    description: str


class SignalSummary(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    total_signals: int
    by_type: dict[SignalType, int]
    convergence_zones: list[RegionalConvergence]
    top_countries: list[CountrySignalCluster]
    ai_context: str


class ConvergenceZone(BaseModel):
    cell_id: str
    lat: float
    lon: float
    score: int


class StrategicRiskOverview(BaseModel):
    """Global composite risk assessment."""
    convergence_alerts: int
    top_cii_score: int
    infrastructure_incidents: int
    composite_score: int = Field(ge=0, le=100)
    trend: str
    top_risks: list[str] = Field(default_factory=list)
    top_convergence_zones: list[ConvergenceZone] = Field(default_factory=list)
    unstable_countries: list[CountryScore] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
