"""Prahari — Geographic Convergence Detector.

Spatial clustering of geolocated events from multiple layers to identify
cells where distinct activity types converge.

Convergence alerts:
  - Divides the globe into 1° × 1° grid cells
  - When 3+ distinct event types converge in a cell within the rolling window
  - Score = n_types × 25 + min(n_events × 2, 50)  (max 100)
  - Cell id "<grid_lat>:<grid_lon>" is stable across cycles
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Iterable

from backend.models import GeoConvergenceAlert, utcnow

logger = logging.getLogger("prahari.fusion")

# Grid resolution in degrees (1° ≈ 111 km at equator)
GRID_RESOLUTION = 1.0

# Minimum distinct event types to emit a convergence alert
MIN_CONVERGENCE_TYPES = 3

# Event types the context feeds in
CONVERGENCE_EVENT_TYPES = {
    "protest", "conflict", "military", "military_marine", "outage",
    "strike", "fire", "ais",
}


def cell_for(lat: float, lon: float) -> tuple[int, int]:
    return int(lat // GRID_RESOLUTION), int(lon // GRID_RESOLUTION)


def convergence_score(n_types: int, n_events: int) -> int:
    return min(100, n_types * 25 + min(n_events * 2, 50))


class GeoConvergenceDetector:
    """Per-type snapshots of geolocated events, scanned for multi-type cells."""

    def __init__(self, clock: Callable[[], datetime] = utcnow, window_hours: float = 24):
        self._clock = clock
        self.window = timedelta(hours=window_hours)
        self.event_store: dict[str, list[dict]] = {}

    def set_events(self, event_type: str, events: Iterable[dict]) -> None:
        """Replace the snapshot for one event type.

        Each event is a dict with `latitude`, `longitude` and an optional
        `timestamp`; events without coordinates are skipped.
        """
        if event_type not in CONVERGENCE_EVENT_TYPES:
            raise ValueError(f"unknown convergence event type: {event_type}")
        now = self._clock()
        self.event_store[event_type] = [
            {
                "latitude": e["latitude"],
                "longitude": e["longitude"],
                "timestamp": e.get("timestamp") or now,
            }
            for e in events
            if e.get("latitude") is not None and e.get("longitude") is not None
        ]

    def clear(self) -> None:
        self.event_store.clear()

    def detect(self) -> list[GeoConvergenceAlert]:
        """Convergence alerts for every qualifying cell, sorted by score descending."""
        cutoff = self._clock() - self.window

        grid: dict[tuple[int, int], dict] = defaultdict(lambda: {
            "types": set(),
            "lat_sum": 0.0,
            "lon_sum": 0.0,
            "count": 0,
        })

        for etype, events in self.event_store.items():
            for event in events:
                if event["timestamp"] < cutoff:
                    continue
                cell = grid[cell_for(event["latitude"], event["longitude"])]
                cell["types"].add(etype)
                cell["lat_sum"] += event["latitude"]
                cell["lon_sum"] += event["longitude"]
                cell["count"] += 1

        now = self._clock()
        alerts = []
        for (grid_lat, grid_lon), cell in grid.items():
            n_types = len(cell["types"])
            if n_types < MIN_CONVERGENCE_TYPES:
                continue
            n_events = cell["count"]
            alerts.append(GeoConvergenceAlert(
                cell_id=f"{grid_lat}:{grid_lon}",
                lat=round(cell["lat_sum"] / n_events, 4),
                lon=round(cell["lon_sum"] / n_events, 4),
                types=sorted(cell["types"]),
                total_events=n_events,
                score=convergence_score(n_types, n_events),
                timestamp=now,
            ))

        alerts.sort(key=lambda a: a.score, reverse=True)
        logger.info("[convergence] Detected %d convergence cells", len(alerts))
        return alerts

