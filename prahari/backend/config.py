"""Prahari — Application Configuration."""

import json
import logging
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional

_cfg_logger = logging.getLogger("prahari.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    app_name: str = "Prahari"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Redis
    redis_url: str = "redis://localhost:6379"
    redis_stream_key: str = "prahari:alerts"
    redis_scores_key: str = "prahari:cii:scores"
    use_redis: bool = False  # Set True when Redis is available

    # Country boundary dataset (file path or http(s) URL)
    geometry_source: Optional[str] = None

    # Scoring
    learning_minutes: int = 15
    news_recency_hours: int = 24
    strike_recency_hours: int = 24

    # Alert store
    alert_max_count: int = 50
    alert_retention_hours: int = 24
    alert_merge_window_minutes: int = 120
    alert_merge_distance_km: float = 200.0

    # Signal aggregator rolling window
    signal_window_hours: int = 24

    model_config = {"env_file": ".env", "env_prefix": "PRAHARI_"}


def _load_settings() -> Settings:
    """Load settings, supplementing with overrides.json for deploy-time knobs."""
    s = Settings()

    # Auto-load overrides from overrides.json if not set via env
    overrides_path = Path(__file__).resolve().parent.parent / "overrides.json"
    if overrides_path.exists():
        try:
            overrides = json.loads(overrides_path.read_text(encoding="utf-8"))

            if not s.geometry_source and overrides.get("geometry_source"):
                s.geometry_source = overrides["geometry_source"]
                _cfg_logger.info("Geometry source loaded from %s", overrides_path.name)

            if overrides.get("redis_url") and not s.use_redis:
                s.redis_url = overrides["redis_url"]
                s.use_redis = True
                _cfg_logger.info("Redis settings loaded from %s", overrides_path.name)
        except Exception as e:
            _cfg_logger.warning("Failed to read overrides.json: %s", e)

    return s


settings = _load_settings()
