"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "citysim"
    debug: bool = False
    log_level: str = "INFO"
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    weather_file: str = "weather_data.csv"

    # Time compression
    default_seconds_per_hour: float = 10.0
    min_seconds_per_hour: float = 1.0
    max_seconds_per_hour: float = 3600.0
    autonomous_ticking: bool = False

    # Event lifecycle
    event_generation_chance: float = 0.1
    event_min_hours_in_future: int = 48
    event_max_hours_in_future: int = 168
    event_max_completed_kept: int = 50
    event_max_per_day: int = 2
    event_max_concurrent: int = 3
    event_minimum_gap_hours: float = 4.0
    event_initial_count_min: int = 3
    event_initial_count_max: int = 5
    event_top_up_threshold: int = 3
    event_top_up_interval_hours: int = 24
    event_daily_count_retention_days: int = 7

    # Traffic model
    traffic_min_congestion: float = 0.1
    traffic_max_congestion: float = 10.0
    traffic_momentum: float = 0.3
    traffic_peak_threshold: float = 1.5

    # Weather replay
    weather_match_tolerance_seconds: int = 60
    weather_anchor_buffer_days: int = 7

    # Telemetry sink: none | push | broadcast | both
    sink_strategy: str = "none"
    stream_url: str | None = None
    stream_client_id: str | None = None
    stream_client_secret: str | None = None
    stream_id: str | None = None
    stream_max_auth_retries: int = 3
    stream_auth_timeout_seconds: float = 30.0
    stream_push_timeout_seconds: float = 15.0

    model_config = {"env_prefix": "CITYSIM_"}


settings = Settings()
