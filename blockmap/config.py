"""
Application configuration using Pydantic settings.
"""
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Imagery API Configuration
    imagery_api_base_url: str = Field(
        default="https://imagery.example.com",
        description="Base URL for the raster imagery service"
    )
    imagery_api_key: str = Field(
        default="",
        description="API key for the raster imagery service"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for imagery calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=4,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Geometry
    geod_ellipsoid: str = Field(
        default="WGS84",
        description="Ellipsoid used for geodesic math ('sphere' for a mean-radius sphere)"
    )
    closing_tolerance_ft: float = Field(
        default=50.0,
        description="Distance to the first vertex that closes a polygon being drawn"
    )
    edge_hit_tolerance_ft: float = Field(
        default=40.0,
        description="Maximum distance from an edge for a right-click vertex insert"
    )

    # Raster quality gate
    min_valid_pixel_percent: float = Field(
        default=50.0,
        description="Rasters with fewer finite pixels than this are treated as cloudy"
    )
    mean_zero_epsilon: float = Field(
        default=0.01,
        description="Rasters whose mean lies within this distance of zero are rejected"
    )
    raster_cache_max_entries: Optional[int] = Field(
        default=None,
        description="LRU bound on dated cache entries (None keeps every entry)"
    )
    fetch_inter_request_delay_s: float = Field(
        default=0.5,
        description="Pause between sequential imagery fetches in a batch"
    )

    # Timeline
    timeline_debounce_ms: int = Field(
        default=300,
        description="Quiet period after the last slider move before fetching"
    )
    timeline_window_days: int = Field(
        default=14,
        description="Length of each date window on the timeline"
    )
    growing_season_start_month: int = Field(
        default=4,
        description="First month of the timeline year axis"
    )
    growing_season_end_month: int = Field(
        default=10,
        description="Last month of the timeline year axis"
    )

    # Capture
    capture_padding_px: int = Field(
        default=50,
        description="Padding used when fitting the viewport to a field"
    )
    settle_raster_s: float = Field(
        default=2.5,
        description="Settle time before capturing a raster overlay"
    )
    settle_basemap_s: float = Field(
        default=1.0,
        description="Settle time before capturing the plain basemap"
    )
    capture_hide_marker: str = Field(
        default="exclude-from-capture",
        description="Elements carrying this marker are hidden during capture"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="Blockmap Field Geometry Service",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
