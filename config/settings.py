"""
Configuration settings for the CourtPulse live analytics service.
Uses pydantic-settings for validation and environment variable loading.
"""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RefreshSettings(BaseSettings):
    """Polling, staleness and retry policy for the refresh coordinator."""

    poll_interval_ms: int = 10_000      # Re-fetch every 10s while subscribed
    stale_after_ms: int = 30_000        # READY data older than this is STALE

    # Exponential backoff on transient upstream failures
    backoff_base_ms: int = 1_000
    backoff_cap_ms: int = 60_000
    retry_attempts: int = 5             # Consecutive failures before subscribers hear about it

    # Edges below this absolute probability gap (percentage points) are dropped
    min_edge_pct: float = 2.0

    # Cache housekeeping
    closed_retention_ms: int = 1_800_000  # Keep finished games for 30 min
    history_size: int = 480               # Snapshots kept per game for the momentum window
    subscriber_queue_size: int = 32

    @field_validator(
        "poll_interval_ms",
        "stale_after_ms",
        "backoff_base_ms",
        "backoff_cap_ms",
        "closed_retention_ms",
        "history_size",
        "subscriber_queue_size",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("retry_attempts")
    @classmethod
    def _non_negative_attempts(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("min_edge_pct")
    @classmethod
    def _non_negative_edge(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @model_validator(mode="after")
    def _check_windows(self) -> "RefreshSettings":
        if self.backoff_cap_ms < self.backoff_base_ms:
            raise ValueError("backoff_cap_ms must be >= backoff_base_ms")
        if self.stale_after_ms < self.poll_interval_ms:
            raise ValueError("stale_after_ms must be >= poll_interval_ms")
        return self


class MomentumSettings(BaseSettings):
    """
    Momentum engine tuning.

    League baselines are per-48-minute NBA averages.
    """

    # Short window the momentum is measured over (game-clock seconds)
    window_seconds: float = 300.0

    # Trend classification
    trend_dead_zone: float = 0.5

    # Confidence
    min_snapshots: int = 10          # Full sample confidence at this many snapshots
    max_gap_seconds: float = 90.0    # Bigger clock jumps between snapshots count as gaps
    gap_penalty: float = 0.5

    # League baselines
    league_pace: float = 100.0       # Possessions per 48 minutes
    league_rating: float = 114.0     # Points per 100 possessions

    # Squashing scales
    overall_scale: float = 6.0       # Points of run differential for ~73% overall
    efficiency_scale: float = 1.5

    # Predictions
    home_court_points: float = 2.5
    home_court_edge: float = 0.03
    momentum_weight: float = 0.10
    sigma_per_sqrt_minute: float = 1.75   # ~12 point margin stdev over 48 min
    sigma_floor: float = 0.5

    @field_validator("window_seconds", "league_pace", "league_rating", "overall_scale", "efficiency_scale")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("min_snapshots")
    @classmethod
    def _min_snapshots(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("gap_penalty")
    @classmethod
    def _penalty_range(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be within [0, 1]")
        return value


class EdgeSettings(BaseSettings):
    """Edge and projection settings."""

    # Player prop markets (The Odds API keys)
    markets: list[str] = Field(default_factory=lambda: [
        "player_points",
        "player_rebounds",
        "player_assists",
        "player_blocks",
        "player_steals",
    ])

    # Edge ids are stable within one bucket
    bucket_seconds: int = 60

    # Projection
    min_minutes: float = 1.0         # Players below this get no projection
    full_minutes: float = 36.0       # Minutes played for full projection confidence

    @field_validator("bucket_seconds")
    @classmethod
    def _positive_bucket(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


class OddsAPISettings(BaseSettings):
    """The Odds API connection. Also read directly from ODDS_* (e.g. ODDS_API_KEY)."""

    model_config = SettingsConfigDict(env_prefix="ODDS_", env_file=".env", extra="ignore")

    api_key: str = Field(default="", description="The Odds API key")
    base_url: str = "https://api.the-odds-api.com/v4"
    sport_key: str = "basketball_nba"

    regions: list[str] = Field(default_factory=lambda: ["us"])
    bookmakers: list[str] = Field(default_factory=lambda: [
        "draftkings",
        "fanduel",
        "betmgm",
        "williamhill_us",
        "pinnacle",
    ])

    # Game-level markets fetched alongside the props; empty = props only
    game_markets: list[str] = Field(default_factory=lambda: ["h2h", "spreads", "totals"])

    requests_per_minute: int = 10    # Conservative for the free tier
    timeout_seconds: float = 15.0

    @field_validator("game_markets")
    @classmethod
    def _known_game_markets(cls, value: list[str]) -> list[str]:
        unknown = set(value) - {"h2h", "spreads", "totals"}
        if unknown:
            raise ValueError(f"unknown game markets: {sorted(unknown)}")
        return value


class NBALiveSettings(BaseSettings):
    """NBA live-data CDN."""

    base_url: str = "https://cdn.nba.com/static/json/liveData"
    timeout_seconds: float = 10.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Logging
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    # Games to track at startup (comma-separated NBA game ids). Empty = today's live games.
    tracked_games: str = Field(default="", description="Comma-separated game ids to track")
    status_interval_seconds: float = 60.0

    # Sub-settings
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    momentum: MomentumSettings = Field(default_factory=MomentumSettings)
    edges: EdgeSettings = Field(default_factory=EdgeSettings)
    odds_api: OddsAPISettings = Field(default_factory=OddsAPISettings)
    nba_live: NBALiveSettings = Field(default_factory=NBALiveSettings)

    @property
    def tracked_game_ids(self) -> list[str]:
        """Parsed tracked_games list."""
        return [g.strip() for g in self.tracked_games.split(",") if g.strip()]


# Global settings instance, loaded on the first get_settings() call
_settings: Optional[Settings] = None


def reload_settings(**overrides) -> Settings:
    """Re-read settings from the environment (and optional overrides)."""
    global _settings
    _settings = Settings(**overrides)
    return _settings


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Raises:
        ValidationError: the environment holds invalid settings
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
