"""Engine settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables with PROGRESSION_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="PROGRESSION_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"

    # IANA zone name used for day boundaries. Empty means the host's local zone.
    timezone: str = ""

    # --- Polling intervals ---
    countdown_interval_seconds: float = 1.0
    session_tick_interval_seconds: float = 1.0
    powerup_expiry_interval_seconds: float = 30.0
    rollover_interval_seconds: float = 60.0

    # --- Activity sessions ---
    session_idle_timeout_minutes: int = 15
    session_bonus_step_minutes: int = 5

    # --- Engine instance ---
    user_id: str = "local"
    # JSON file of power-up specs keyed by id. Empty means no power-ups.
    catalog_path: str = ""

    # --- Streaks ---
    streak_milestone_rewards: bool = True

    # --- Notifications ---
    redis_url: str = ""
    notification_channel_prefix: str = "pubsub:progression"


@lru_cache
def get_settings() -> Settings:
    """Get cached engine settings."""
    return Settings()
