"""
Configuration Management

Why a separate config file?
- Single source of truth for polling, fan-out and logging knobs
- Type validation (Pydantic catches bad env values at startup)
- Environment variable loading with defaults
- Easy to test (tests construct their own Settings instead of patching env)
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application Settings

    Pydantic loads every field from the environment (case-insensitive) or
    from a local .env file.
    """

    # Logging
    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated (poller,roster,session,stream,api,system). None shows all.
    log_buffer_size: int = 1000  # Records kept for /api/logs

    # Server
    port: int = 8000
    host: str = "0.0.0.0"

    # YouTube Data API
    youtube_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("youtube_api_key", "yt_api_key"),
    )
    youtube_max_results: int = 2000
    youtube_request_timeout_seconds: float = 30.0

    # Roster
    default_max_commenters: int = Field(default=1000, ge=1, le=10000)
    bot_name_denylist: str = "nightbot,streamlabs,moobot,streamelements,fossabot,wizebot"

    # Poll loop
    min_poll_interval_seconds: float = 2.0  # Floor applied to the source's suggested interval
    default_poll_interval_seconds: float = 5.0  # Used until the source suggests one
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    max_consecutive_errors: int = 5  # Session terminates once this many errors happen in a row

    # Shared stream / router
    message_stream_capacity: int = 100
    recent_message_window: int = 2000  # Message ids remembered for duplicate suppression

    # Subscriber streams
    heartbeat_interval_seconds: float = 30.0
    roster_update_interval_seconds: float = 10.0
    subscriber_idle_timeout_seconds: float = 300.0
    subscriber_queue_size: int = 256

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow unrelated env vars without validation errors
        populate_by_name=True,
    )

    @property
    def bot_names(self) -> List[str]:
        """Parsed bot deny-list, lowercased."""
        return [
            name.strip().lower()
            for name in self.bot_name_denylist.split(",")
            if name.strip()
        ]


# Loaded once when the module is imported; create_app() falls back to it
settings = Settings()
