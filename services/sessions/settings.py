"""
Settings and configuration for Sessions Service.
"""

from services.common.settings import (
    AliasChoices,
    BaseSettings,
    Field,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    db_url_sessions: str = Field(
        default="sqlite:///./sessions.sqlite3",
        description="Database connection string for sessions service",
        validation_alias=AliasChoices("DB_URL_SESSIONS"),
    )

    # Join window state machine
    join_window_minutes: int = Field(
        default=60,
        description="Minutes after the scheduled time during which joining is allowed",
        validation_alias=AliasChoices("JOIN_WINDOW_MINUTES"),
    )
    starting_soon_minutes: int = Field(
        default=10,
        description="Minutes before the scheduled time classified as starting soon",
        validation_alias=AliasChoices("STARTING_SOON_MINUTES"),
    )

    # Recurrence
    enumeration_cap: int = Field(
        default=366,
        description="Maximum occurrences produced by a single enumeration",
        validation_alias=AliasChoices("ENUMERATION_CAP"),
    )
    countdown_tick_seconds: float = Field(
        default=1.0,
        description="Refresh interval for countdown re-evaluation",
        validation_alias=AliasChoices("COUNTDOWN_TICK_SECONDS"),
    )

    # Listing
    upcoming_default_limit: int = Field(
        default=5,
        description="Default number of upcoming sessions returned",
        validation_alias=AliasChoices("UPCOMING_DEFAULT_LIMIT"),
    )
    history_page_size: int = Field(
        default=10,
        description="Default page size for session history",
        validation_alias=AliasChoices("HISTORY_PAGE_SIZE"),
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias=AliasChoices("LOG_LEVEL"),
    )
    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
        validation_alias=AliasChoices("LOG_FORMAT"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
