"""
CRM Sync Configuration Settings
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Paths (use CRMSYNC_ prefix)
    data_dir: Path = Field(
        default=Path("./data"),
        alias="CRMSYNC_DATA_DIR"
    )
    db_path: Optional[Path] = Field(
        default=None,
        alias="CRMSYNC_DB_PATH",
        description="SQLite CRM database (defaults to <data_dir>/crm.db)"
    )
    token_path: Optional[Path] = Field(
        default=None,
        alias="CRMSYNC_TOKEN_PATH",
        description="OAuth token file (defaults to <data_dir>/google-credentials.json)"
    )

    # Server
    port: int = Field(default=8000, alias="CRMSYNC_PORT")
    host: str = Field(default="127.0.0.1", alias="CRMSYNC_HOST")

    # Google OAuth (no prefix - standard env var names)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    oauth_port: int = Field(
        default=0,
        alias="CRMSYNC_OAUTH_PORT",
        description="Local port for the OAuth callback (0 = any free port)"
    )

    # Sync windows
    calendar_initial_months: int = Field(default=6, alias="CRMSYNC_CALENDAR_INITIAL_MONTHS")
    calendar_fallback_days: int = Field(default=7, alias="CRMSYNC_CALENDAR_FALLBACK_DAYS")
    gmail_initial_days: int = Field(default=30, alias="CRMSYNC_GMAIL_INITIAL_DAYS")
    gmail_fallback_days: int = Field(default=7, alias="CRMSYNC_GMAIL_FALLBACK_DAYS")

    # Gmail noise filtering
    group_email_threshold: int = Field(
        default=5,
        alias="CRMSYNC_GROUP_EMAIL_THRESHOLD",
        description="To + Cc count at which a message is treated as a group email"
    )

    # Provider API calls
    api_max_attempts: int = Field(default=3, alias="CRMSYNC_API_MAX_ATTEMPTS")
    api_base_delay: float = Field(default=1.0, alias="CRMSYNC_API_BASE_DELAY")  # seconds
    api_max_delay: float = Field(default=10.0, alias="CRMSYNC_API_MAX_DELAY")  # seconds
    api_timeout: int = Field(default=30, alias="CRMSYNC_API_TIMEOUT")  # seconds per HTTP request

    # Daemon
    daemon_interval: str = Field(
        default="1h",
        alias="CRMSYNC_DAEMON_INTERVAL",
        description="Sync interval, e.g. 5m, 1h, 1h30m (minimum 5m)"
    )
    daemon_services: str = Field(
        default="all",
        alias="CRMSYNC_DAEMON_SERVICES",
        description="Comma-separated services to sync, or 'all'"
    )

    log_level: str = Field(default="INFO", alias="CRMSYNC_LOG_LEVEL")

    @property
    def db_path_resolved(self) -> Path:
        """Get path to the CRM database."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return Path(self.data_dir).expanduser() / "crm.db"

    @property
    def token_path_resolved(self) -> Path:
        """Get path to the stored OAuth token."""
        if self.token_path:
            return Path(self.token_path).expanduser()
        return Path(self.data_dir).expanduser() / "google-credentials.json"

    @property
    def google_oauth_configured(self) -> bool:
        """Check if Google OAuth client credentials are configured."""
        return bool(self.google_client_id and self.google_client_secret)


settings = Settings()
