"""Configuration settings for Lifelog.

Everything lives in one SQLite file under the storage directory:
conversations, speakers, utterances, the FTS index and the
suggestion/feedback tables.
"""

from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lifelog.core.models import DEFAULT_CREATOR_ID


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIFELOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage directory (default: .lifelog in current directory)
    storage_dir: Path = Field(default=Path(".lifelog"))
    database_name: str = "lifelog.db"

    # Clustering and context
    gap_threshold_seconds: float = Field(default=300.0, ge=0)
    context_window_minutes: float = Field(default=15.0, ge=0)
    search_limit: int = Field(default=25, gt=0)

    # Creator id used when neither the record nor the stored setting has one
    creator_id: str = DEFAULT_CREATOR_ID

    # Fail-fast bounds for storage access
    busy_timeout_seconds: float = Field(default=5.0, gt=0)
    lock_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def database_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.storage_dir / self.database_name

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL for the database."""
        return f"sqlite:///{self.database_path}"

    @property
    def gap_threshold(self) -> timedelta:
        return timedelta(seconds=self.gap_threshold_seconds)

    @property
    def context_window(self) -> timedelta:
        return timedelta(minutes=self.context_window_minutes)

    def ensure_storage_dir(self) -> None:
        """Create storage directory if it doesn't exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (useful for testing)."""
    global _settings
    _settings = None
