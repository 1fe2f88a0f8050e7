"""Settings for tower_dal, read from `TOWER_*` environment variables or `.env`."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOWER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Store
    backend: Literal["memory", "firestore"] = "memory"
    project_id: str | None = None
    database: str = "(default)"
    emulator_host: str | None = Field(default=None, alias="FIRESTORE_EMULATOR_HOST")
    credentials_path: str | None = None
    transaction_max_attempts: int = Field(default=5, ge=1)

    # Logging, applied by Client.connect
    log_level: str = "INFO"

    # Page sizes
    default_page_size: int = Field(default=3, ge=1)
    comment_page_size: int = Field(default=5, ge=1)
    follower_page_size: int = Field(default=5, ge=1)
    moderation_page_size: int = Field(default=5, ge=1)

    # Firestore caps `in` filters at 30 values
    feed_slice_size: int = Field(default=10, ge=1, le=30)

    # Content with more reports than this accepts no new ones
    max_reports: int = Field(default=7, ge=0)

    # Entity defaults
    default_avatar_path: str = "avatars/climber.png"
    default_bio: str = "I'm a new climber!"
    default_display_name: str = "Tower Climber"

    @property
    def uses_emulator(self) -> bool:
        """Whether Firestore requests go to a local emulator."""
        return self.emulator_host is not None


settings = Settings()
