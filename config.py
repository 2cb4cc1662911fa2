from __future__ import annotations

from datetime import timedelta
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from BOOKING_* environment variables or .env."""

    store: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./bookings.db"
    owner_header: str = Field("ivao-vid", min_length=1)
    # 0 disables the minimum duration policy
    min_duration_minutes: int = Field(0, ge=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="BOOKING_",
        env_file=".env",
        extra="ignore",
    )

    def min_duration(self) -> Optional[timedelta]:
        if self.min_duration_minutes <= 0:
            return None
        return timedelta(minutes=self.min_duration_minutes)
