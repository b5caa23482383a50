"""Environment-based configuration for HaarScan."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from HAARSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HAARSCAN_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Cascade model (JSON or PHP-serialized detection data)
    cascade_path: Path | None = None

    # Search
    search_strategy: Literal["sequential", "vectorized"] = "sequential"
    prescale: bool = True
    reference_width: int = Field(default=320, ge=1)
    reference_height: int = Field(default=240, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    @property
    def reference_size(self) -> tuple[int, int] | None:
        if not self.prescale:
            return None
        return (self.reference_width, self.reference_height)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
