"""Pipeline configuration management using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tunables for the upload queue, submission coordinator and HTTP adapter.

    Every field can be overridden with a ``VILLA_MEDIA_`` prefixed environment
    variable or through a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="VILLA_MEDIA_", env_file=".env", extra="ignore"
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Backend API
    api_base_url: str = "http://localhost:8080"
    request_timeout: float = 60.0

    # Upload queue limits
    max_images: int = 20
    max_file_size_mb: int = 10
    allowed_content_types: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
    ]
    upload_max_attempts: int = 3
    max_concurrent_uploads: int = 4  # 0 = unbounded fan-out

    # Persist retry policy
    persist_max_attempts: int = 3
    persist_backoff_base: float = 1.0
    transient_status_codes: List[int] = [500]
    lock_keywords: List[str] = ["lock"]

    # Submission timing (seconds)
    consistency_delay: float = 0.5  # workaround for read-after-write on the server
    completion_hold: float = 0.3

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache configuration for the current process."""

    return Settings()


__all__ = ["Settings", "get_settings"]
