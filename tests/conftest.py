"""
Shared fixtures for upload queue and submission coordinator tests.
"""

import asyncio
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from villa_media.config import Settings
from villa_media.errors import ApiError
from villa_media.types import LocalFile, UploadedAttachment
from villa_media.upload_queue import UploadQueue

MB = 1024 * 1024


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with production defaults, isolated from the environment."""
    return Settings(_env_file=None)


# ============================================================================
# File Fixtures
# ============================================================================

def make_file(
    name: str = "pool.jpg",
    content_type: str = "image/jpeg",
    size: int = 2048,
) -> LocalFile:
    return LocalFile(filename=name, content_type=content_type, data=b"\xff" * size)


@pytest.fixture
def jpeg_file() -> LocalFile:
    return make_file("pool.jpg")


@pytest.fixture
def png_file() -> LocalFile:
    return make_file("garden.png", "image/png")


@pytest.fixture
def oversized_file() -> LocalFile:
    """11 MB image, over the default 10 MB ceiling."""
    return make_file("drone.jpg", size=11 * MB)


# ============================================================================
# Backend Fakes
# ============================================================================

class FakeBackend:
    """
    In-memory stand-in for the property API.

    ``failures`` maps a filename to how many upload attempts should fail
    before one succeeds; use a large number to make it fail for good.
    """

    def __init__(self) -> None:
        self.failures: Dict[str, int] = {}
        self.upload_delay = 0.0
        self.active_uploads = 0
        self.max_active_uploads = 0
        self.uploaded: List[str] = []
        self._next_server_id = 100

        self.upload_attachment = AsyncMock(side_effect=self._upload)
        self.delete_attachment = AsyncMock(return_value=None)
        self.set_thumbnail = AsyncMock(return_value=None)

    async def _upload(
        self,
        file: LocalFile,
        owner_record_id: Optional[int] = None,
        on_progress=None,
    ) -> UploadedAttachment:
        self.active_uploads += 1
        self.max_active_uploads = max(self.max_active_uploads, self.active_uploads)
        try:
            if on_progress is not None:
                on_progress(file.size // 2, file.size)
            if self.upload_delay:
                await asyncio.sleep(self.upload_delay)
            else:
                await asyncio.sleep(0)

            remaining = self.failures.get(file.filename, 0)
            if remaining:
                self.failures[file.filename] = remaining - 1
                raise ApiError(500, "Storage unavailable")

            if on_progress is not None:
                on_progress(file.size, file.size)
            self._next_server_id += 1
            self.uploaded.append(file.filename)
            return UploadedAttachment(
                url=f"https://cdn.example.com/{file.filename}",
                server_id=self._next_server_id,
            )
        finally:
            self.active_uploads -= 1


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def errors() -> list:
    """Collects everything the queue reports through on_error."""
    return []


@pytest.fixture
def queue(backend, errors, settings) -> UploadQueue:
    return UploadQueue(backend, on_error=errors.append, settings=settings)


# ============================================================================
# Timing
# ============================================================================

@pytest.fixture
def sleeps() -> list:
    """Durations passed to the coordinator's sleep, in call order."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(float(seconds))

    return _sleep
