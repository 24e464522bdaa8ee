"""
Core types for the media upload pipeline.

Provides the data structures shared by the upload queue and the
submission coordinator: local file payloads, attachment entries,
submission steps and aggregate results.
"""

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Union


class AttachmentState(Enum):
    """Lifecycle state of an attachment entry."""
    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class StepStatus(Enum):
    """Status of one stage of a submission."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class SubmissionPhase(Enum):
    """Overall state of the coordinator."""
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class LocalFile:
    """An image picked by the user that has not been sent anywhere yet."""
    filename: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, Path], content_type: Optional[str] = None) -> "LocalFile":
        """Read a file from disk, guessing its MIME type from the extension."""
        path = Path(path)
        if content_type is None:
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, content_type=content_type, data=path.read_bytes())


@dataclass
class AttachmentEntry:
    """
    One image candidate in the upload queue.

    Attributes:
        id: Stable identifier ("local-N" or "backend-{server_id}")
        display_url: Preview URL (blob:) before upload, server URL after
        order: Zero-based display position, contiguous across the queue
        source: Local payload, only present until the server accepts it
        upload_progress: 0-100, None when no attempt was made yet
        upload_error: Last failure message once automatic retries ran out
        is_uploaded: Whether the server holds this attachment
        server_id: Backend image id, required for thumbnail and delete calls
    """
    id: str
    display_url: str
    order: int
    source: Optional[LocalFile] = None
    upload_progress: Optional[int] = None
    upload_error: Optional[str] = None
    is_uploaded: bool = False
    server_id: Optional[int] = None
    uploading: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        if self.source is None and not self.is_uploaded:
            raise ValueError(f"Entry {self.id} has neither a local payload nor an uploaded copy")

    @property
    def state(self) -> AttachmentState:
        if self.is_uploaded:
            return AttachmentState.UPLOADED
        if self.uploading:
            return AttachmentState.UPLOADING
        if self.upload_error:
            return AttachmentState.FAILED
        return AttachmentState.PENDING

    @property
    def is_pending(self) -> bool:
        """True when a local payload still has to reach the server."""
        return self.source is not None and not self.is_uploaded

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display consumers."""
        return {
            "id": self.id,
            "url": self.display_url,
            "order": self.order,
            "state": self.state.value,
            "upload_progress": self.upload_progress,
            "upload_error": self.upload_error,
            "is_uploaded": self.is_uploaded,
            "server_id": self.server_id,
            "filename": self.source.filename if self.source else None,
        }


@dataclass(frozen=True)
class UploadedAttachment:
    """What the upload collaborator returns for one accepted file."""
    url: str
    server_id: Optional[int] = None


@dataclass
class UploadBatchResult:
    """Aggregate outcome of flushing every pending entry."""
    success: bool
    uploaded_urls: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return not self.success and bool(self.uploaded_urls)

    @property
    def is_total_failure(self) -> bool:
        return not self.success and not self.uploaded_urls


@dataclass
class SubmissionStep:
    """One stage of a multi-step save, tracked for progress display."""
    id: str
    label: str
    status: StepStatus = StepStatus.PENDING
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def mark_started(self) -> None:
        self.status = StepStatus.IN_PROGRESS
        self.started_at = datetime.now(timezone.utc)

    def mark_completed(self) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = datetime.now(timezone.utc)

    def mark_failed(self, error: str) -> None:
        self.status = StepStatus.ERROR
        self.error = error
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class SubmissionResult:
    """Returned by a submission that reached the done state."""
    record: Any
    steps: List[SubmissionStep]
    thumbnail_id: Optional[str] = None


ProgressCallback = Callable[[int, Optional[int]], None]


class AttachmentBackend(Protocol):
    """Server-side collaborators of the upload queue and the coordinator."""

    async def upload_attachment(
        self,
        file: LocalFile,
        owner_record_id: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadedAttachment:
        ...

    async def delete_attachment(self, server_id: int) -> None:
        ...

    async def set_thumbnail(self, server_id: int) -> None:
        ...
