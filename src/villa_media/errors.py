"""Exception hierarchy for the media upload pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .types import UploadBatchResult


class MediaPipelineError(Exception):
    """Base class for every error raised or reported by the pipeline."""


class AttachmentValidationError(MediaPipelineError):
    """A single file was rejected (unsupported type or too large)."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class CapacityError(MediaPipelineError):
    """A whole add-batch would exceed the configured maximum."""

    def __init__(self, limit: int, requested: int) -> None:
        super().__init__(f"Cannot hold more than {limit} images (requested {requested})")
        self.limit = limit
        self.requested = requested


class AttachmentDeleteError(MediaPipelineError):
    """Server-side delete failed, the local entry was kept."""

    def __init__(self, entry_id: str, server_id: int, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Failed to delete image {server_id} from server")
        self.entry_id = entry_id
        self.server_id = server_id
        self.__cause__ = cause


class UploadError(MediaPipelineError):
    """An entry still failed after all automatic upload attempts."""

    def __init__(self, entry_id: str, message: str, attempts: int) -> None:
        super().__init__(message)
        self.entry_id = entry_id
        self.message = message
        self.attempts = attempts


class UploadStepError(MediaPipelineError):
    """No pending attachment could be uploaded; the submission was halted."""

    def __init__(self, batch: "UploadBatchResult", message: str = "Image upload failed. Please try again.") -> None:
        super().__init__(message)
        self.batch = batch


class ThumbnailAssignmentError(MediaPipelineError):
    """Setting the primary image failed. Never escapes the coordinator."""

    def __init__(self, server_id: int, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Failed to set image {server_id} as thumbnail")
        self.server_id = server_id
        self.__cause__ = cause


_STATUS_MESSAGES = {
    400: "Invalid data. Please check and try again.",
    401: "Your session has expired. Please sign in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested data was not found.",
    409: "The data already exists.",
    422: "Invalid data.",
    500: "Server error. Please try again later.",
    502: "Server temporarily unavailable. Please try again later.",
    503: "Service under maintenance. Please try again later.",
}

# Statuses where the server's own message is more useful than the generic one
_PREFER_SERVER_MESSAGE = {400, 404, 409, 422}


class ApiError(MediaPipelineError):
    """Non-2xx response from the property API."""

    def __init__(self, status_code: int, message: Optional[str] = None, payload: Any = None) -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code
        self.message = message
        self.payload = payload

    @property
    def user_message(self) -> str:
        if self.message and (
            self.status_code in _PREFER_SERVER_MESSAGE or self.status_code not in _STATUS_MESSAGES
        ):
            return self.message
        return _STATUS_MESSAGES.get(self.status_code, "Something went wrong. Please try again.")


__all__ = [
    "MediaPipelineError",
    "AttachmentValidationError",
    "CapacityError",
    "AttachmentDeleteError",
    "UploadError",
    "UploadStepError",
    "ThumbnailAssignmentError",
    "ApiError",
]
