"""
Media upload and property submission pipeline.

This package manages the image gallery of a villa listing while it is
being created or edited, and saves the listing in ordered steps:
- Ordered attachment queue with validation, capacity guard and reorder
- Concurrent uploads with progress tracking and bounded automatic retries
- Server-first deletion so local state never drifts from the backend
- Upload -> thumbnail -> persist coordination with step status reporting
- Exponential-backoff retry of transient (lock / server fault) save errors

Components:
- types: Core data types (AttachmentEntry, LocalFile, SubmissionStep)
- upload_queue: UploadQueue, the attachment collection and upload driver
- coordinator: SubmissionCoordinator, the multi-step save
- retry: Transient error classification and tenacity retry policies
- client: httpx adapter for the property REST API
- previews: blob: preview URL registry

Usage:
    from villa_media import PropertyApiClient, PropertyMediaBackend, UploadQueue, SubmissionCoordinator

    client = PropertyApiClient(signer=bearer_signer(session.token))
    queue = UploadQueue(PropertyMediaBackend(client, property_id), max_items=5)
    queue.add_files(files)
    result = await SubmissionCoordinator(queue).submit(
        record, client.persist_fn(property_id), record_id=property_id
    )
"""

from .types import (
    AttachmentBackend,
    AttachmentEntry,
    AttachmentState,
    LocalFile,
    StepStatus,
    SubmissionPhase,
    SubmissionResult,
    SubmissionStep,
    UploadBatchResult,
    UploadedAttachment,
)
from .errors import (
    ApiError,
    AttachmentDeleteError,
    AttachmentValidationError,
    CapacityError,
    MediaPipelineError,
    ThumbnailAssignmentError,
    UploadError,
    UploadStepError,
)
from .config import Settings, get_settings
from .previews import PreviewRegistry
from .retry import is_transient_error
from .upload_queue import UploadQueue
from .coordinator import SubmissionCoordinator
from .client import PropertyApiClient, PropertyMediaBackend, bearer_signer
from .schemas import PropertyGallery

__version__ = "1.0.0"

__all__ = [
    # Types
    "AttachmentBackend",
    "AttachmentEntry",
    "AttachmentState",
    "LocalFile",
    "StepStatus",
    "SubmissionPhase",
    "SubmissionResult",
    "SubmissionStep",
    "UploadBatchResult",
    "UploadedAttachment",
    # Errors
    "ApiError",
    "AttachmentDeleteError",
    "AttachmentValidationError",
    "CapacityError",
    "MediaPipelineError",
    "ThumbnailAssignmentError",
    "UploadError",
    "UploadStepError",
    # Core
    "Settings",
    "get_settings",
    "PreviewRegistry",
    "is_transient_error",
    "UploadQueue",
    "SubmissionCoordinator",
    # HTTP
    "PropertyApiClient",
    "PropertyMediaBackend",
    "PropertyGallery",
    "bearer_signer",
]
