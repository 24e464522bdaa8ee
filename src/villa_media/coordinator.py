"""
Multi-step property submission coordinator.

Sequences a save into upload -> thumbnail -> persist:
1. Upload: flush pending images (edit flow only; create sends them inline)
2. Thumbnail: point the listing's cover image at the chosen entry
3. Persist: save the record, retrying transient lock/server faults

Step status is published after every transition so a progress display
can follow along. Only persist failures are always fatal; thumbnail
failures are logged and skipped, upload failures halt the save only when
nothing could be uploaded.
"""

import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional

from .config import Settings, get_settings
from .errors import ApiError, ThumbnailAssignmentError, UploadStepError
from .logging import get_logger
from .retry import SleepFn, persist_retrying
from .types import (
    AttachmentBackend,
    AttachmentEntry,
    StepStatus,
    SubmissionPhase,
    SubmissionResult,
    SubmissionStep,
)
from .upload_queue import UploadQueue

LOGGER = get_logger(__name__)

PersistFn = Callable[[Any], Awaitable[Any]]
StepListener = Callable[[List[SubmissionStep]], None]

UPLOAD_STEP = "upload"
THUMBNAIL_STEP = "thumbnail"
PERSIST_STEP = "persist"

STEP_LABELS = (
    (UPLOAD_STEP, "Uploading images to server"),
    (THUMBNAIL_STEP, "Updating cover image"),
    (PERSIST_STEP, "Saving property details"),
)

UPLOAD_FAILED_MESSAGE = "Image upload failed. Please try again."
SAVE_FAILED_MESSAGE = "Something went wrong while saving. Please try again."
SUBMISSION_CANCELLED_MESSAGE = "Saving was interrupted. Please try again."


def _fresh_steps() -> List[SubmissionStep]:
    return [SubmissionStep(id=step_id, label=label) for step_id, label in STEP_LABELS]


def _persist_error_message(exc: BaseException) -> str:
    if isinstance(exc, ApiError):
        return exc.user_message
    return str(exc) or SAVE_FAILED_MESSAGE


class SubmissionCoordinator:
    """
    Drives one save of a property listing and its image gallery.

    Usage:
        coordinator = SubmissionCoordinator(queue, on_step_change=overlay.render)
        result = await coordinator.submit(
            record,
            client.persist_fn(property_id),
            record_id=property_id,
            thumbnail_choice="backend-42",
            previous_thumbnail_server_id=17,
        )
    """

    def __init__(
        self,
        queue: UploadQueue,
        backend: Optional[AttachmentBackend] = None,
        *,
        settings: Optional[Settings] = None,
        sleep: SleepFn = asyncio.sleep,
        on_step_change: Optional[StepListener] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            queue: Upload queue holding the listing's images
            backend: Thumbnail collaborator (defaults to the queue's backend)
            settings: Timing and retry configuration
            sleep: Awaitable used for every wait, replaceable in tests
            on_step_change: Receives a snapshot of all steps after each transition
        """
        self.queue = queue
        self._backend = backend or queue.backend
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._on_step_change = on_step_change

        self.steps: List[SubmissionStep] = _fresh_steps()
        self.current_step_index = 0
        self.phase = SubmissionPhase.IDLE
        self.error: Optional[str] = None

    @property
    def current_step(self) -> SubmissionStep:
        return self.steps[self.current_step_index]

    @property
    def is_done(self) -> bool:
        return self.phase == SubmissionPhase.DONE and all(
            step.status == StepStatus.COMPLETED for step in self.steps
        )

    def _step(self, step_id: str) -> SubmissionStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    def _publish(self) -> None:
        if self._on_step_change is not None:
            self._on_step_change([replace(step) for step in self.steps])

    def _fail(self, step: SubmissionStep, message: str) -> None:
        step.mark_failed(message)
        self.error = message
        self.phase = SubmissionPhase.ERROR
        self._publish()

    async def submit(
        self,
        record: Any,
        persist_fn: PersistFn,
        *,
        record_id: Optional[int] = None,
        thumbnail_choice: Optional[str] = None,
        previous_thumbnail_server_id: Optional[int] = None,
    ) -> SubmissionResult:
        """
        Run a full save.

        Args:
            record: Payload handed to persist_fn
            persist_fn: Creates or updates the record, returns the saved record
            record_id: Id of the listing being edited; None creates a new one
            thumbnail_choice: Entry id picked as cover image, first entry if None
            previous_thumbnail_server_id: Server id of the current cover image

        Returns:
            SubmissionResult with the saved record and final step states

        Raises:
            UploadStepError: No pending image could be uploaded (edit flow)
            Exception: Whatever persist_fn raised once retries were exhausted

        A cancelled submission marks the open step as failed (or finishes as
        done when only the completion hold was left) before the cancellation
        propagates, so the coordinator can be used again.
        """
        if self.phase == SubmissionPhase.RUNNING:
            raise RuntimeError("A submission is already running")

        self.steps = _fresh_steps()
        self.current_step_index = 0
        self.error = None
        self.phase = SubmissionPhase.RUNNING
        editing = record_id is not None
        LOGGER.info("Submission started", record_id=record_id, images=len(self.queue))
        self._publish()

        try:
            if editing:
                await self._run_upload_step(record_id)
            else:
                self._step(UPLOAD_STEP).mark_completed()
                self._publish()

            self.current_step_index = 1
            thumbnail = await self._run_thumbnail_step(
                editing, thumbnail_choice, previous_thumbnail_server_id
            )

            self.current_step_index = 2
            if editing:
                # Give the server time to commit the thumbnail write before the record update
                await self._sleep(self.settings.consistency_delay)

            saved = await self._run_persist_step(record, persist_fn)

            await self._sleep(self.settings.completion_hold)
        except BaseException as exc:
            self._settle_interrupted(exc)
            raise

        self.phase = SubmissionPhase.DONE
        LOGGER.info("Submission finished", record_id=record_id)
        self._publish()
        return SubmissionResult(
            record=saved,
            steps=[replace(step) for step in self.steps],
            thumbnail_id=thumbnail.id if thumbnail else None,
        )

    def _settle_interrupted(self, exc: BaseException) -> None:
        """Resolve state left open by a cancelled or otherwise aborted submission."""
        if self.phase != SubmissionPhase.RUNNING:
            return
        open_steps = [step for step in self.steps if step.status != StepStatus.COMPLETED]
        if not open_steps:
            # Cancelled during the completion hold; the record is already saved
            self.phase = SubmissionPhase.DONE
            self._publish()
            return
        message = (
            SUBMISSION_CANCELLED_MESSAGE
            if isinstance(exc, asyncio.CancelledError)
            else str(exc) or SAVE_FAILED_MESSAGE
        )
        LOGGER.warning(
            "Submission interrupted",
            step=open_steps[0].id,
            reason=type(exc).__name__,
        )
        self._fail(open_steps[0], message)

    async def _run_upload_step(self, record_id: int) -> None:
        step = self._step(UPLOAD_STEP)
        step.mark_started()
        self._publish()

        if self.queue.pending_entries:
            batch = await self.queue.upload_all_pending(owner_record_id=record_id)
            if batch.is_total_failure and batch.failed_ids:
                LOGGER.error("No image could be uploaded", failed=batch.failed_ids)
                self._fail(step, UPLOAD_FAILED_MESSAGE)
                raise UploadStepError(batch, UPLOAD_FAILED_MESSAGE)
            if batch.is_partial:
                LOGGER.warning(
                    "Some images failed to upload, continuing",
                    uploaded=len(batch.uploaded_urls),
                    failed=batch.failed_ids,
                )

        step.mark_completed()
        self._publish()

    def _resolve_thumbnail(self, thumbnail_choice: Optional[str]) -> Optional[AttachmentEntry]:
        if thumbnail_choice is not None:
            chosen = self.queue.get(thumbnail_choice)
            if chosen is not None:
                return chosen
            LOGGER.warning("Chosen cover image is gone, using first image", entry_id=thumbnail_choice)
        return self.queue.first_entry

    async def _run_thumbnail_step(
        self,
        editing: bool,
        thumbnail_choice: Optional[str],
        previous_server_id: Optional[int],
    ) -> Optional[AttachmentEntry]:
        step = self._step(THUMBNAIL_STEP)
        step.mark_started()
        self._publish()

        target = self._resolve_thumbnail(thumbnail_choice)
        if (
            editing
            and target is not None
            and target.server_id is not None
            and target.server_id != previous_server_id
        ):
            try:
                await self._backend.set_thumbnail(target.server_id)
                LOGGER.info("Cover image updated", entry_id=target.id, server_id=target.server_id)
            except Exception as exc:
                error = ThumbnailAssignmentError(target.server_id, exc)
                LOGGER.error(
                    "Thumbnail assignment failed",
                    entry_id=target.id,
                    server_id=error.server_id,
                    error=str(exc),
                )

        step.mark_completed()
        self._publish()
        return target

    async def _run_persist_step(self, record: Any, persist_fn: PersistFn) -> Any:
        step = self._step(PERSIST_STEP)
        step.mark_started()
        self._publish()

        attempts = 0
        try:
            async for attempt in persist_retrying(self.settings, self._sleep):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    saved = await persist_fn(record)
        except Exception as exc:
            message = _persist_error_message(exc)
            LOGGER.error("Saving property failed", attempts=attempts, error=str(exc))
            self._fail(step, message)
            raise

        step.mark_completed()
        self._publish()
        LOGGER.debug("Property saved", attempts=attempts)
        return saved


__all__ = ["SubmissionCoordinator", "PersistFn", "STEP_LABELS"]
