"""
Upload queue for the image gallery of one property listing.

Owns the ordered collection of attachment entries and drives their
upload to the property API:
- Per-file validation and an all-or-nothing capacity guard on add
- Server-first removal for attachments the backend already holds
- Reordering with contiguous ``order`` renumbering
- Concurrent flush of pending uploads with bounded automatic retries

Usage:
    queue = UploadQueue(backend, max_items=5, on_error=show_error)
    queue.add_files([LocalFile.from_path("pool.jpg")])
    result = await queue.upload_all_pending()
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence

from tenacity import RetryCallState

from .config import Settings, get_settings
from .errors import (
    ApiError,
    AttachmentDeleteError,
    AttachmentValidationError,
    CapacityError,
    MediaPipelineError,
    UploadError,
)
from .logging import get_logger
from .previews import PreviewRegistry, is_blob_url
from .retry import upload_retrying
from .types import (
    AttachmentBackend,
    AttachmentEntry,
    LocalFile,
    UploadBatchResult,
    UploadedAttachment,
)

LOGGER = get_logger(__name__)

ErrorCallback = Callable[[MediaPipelineError], None]

DEFAULT_UPLOAD_ERROR = "Upload failed"


class UploadQueue:
    """
    Ordered attachment collection with upload, retry and reorder support.

    All mutations are synchronous except removal of server-backed entries,
    which waits for the delete call before touching local state. Entries
    handed out by the accessors are copies; only the queue mutates its own.
    """

    def __init__(
        self,
        backend: AttachmentBackend,
        *,
        max_items: Optional[int] = None,
        max_file_size: Optional[int] = None,
        allowed_types: Optional[Iterable[str]] = None,
        max_upload_attempts: Optional[int] = None,
        max_concurrent_uploads: Optional[int] = None,
        previews: Optional[PreviewRegistry] = None,
        on_error: Optional[ErrorCallback] = None,
        on_upload_complete: Optional[Callable[[str], None]] = None,
        owner_record_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the queue.

        Args:
            backend: Upload/delete collaborators
            max_items: Capacity of the gallery (settings.max_images if None)
            max_file_size: Per-file byte ceiling (settings.max_file_size_mb if None)
            allowed_types: Accepted MIME types
            max_upload_attempts: Automatic attempts per upload, first one included
            max_concurrent_uploads: Fan-out cap for upload_all_pending, 0 = unbounded
            previews: Shared preview URL registry
            on_error: Receives validation, capacity, delete and upload errors
            on_upload_complete: Called with the server URL of each finished upload
            owner_record_id: Property the uploads belong to, if it exists already
        """
        settings = settings or get_settings()
        self._backend = backend
        self.max_items = max_items if max_items is not None else settings.max_images
        self.max_file_size = (
            max_file_size if max_file_size is not None else settings.max_file_size_bytes
        )
        self.allowed_types = frozenset(allowed_types or settings.allowed_content_types)
        self.max_upload_attempts = (
            max_upload_attempts if max_upload_attempts is not None else settings.upload_max_attempts
        )
        concurrency = (
            max_concurrent_uploads
            if max_concurrent_uploads is not None
            else settings.max_concurrent_uploads
        )
        self._upload_slots = asyncio.Semaphore(concurrency) if concurrency > 0 else None
        self.previews = previews or PreviewRegistry()
        self.owner_record_id = owner_record_id
        self._on_error = on_error
        self._on_upload_complete = on_upload_complete

        self._entries: List[AttachmentEntry] = []
        self._local_ids = itertools.count(1)
        self._in_flight: Dict[str, "asyncio.Future[Optional[str]]"] = {}
        self._active_batches = 0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def backend(self) -> AttachmentBackend:
        return self._backend

    @property
    def entries(self) -> List[AttachmentEntry]:
        """Snapshot of the queue in display order."""
        return [replace(entry) for entry in self._entries]

    def get(self, entry_id: str) -> Optional[AttachmentEntry]:
        entry = self._find(entry_id)
        return replace(entry) if entry else None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_entries(self) -> List[AttachmentEntry]:
        return [replace(entry) for entry in self._entries if entry.is_pending]

    @property
    def has_pending(self) -> bool:
        return any(not entry.is_uploaded for entry in self._entries)

    @property
    def first_entry(self) -> Optional[AttachmentEntry]:
        return replace(self._entries[0]) if self._entries else None

    @property
    def is_uploading(self) -> bool:
        return self._active_batches > 0 or bool(self._in_flight)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_files(self, files: Iterable[LocalFile]) -> List[AttachmentEntry]:
        """
        Validate and append new local images.

        Invalid files are reported one by one and skipped. If the remaining
        files do not fit, the whole batch is rejected and nothing is added.

        Returns:
            Copies of the entries that were added
        """
        valid: List[LocalFile] = []
        for file in files:
            error = self._validate(file)
            if error is not None:
                self._report(error)
                continue
            valid.append(file)

        requested = len(self._entries) + len(valid)
        if requested > self.max_items:
            self._report(CapacityError(self.max_items, requested))
            return []

        start = len(self._entries)
        added = []
        for index, file in enumerate(valid):
            entry = AttachmentEntry(
                id=f"local-{next(self._local_ids)}",
                display_url=self.previews.create(file),
                order=start + index,
                source=file,
            )
            self._entries.append(entry)
            added.append(replace(entry))

        if added:
            LOGGER.info("Added images", count=len(added), total=len(self._entries))
        return added

    def _validate(self, file: LocalFile) -> Optional[AttachmentValidationError]:
        if file.content_type not in self.allowed_types:
            return AttachmentValidationError(
                file.filename, "Only image files are accepted (JPEG, PNG, WebP)"
            )
        if file.size > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            return AttachmentValidationError(
                file.filename, f"File size must not exceed {limit_mb:g}MB"
            )
        return None

    async def remove_entry(self, entry_id: str) -> bool:
        """
        Remove an entry, deleting it server-side first when it has a server id.

        Returns:
            True if the entry was removed, False if it was unknown or the
            server refused the delete (local state is left untouched)
        """
        entry = self._find(entry_id)
        if entry is None:
            LOGGER.warning("Cannot remove unknown image", entry_id=entry_id)
            return False

        if entry.server_id is not None:
            try:
                await self._backend.delete_attachment(entry.server_id)
            except Exception as exc:
                LOGGER.error(
                    "Server delete failed, keeping image",
                    entry_id=entry_id,
                    server_id=entry.server_id,
                    error=str(exc),
                )
                self._report(AttachmentDeleteError(entry_id, entry.server_id, exc))
                return False

        # The entry may have been dropped by clear() while the delete was in flight
        if self._find(entry_id) is entry:
            self._entries = [e for e in self._entries if e is not entry]
            self._release_preview(entry)
            self._renumber()
        LOGGER.info("Removed image", entry_id=entry_id, total=len(self._entries))
        return True

    def reorder(self, from_index: int, to_index: int) -> None:
        count = len(self._entries)
        if not (0 <= from_index < count and 0 <= to_index < count):
            raise IndexError(f"Cannot move {from_index} -> {to_index} in a queue of {count}")
        entry = self._entries.pop(from_index)
        self._entries.insert(to_index, entry)
        self._renumber()

    def clear(self) -> None:
        for entry in self._entries:
            self._release_preview(entry)
        self._entries = []

    def hydrate_existing(
        self,
        urls: Sequence[str],
        server_ids: Optional[Sequence[Optional[int]]] = None,
    ) -> List[AttachmentEntry]:
        """
        Replace the queue with images already stored on the server.

        Ids derive from the server id when one is known so that identity
        survives reloads where the API returns images in a different order.
        """
        server_ids = list(server_ids or [])
        entries = []
        seen = set()
        for index, url in enumerate(urls):
            server_id = server_ids[index] if index < len(server_ids) else None
            entry_id = f"backend-{server_id}" if server_id is not None else f"existing-{index}"
            if entry_id in seen:
                raise ValueError(f"Duplicate server image id {server_id}")
            seen.add(entry_id)
            entries.append(
                AttachmentEntry(
                    id=entry_id,
                    display_url=url,
                    order=index,
                    is_uploaded=True,
                    server_id=server_id,
                )
            )

        self.clear()
        self._entries = entries
        LOGGER.debug("Hydrated existing images", count=len(entries))
        return self.entries

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def upload_one(
        self, entry_id: str, owner_record_id: Optional[int] = None
    ) -> Optional[str]:
        """
        Upload one local entry, retrying automatically on failure.

        A second call for an entry that is already uploading joins the
        running attempt instead of starting another request.

        Returns:
            The server URL, or None once every automatic attempt failed
        """
        running = self._in_flight.get(entry_id)
        if running is not None and not running.done():
            return await asyncio.shield(running)

        entry = self._find(entry_id)
        if entry is None:
            raise KeyError(entry_id)
        if entry.source is None:
            raise ValueError(f"Entry {entry_id} has no local payload to upload")

        owner = owner_record_id if owner_record_id is not None else self.owner_record_id
        task = asyncio.ensure_future(self._upload_with_retries(entry, entry.source, owner))
        self._in_flight[entry_id] = task

        def _forget(done: "asyncio.Future[Optional[str]]") -> None:
            if self._in_flight.get(entry_id) is done:
                del self._in_flight[entry_id]

        task.add_done_callback(_forget)
        return await asyncio.shield(task)

    async def retry_upload(
        self, entry_id: str, owner_record_id: Optional[int] = None
    ) -> Optional[str]:
        """User-invoked retry of an entry whose automatic attempts ran out."""
        entry = self._find(entry_id)
        if entry is None or entry.source is None:
            return None
        LOGGER.info("Retrying upload", entry_id=entry_id)
        return await self.upload_one(entry_id, owner_record_id)

    async def upload_all_pending(
        self, owner_record_id: Optional[int] = None
    ) -> UploadBatchResult:
        """
        Upload every entry that still has a local payload, concurrently.

        Per-entry failures never raise out of here; the result tells the
        caller which URLs made it and which entries are still failing.
        """
        pending = [entry for entry in self._entries if entry.is_pending]
        if not pending:
            return UploadBatchResult(success=True)

        LOGGER.info("Uploading pending images", count=len(pending))
        self._active_batches += 1
        try:
            results = await asyncio.gather(
                *[self.upload_one(entry.id, owner_record_id) for entry in pending],
                return_exceptions=True,
            )
        finally:
            self._active_batches -= 1

        uploaded_urls: List[str] = []
        for entry, result in zip(pending, results):
            if isinstance(result, BaseException):
                LOGGER.error("Upload crashed", entry_id=entry.id, error=str(result))
            elif result is not None:
                uploaded_urls.append(result)

        still_queued = [entry for entry in pending if self._find(entry.id) is entry]
        failed_ids = [entry.id for entry in still_queued if not entry.is_uploaded]
        batch = UploadBatchResult(
            success=not failed_ids,
            uploaded_urls=uploaded_urls,
            failed_ids=failed_ids,
        )
        LOGGER.info(
            "Upload batch finished",
            uploaded=len(uploaded_urls),
            failed=len(failed_ids),
        )
        return batch

    @asynccontextmanager
    async def _upload_slot(self) -> AsyncIterator[None]:
        if self._upload_slots is None:
            yield
            return
        async with self._upload_slots:
            yield

    async def _upload_with_retries(
        self,
        entry: AttachmentEntry,
        payload: LocalFile,
        owner_record_id: Optional[int],
    ) -> Optional[str]:
        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            LOGGER.warning(
                "Upload attempt failed, retrying",
                entry_id=entry.id,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_upload_attempts,
                error=str(exc),
            )

        attempts = 0
        async with self._upload_slot():
            entry.uploading = True
            try:
                async for attempt in upload_retrying(self.max_upload_attempts, _log_retry):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        uploaded = await self._send(entry, payload, owner_record_id)
            except Exception as exc:
                self._mark_failed(entry, _upload_error_message(exc), attempts)
                return None
            finally:
                entry.uploading = False

        if self._find(entry.id) is not entry:
            LOGGER.info("Image removed during upload, discarding result", entry_id=entry.id)
            if uploaded.server_id is not None:
                await self._delete_orphan(entry.id, uploaded.server_id)
            return None

        preview_url = entry.display_url
        entry.display_url = uploaded.url
        if uploaded.server_id is not None:
            entry.server_id = uploaded.server_id
        entry.is_uploaded = True
        entry.upload_progress = 100
        entry.upload_error = None
        entry.source = None
        if is_blob_url(preview_url) and preview_url in self.previews:
            self.previews.revoke(preview_url)

        LOGGER.info("Image uploaded", entry_id=entry.id, attempts=attempts, url=uploaded.url)
        if self._on_upload_complete:
            self._on_upload_complete(uploaded.url)
        return uploaded.url

    async def _send(
        self,
        entry: AttachmentEntry,
        payload: LocalFile,
        owner_record_id: Optional[int],
    ) -> UploadedAttachment:
        entry.upload_progress = 0
        entry.upload_error = None

        def _on_progress(sent: int, total: Optional[int]) -> None:
            if total:
                entry.upload_progress = min(100, round(sent * 100 / total))

        return await self._backend.upload_attachment(payload, owner_record_id, _on_progress)

    async def _delete_orphan(self, entry_id: str, server_id: int) -> None:
        """Delete a server copy whose entry was removed while it was uploading."""
        try:
            await self._backend.delete_attachment(server_id)
        except Exception as exc:
            LOGGER.warning(
                "Could not delete orphaned upload",
                entry_id=entry_id,
                server_id=server_id,
                error=str(exc),
            )
            return
        LOGGER.info("Deleted orphaned upload", entry_id=entry_id, server_id=server_id)

    def _mark_failed(self, entry: AttachmentEntry, message: str, attempts: int) -> None:
        entry.upload_progress = 0
        entry.upload_error = message
        entry.is_uploaded = False
        LOGGER.error("Upload failed", entry_id=entry.id, attempts=attempts, error=message)
        if self._find(entry.id) is entry:
            self._report(UploadError(entry.id, message, attempts))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find(self, entry_id: str) -> Optional[AttachmentEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def _renumber(self) -> None:
        for index, entry in enumerate(self._entries):
            entry.order = index

    def _release_preview(self, entry: AttachmentEntry) -> None:
        if is_blob_url(entry.display_url) and entry.display_url in self.previews:
            self.previews.revoke(entry.display_url)

    def _report(self, error: MediaPipelineError) -> None:
        if self._on_error is not None:
            self._on_error(error)
        else:
            LOGGER.warning("Upload queue error", error=str(error), kind=type(error).__name__)


def _upload_error_message(exc: BaseException) -> str:
    if isinstance(exc, ApiError) and exc.message:
        return exc.message
    return DEFAULT_UPLOAD_ERROR


__all__ = ["UploadQueue", "ErrorCallback"]
