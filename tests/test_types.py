"""
Tests for core data types, the preview registry and the API schemas.
"""

import pytest

from villa_media.errors import ApiError
from villa_media.previews import PreviewRegistry, is_blob_url
from villa_media.schemas import ApiResponse, PropertyGallery, PropertyImage
from villa_media.types import (
    AttachmentEntry,
    AttachmentState,
    LocalFile,
    StepStatus,
    SubmissionStep,
    UploadBatchResult,
)

from .conftest import make_file


class TestLocalFile:
    """Tests for LocalFile."""

    def test_size(self):
        assert make_file(size=1500).size == 1500

    def test_from_path_guesses_type(self, tmp_path):
        path = tmp_path / "sunset.png"
        path.write_bytes(b"\x89PNG....")

        file = LocalFile.from_path(path)

        assert file.filename == "sunset.png"
        assert file.content_type == "image/png"
        assert file.data == b"\x89PNG...."

    def test_from_path_unknown_extension(self, tmp_path):
        path = tmp_path / "notes.unknownext"
        path.write_bytes(b"x")

        assert LocalFile.from_path(path).content_type == "application/octet-stream"


class TestAttachmentEntry:
    """Tests for AttachmentEntry state and invariants."""

    def test_requires_payload_or_upload(self):
        with pytest.raises(ValueError):
            AttachmentEntry(id="local-1", display_url="blob:x", order=0)

    def test_states(self):
        entry = AttachmentEntry(id="local-1", display_url="blob:x", order=0, source=make_file())
        assert entry.state == AttachmentState.PENDING
        assert entry.is_pending is True

        entry.uploading = True
        assert entry.state == AttachmentState.UPLOADING

        entry.uploading = False
        entry.upload_error = "Upload failed"
        assert entry.state == AttachmentState.FAILED

        entry.is_uploaded = True
        assert entry.state == AttachmentState.UPLOADED
        assert entry.is_pending is False

    def test_to_dict(self):
        entry = AttachmentEntry(
            id="backend-3", display_url="https://cdn/a.jpg", order=2, is_uploaded=True, server_id=3
        )

        data = entry.to_dict()

        assert data["id"] == "backend-3"
        assert data["state"] == "uploaded"
        assert data["order"] == 2
        assert data["filename"] is None


class TestResults:
    """Tests for UploadBatchResult and SubmissionStep."""

    def test_batch_outcomes(self):
        assert UploadBatchResult(success=True).is_partial is False
        partial = UploadBatchResult(success=False, uploaded_urls=["a"], failed_ids=["local-2"])
        assert partial.is_partial is True
        assert partial.is_total_failure is False
        total = UploadBatchResult(success=False, failed_ids=["local-1"])
        assert total.is_total_failure is True

    def test_step_transitions(self):
        step = SubmissionStep(id="persist", label="Saving property details")
        assert step.status == StepStatus.PENDING

        step.mark_started()
        assert step.status == StepStatus.IN_PROGRESS
        assert step.started_at is not None

        step.mark_failed("Server error")
        assert step.status == StepStatus.ERROR
        assert step.to_dict() == {
            "id": "persist",
            "label": "Saving property details",
            "status": "error",
            "error": "Server error",
        }


class TestPreviewRegistry:
    """Tests for blob: preview URL bookkeeping."""

    def test_create_and_resolve(self):
        registry = PreviewRegistry()
        file = make_file()

        url = registry.create(file)

        assert is_blob_url(url)
        assert url in registry
        assert registry.resolve(url) is file
        assert registry.live_count == 1

    def test_each_url_is_unique(self):
        registry = PreviewRegistry()
        file = make_file()

        assert registry.create(file) != registry.create(file)

    def test_revoke_exactly_once(self):
        registry = PreviewRegistry()
        url = registry.create(make_file())

        assert registry.revoke(url) is True
        assert registry.revoke(url) is False
        assert registry.resolve(url) is None
        assert registry.live_count == 0

    def test_server_urls_are_not_blobs(self):
        assert is_blob_url("https://cdn/a.jpg") is False


class TestSchemas:
    """Tests for API payload models."""

    def test_envelope_ignores_unknown_fields(self):
        response = ApiResponse.model_validate(
            {"status": 200, "message": "OK", "data": {"id": 1}, "timestamp": [2024, 5, 1], "trace": "x"}
        )

        assert response.data == {"id": 1}

    def test_image_aliases(self):
        image = PropertyImage.model_validate(
            {"id": 4, "imageUrl": "https://cdn/a.jpg", "isThumbnail": True}
        )

        assert image.image_url == "https://cdn/a.jpg"
        assert image.is_thumbnail is True

    def test_gallery_from_image_objects(self):
        gallery = PropertyGallery.from_images(
            [
                {"id": 10, "imageUrl": "https://cdn/a.jpg"},
                {"id": 11, "imageUrl": "https://cdn/b.jpg", "isThumbnail": True},
                {"id": 12},
            ]
        )

        assert gallery.urls == ["https://cdn/a.jpg", "https://cdn/b.jpg"]
        assert gallery.server_ids == [10, 11]
        assert gallery.thumbnail_server_id == 11
        assert gallery.thumbnail_entry_id == "backend-11"

    def test_gallery_from_plain_urls(self):
        gallery = PropertyGallery.from_images(["https://cdn/a.jpg", "https://cdn/b.jpg"])

        assert gallery.server_ids == [None, None]
        assert gallery.thumbnail_entry_id is None

    def test_gallery_hydrates_queue(self, queue):
        gallery = PropertyGallery.from_images(
            [{"id": 10, "imageUrl": "https://cdn/a.jpg"}, "https://cdn/b.jpg"]
        )

        entries = queue.hydrate_existing(gallery.urls, gallery.server_ids)

        assert [entry.id for entry in entries] == ["backend-10", "existing-1"]


class TestApiError:
    """Tests for user-facing error messages."""

    @pytest.mark.parametrize(
        "status_code,message,expected",
        [
            (401, "JWT expired", "Your session has expired. Please sign in again."),
            (403, None, "You do not have permission to perform this action."),
            (409, "Property code already exists", "Property code already exists"),
            (422, None, "Invalid data."),
            (503, None, "Service under maintenance. Please try again later."),
            (418, "Teapot", "Teapot"),
            (418, None, "Something went wrong. Please try again."),
        ],
    )
    def test_user_message(self, status_code, message, expected):
        assert ApiError(status_code, message).user_message == expected
