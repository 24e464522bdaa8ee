"""Property API client backing the upload queue and the submission coordinator."""

from __future__ import annotations

import io
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel

from .config import Settings, get_settings
from .errors import ApiError
from .logging import get_logger
from .schemas import ApiResponse, PropertyImage
from .types import LocalFile, ProgressCallback, UploadedAttachment

LOGGER = get_logger(__name__)

RequestSigner = Callable[[httpx.Request], None]

API_PREFIX = "/api/v1"


def bearer_signer(token_provider: Callable[[], Optional[str]]) -> RequestSigner:
    """Sign requests with whatever access token the provider currently holds."""

    def sign(request: httpx.Request) -> None:
        token = token_provider()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

    return sign


class _ProgressStream(httpx.AsyncByteStream):
    """Wraps a request body and reports bytes handed to the transport."""

    def __init__(
        self,
        stream: httpx.AsyncByteStream,
        total: Optional[int],
        on_progress: ProgressCallback,
    ) -> None:
        self._stream = stream
        self._total = total
        self._on_progress = on_progress

    async def __aiter__(self) -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in self._stream:
            sent += len(chunk)
            yield chunk
            self._on_progress(sent, self._total)

    async def aclose(self) -> None:
        await self._stream.aclose()


def _to_json(record: Any) -> Any:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", by_alias=True, exclude_none=True)
    return record


class PropertyApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        signer: Optional[RequestSigner] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.request_timeout
        self._signer = signer
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"User-Agent": "villa-media/1.0"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "PropertyApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        on_progress: Optional[ProgressCallback] = None,
        **kwargs: Any,
    ) -> ApiResponse:
        client = await self._get_client()
        request = client.build_request(method, path, **kwargs)
        if self._signer is not None:
            self._signer(request)
        if on_progress is not None:
            total = int(request.headers.get("Content-Length", 0)) or None
            request.stream = _ProgressStream(request.stream, total, on_progress)

        response = await client.send(request)
        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> ApiResponse:
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            LOGGER.warning(
                "Property API error",
                status=response.status_code,
                url=str(response.request.url),
                message=message,
            )
            raise ApiError(response.status_code, message, body)

        if isinstance(body, dict):
            return ApiResponse.model_validate(body)
        return ApiResponse(status=response.status_code, data=body)

    # Images

    async def upload_image(
        self,
        file: LocalFile,
        property_id: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadedAttachment:
        path = (
            f"{API_PREFIX}/properties/{property_id}/images"
            if property_id is not None
            else f"{API_PREFIX}/images/upload"
        )
        files = {"file": (file.filename, io.BytesIO(file.data), file.content_type)}
        envelope = await self._request("POST", path, on_progress=on_progress, files=files)
        data = envelope.data
        if isinstance(data, str):
            return UploadedAttachment(url=data)
        if isinstance(data, dict):
            image = PropertyImage.model_validate(data)
            return UploadedAttachment(url=image.image_url, server_id=image.id)
        raise ApiError(envelope.status or 200, "Upload response did not contain an image URL", data)

    async def delete_image(self, property_id: int, image_id: int) -> None:
        await self._request("DELETE", f"{API_PREFIX}/properties/{property_id}/images/{image_id}")

    async def set_thumbnail(self, property_id: int, image_id: int) -> None:
        await self._request(
            "PUT", f"{API_PREFIX}/properties/{property_id}/images/{image_id}/thumbnail"
        )

    # Properties

    async def create_property(self, record: Any) -> Any:
        envelope = await self._request("POST", f"{API_PREFIX}/properties", json=_to_json(record))
        return envelope.data

    async def update_property(self, property_id: int, record: Any) -> Any:
        envelope = await self._request(
            "PUT", f"{API_PREFIX}/properties/{property_id}", json=_to_json(record)
        )
        return envelope.data

    async def patch_property(self, property_id: int, changes: Dict[str, Any]) -> Any:
        envelope = await self._request(
            "PATCH", f"{API_PREFIX}/properties/{property_id}", json=_to_json(changes)
        )
        return envelope.data

    def persist_fn(self, property_id: Optional[int] = None) -> Callable[[Any], Awaitable[Any]]:
        """Create-or-update callable for SubmissionCoordinator.submit."""

        async def persist(record: Any) -> Any:
            if property_id is None:
                return await self.create_property(record)
            return await self.update_property(property_id, record)

        return persist


class PropertyMediaBackend:
    """AttachmentBackend bound to one listing of the property API."""

    def __init__(self, client: PropertyApiClient, property_id: Optional[int] = None) -> None:
        self._client = client
        self.property_id = property_id

    def _require_property(self) -> int:
        if self.property_id is None:
            raise RuntimeError("This operation needs an existing property")
        return self.property_id

    async def upload_attachment(
        self,
        file: LocalFile,
        owner_record_id: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadedAttachment:
        owner = owner_record_id if owner_record_id is not None else self.property_id
        return await self._client.upload_image(file, owner, on_progress)

    async def delete_attachment(self, server_id: int) -> None:
        await self._client.delete_image(self._require_property(), server_id)

    async def set_thumbnail(self, server_id: int) -> None:
        await self._client.set_thumbnail(self._require_property(), server_id)


__all__ = [
    "PropertyApiClient",
    "PropertyMediaBackend",
    "RequestSigner",
    "bearer_signer",
]
