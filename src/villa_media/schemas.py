"""Pydantic models for the property API envelope and image payloads."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    """Base model accepting both camelCase wire names and snake_case fields."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, extra="ignore")


class ApiResponse(ApiModel):
    """Envelope wrapped around every property API response."""

    status: Optional[int] = None
    message: Optional[str] = None
    data: Any = None
    errors: Any = None
    timestamp: Any = None  # ISO string or date array depending on the server serializer


class PropertyImage(ApiModel):
    id: Optional[int] = None
    image_url: str = Field(alias="imageUrl")
    is_thumbnail: bool = Field(default=False, alias="isThumbnail")


class PropertyGallery(ApiModel):
    """Images of a stored listing, ready to hydrate an upload queue."""

    urls: List[str] = Field(default_factory=list)
    server_ids: List[Optional[int]] = Field(default_factory=list)
    thumbnail_server_id: Optional[int] = None

    @property
    def thumbnail_entry_id(self) -> Optional[str]:
        if self.thumbnail_server_id is None:
            return None
        return f"backend-{self.thumbnail_server_id}"

    @classmethod
    def from_images(cls, images: Sequence[Any]) -> "PropertyGallery":
        """Accept plain URL strings or image objects as the API returns them."""
        gallery = cls()
        for item in images:
            if isinstance(item, str):
                gallery.urls.append(item)
                gallery.server_ids.append(None)
                continue
            if isinstance(item, dict) and not (item.get("imageUrl") or item.get("image_url")):
                continue
            image = PropertyImage.model_validate(item)
            gallery.urls.append(image.image_url)
            gallery.server_ids.append(image.id)
            if image.is_thumbnail and image.id is not None and gallery.thumbnail_server_id is None:
                gallery.thumbnail_server_id = image.id
        return gallery


__all__ = ["ApiModel", "ApiResponse", "PropertyImage", "PropertyGallery"]
