"""Registry of ``blob:`` preview URLs backed by local payloads.

Stands in for the browser object-URL store: every preview holds the file
bytes in memory until it is revoked, so each URL must be released exactly
once over the life of an editing session.
"""

from __future__ import annotations

import uuid
from typing import Dict, Optional

from .logging import get_logger
from .types import LocalFile

LOGGER = get_logger(__name__)

BLOB_SCHEME = "blob:"


def is_blob_url(url: str) -> bool:
    return url.startswith(BLOB_SCHEME)


class PreviewRegistry:
    def __init__(self) -> None:
        self._live: Dict[str, LocalFile] = {}

    def create(self, payload: LocalFile) -> str:
        url = f"{BLOB_SCHEME}{uuid.uuid4()}"
        self._live[url] = payload
        return url

    def resolve(self, url: str) -> Optional[LocalFile]:
        return self._live.get(url)

    def revoke(self, url: str) -> bool:
        """Release a preview. Returns False for unknown or already released URLs."""
        if self._live.pop(url, None) is None:
            LOGGER.warning("Preview URL was not live", url=url)
            return False
        return True

    @property
    def live_count(self) -> int:
        return len(self._live)

    def __contains__(self, url: object) -> bool:
        return url in self._live


__all__ = ["PreviewRegistry", "is_blob_url", "BLOB_SCHEME"]
