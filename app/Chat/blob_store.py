from __future__ import annotations

import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.core.errors import StorageUnavailable
from app.Chat.message_log import format_size_label


logger = logging.getLogger(__name__)


class BlobStoreClient:
    """Relays attachment bytes to the external blob store.

    The store answers ``{"url": ...}``; only that reference is kept by the
    chat core.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def upload(self, *, file_name: str, content: bytes, content_type: str) -> dict:
        if not self.base_url:
            raise StorageUnavailable("blob store is not configured", code="BLOB_STORE_UNAVAILABLE")
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                r = await client.post(
                    self.base_url,
                    content=content,
                    params={"fileName": file_name},
                    headers={"Content-Type": content_type},
                )
            r.raise_for_status()
            url = r.json()["url"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.error("[BLOB] upload failed file=%s: %s", file_name, exc)
            raise StorageUnavailable("attachment upload failed", code="BLOB_STORE_UNAVAILABLE") from exc
        return {"url": url, "fileName": file_name, "sizeLabel": format_size_label(len(content))}


def get_blob_store() -> BlobStoreClient:
    return BlobStoreClient(settings.blob_store_url, timeout=settings.blob_store_timeout_s)
