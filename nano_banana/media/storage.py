"""Object store collaborators for reference uploads and input downloads."""

from __future__ import annotations

from functools import lru_cache
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from nano_banana.core.config import get_settings
from nano_banana.core.errors import MissingConfiguration, ObjectStoreError
from nano_banana.media.auth import get_access_token


GCS_UPLOAD_URL = "https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o"
GCS_OBJECT_URL = "https://storage.googleapis.com/storage/v1/b/{bucket}/o/{name}"

TokenSource = Callable[[], Awaitable[str]]


class ObjectStore(Protocol):
    store_name: str

    async def put(self, bucket: str, object_name: str, mime_type: str, content: bytes) -> None:
        raise NotImplementedError

    async def get(self, bucket: str, object_name: str) -> bytes:
        raise NotImplementedError


def split_gcs_uri(uri: str) -> Tuple[str, str]:
    text = uri.strip()
    if not text.startswith("gs://"):
        raise MissingConfiguration(f"Not a gs:// URI: {uri}")
    bucket, _, name = text[len("gs://"):].partition("/")
    if not bucket or not name:
        raise MissingConfiguration(f"GCS URI must include bucket and object: {uri}")
    return bucket, name


def gcs_uri(bucket: str, object_name: str) -> str:
    return f"gs://{bucket}/{object_name}"


class GcsObjectStore(ObjectStore):
    store_name = "gcs"

    def __init__(
        self,
        *,
        timeout_seconds: int = 60,
        token_source: TokenSource = get_access_token,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout_seconds = max(1, timeout_seconds)
        self._token_source = token_source
        self._client = client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        token = await self._token_source()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise ObjectStoreError(f"GCS request failed: {exc}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise ObjectStoreError(f"GCS request failed status={response.status_code} detail={detail}")
        return response

    async def put(self, bucket: str, object_name: str, mime_type: str, content: bytes) -> None:
        await self._request(
            "POST",
            GCS_UPLOAD_URL.format(bucket=bucket),
            params={"uploadType": "media", "name": object_name},
            content=content,
            headers={"Content-Type": mime_type},
        )

    async def get(self, bucket: str, object_name: str) -> bytes:
        response = await self._request(
            "GET",
            GCS_OBJECT_URL.format(bucket=bucket, name=quote(object_name, safe="")),
            params={"alt": "media"},
        )
        return response.content


class MemoryObjectStore(ObjectStore):
    store_name = "memory"

    def __init__(self) -> None:
        self._objects: Dict[Tuple[str, str], Tuple[str, bytes]] = {}

    async def put(self, bucket: str, object_name: str, mime_type: str, content: bytes) -> None:
        self._objects[(bucket, object_name)] = (mime_type, bytes(content))

    async def get(self, bucket: str, object_name: str) -> bytes:
        try:
            return self._objects[(bucket, object_name)][1]
        except KeyError:
            raise ObjectStoreError(f"Object not found: {gcs_uri(bucket, object_name)}") from None

    def __len__(self) -> int:
        return len(self._objects)

    def mime_type(self, bucket: str, object_name: str) -> Optional[str]:
        entry = self._objects.get((bucket, object_name))
        return entry[0] if entry else None


@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
    settings = get_settings()
    if settings.object_store.strip().lower() == "memory":
        return MemoryObjectStore()
    return GcsObjectStore(timeout_seconds=settings.gcs_timeout_seconds)


def reset_object_store_cache() -> None:
    get_object_store.cache_clear()
