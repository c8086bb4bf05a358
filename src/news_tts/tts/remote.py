"""
Remote Object Storage Upload.

Uploads clips to a Google Cloud Storage bucket through the JSON API
(simple media upload) with a bearer token:

    POST {base_url}/upload/storage/v1/b/{bucket}/o?uploadType=media&name={key}

Remote storage is optional. When disabled or missing a bucket, upload()
logs once and returns None. That is not an error.

HTTP failures map to StorageTransient (5xx, 429, network) or StorageFatal
(other 4xx), so the storage resilience policy can retry the transient ones.
"""
from __future__ import annotations

from typing import Optional

import httpx

from news_tts.core.config import RemoteStorageConfig
from news_tts.core.errors import StorageFatal, StorageTransient
from news_tts.core.logging import get_logger, info, verbose
from news_tts.tts.buffer import SharedAudioBuffer

_LOG = get_logger("news-tts.remote")


class RemoteStorage:

    def __init__(self, config: RemoteStorageConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._skip_logged = False

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.config.bucket)

    def object_key(self, filename: str) -> str:
        prefix = self.config.prefix
        return f"{prefix}/{filename}" if prefix else filename

    def public_path(self, key: str) -> str:
        return f"gs://{self.config.bucket}/{key}"

    async def upload(self, key: str, content_type: str, payload: SharedAudioBuffer) -> Optional[str]:
        """
        Upload payload under key.

        Returns:
            gs:// path of the object, or None when remote storage is disabled.
        """
        if not self.enabled:
            if not self._skip_logged:
                self._skip_logged = True
                info(_LOG, "remote_storage_disabled", detail="uploads skipped")
            return None

        client = self._get_client()
        url = f"{self.config.base_url}/upload/storage/v1/b/{self.config.bucket}/o"
        headers = {"Content-Type": content_type}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"

        try:
            async with payload.lease():
                response = await client.post(
                    url,
                    params={"uploadType": "media", "name": key},
                    content=payload.data,
                    headers=headers,
                )
        except httpx.TransportError as exc:
            raise StorageTransient(f"remote upload failed: {exc}", details={"key": key}) from exc

        status = response.status_code
        if status >= 500 or status == 429:
            raise StorageTransient(f"remote upload returned {status}", details={"key": key, "status": status})
        if status >= 400:
            raise StorageFatal(f"remote upload rejected with {status}", details={"key": key, "status": status})

        path = self.public_path(key)
        verbose(_LOG, "uploaded", path=path, bytes=payload.size)
        return path

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
