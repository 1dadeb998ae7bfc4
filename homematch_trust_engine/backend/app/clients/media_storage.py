from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import settings
from .base import MediaStorage

log = logging.getLogger(__name__)


class HttpMediaStorage(MediaStorage):
    """
    Blob storage behind a plain HTTP gateway (S3/GCS-compatible presign proxy).

      PUT    {base}/{path}   -> stores bytes
      GET    {url}           -> bytes
      DELETE {url}
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None) -> None:
        self.base = (base_url or settings.storage_base_url).rstrip("/")
        self.token = token if token is not None else settings.storage_token
        self.timeout = float(settings.storage_timeout_seconds)

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def store(self, data: bytes, *, path: str, content_type: str) -> str:
        url = f"{self.base}/{path.lstrip('/')}"
        headers = {**self._headers(), "Content-Type": content_type}
        with httpx.Client(timeout=self.timeout) as client:
            r = client.put(url, content=data, headers=headers)
            r.raise_for_status()
        return url

    def fetch(self, url: str) -> bytes:
        with httpx.Client(timeout=self.timeout) as client:
            r = client.get(url, headers=self._headers())
            r.raise_for_status()
            return r.content

    def delete(self, url: str) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            r = client.delete(url, headers=self._headers())
            if r.status_code == 404:
                log.info("storage delete: already gone url=%s", url)
                return
            r.raise_for_status()
