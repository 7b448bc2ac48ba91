"""HTTP object store backed by ``httpx``.

Talks to any store exposing ``PUT``/``GET`` on ``{base_url}/{key}`` (an S3
gateway, a presigning proxy, a static file server).  Status codes are mapped
onto the store error taxonomy so the retry helper can tell transient
failures from permanent ones.  Requires ``httpx`` as an optional dependency.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO
from urllib.parse import quote

import httpx

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    ObjectNotFoundError,
    StoreRejectedError,
    TransientStoreError,
)

logger = logging.getLogger("ingestkit_workbook")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class HttpObjectStore:
    """``ObjectStore`` over plain HTTP.

    Parameters
    ----------
    base_url:
        Store root, e.g. ``"https://objects.example.com/bucket"``.
    config:
        Pipeline configuration providing the request timeout.
    headers:
        Extra headers sent with every request (auth tokens).
    client:
        Pre-built ``httpx.Client``; one is created when *None*.
    """

    def __init__(
        self,
        base_url: str,
        config: WorkbookProcessorConfig | None = None,
        headers: dict[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._config = config or WorkbookProcessorConfig()
        self._owns_client = client is None
        self._client = client or httpx.Client(
            headers=headers or {},
            timeout=self._config.backend_timeout_seconds,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _url(self, key: str) -> str:
        return f"{self._base_url}/{quote(key, safe='/')}"

    def _send(self, method: str, key: str, **kwargs: object) -> httpx.Response:
        try:
            response = self._client.request(method, self._url(key), **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            raise TransientStoreError(f"{method} {key} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientStoreError(f"{method} {key} failed to connect: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise ObjectNotFoundError(f"No object at key {key!r}")
        if status in RETRYABLE_STATUS_CODES:
            raise TransientStoreError(f"{method} {key} returned HTTP {status}")
        if status >= 400:
            raise StoreRejectedError(f"{method} {key} rejected with HTTP {status}")
        return response

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self._send("PUT", key, content=data, headers={"Content-Type": content_type})
        logger.debug("PUT %s (%d bytes)", key, len(data))

    def get_object(self, key: str) -> BinaryIO:
        response = self._send("GET", key)
        return io.BytesIO(response.content)
