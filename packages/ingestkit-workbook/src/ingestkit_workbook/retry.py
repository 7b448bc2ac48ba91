"""Bounded retry for object-store sub-operations.

Only transient failures are retried (``TransientStoreError`` plus the
builtin ``ConnectionError`` / ``TimeoutError``); not-found and rejected
requests propagate immediately.  Attempts are ``1 + backend_max_retries``
with exponential backoff ``backend_backoff_base * 2 ** attempt``.
"""

from __future__ import annotations

import logging
import time
from typing import BinaryIO, Callable, TypeVar

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import ErrorCode, TransientStoreError
from ingestkit_workbook.protocols import ObjectStore

logger = logging.getLogger("ingestkit_workbook")

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientStoreError,
    ConnectionError,
    TimeoutError,
)


def call_with_retry(
    operation: Callable[[], T],
    description: str,
    config: WorkbookProcessorConfig,
) -> T:
    """Run *operation*, retrying transient failures with exponential backoff.

    Raises
    ------
    TransientStoreError
        When every attempt failed with a retryable error.
    """
    max_attempts = 1 + config.backend_max_retries
    last_exc: BaseException | None = None

    for attempt in range(max_attempts):
        try:
            return operation()
        except RETRYABLE_EXCEPTIONS as exc:
            last_exc = exc
            if attempt < max_attempts - 1:
                sleep_time = config.backend_backoff_base * (2 ** attempt)
                logger.warning(
                    "%s: %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    ErrorCode.W_STORE_RETRY.value,
                    description,
                    attempt + 1,
                    max_attempts,
                    sleep_time,
                    exc,
                )
                time.sleep(sleep_time)

    raise TransientStoreError(
        f"{description} failed after {max_attempts} attempts: {last_exc}",
    ) from last_exc


def put_with_retry(
    store: ObjectStore,
    key: str,
    data: bytes,
    content_type: str,
    config: WorkbookProcessorConfig,
) -> None:
    call_with_retry(
        lambda: store.put_object(key, data, content_type),
        f"put {key}",
        config,
    )


def get_with_retry(
    store: ObjectStore,
    key: str,
    config: WorkbookProcessorConfig,
) -> BinaryIO:
    return call_with_retry(lambda: store.get_object(key), f"get {key}", config)


def read_with_retry(
    store: ObjectStore,
    key: str,
    config: WorkbookProcessorConfig,
) -> bytes:
    """Fetch and fully read *key*; a failure mid-read counts as one attempt."""

    def _read() -> bytes:
        with store.get_object(key) as fh:
            return fh.read()

    return call_with_retry(_read, f"get {key}", config)
