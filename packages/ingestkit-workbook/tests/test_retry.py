"""Tests for bounded retry of object-store operations."""

from __future__ import annotations

import logging

import pytest

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import ErrorCode, ObjectNotFoundError, StoreRejectedError, TransientStoreError
from ingestkit_workbook.retry import (
    call_with_retry,
    get_with_retry,
    put_with_retry,
    read_with_retry,
)


def _raiser(exc: BaseException):
    def _fail() -> None:
        raise exc

    return _fail


class TestCallWithRetry:
    def test_success_first_try(self, test_config: WorkbookProcessorConfig) -> None:
        assert call_with_retry(lambda: 5, "op", test_config) == 5

    def test_recovers_after_transient(self, test_config: WorkbookProcessorConfig) -> None:
        calls = []

        def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert call_with_retry(flaky, "op", test_config) == "ok"
        assert len(calls) == 3

    def test_retry_logged_with_warning_code(
        self, test_config: WorkbookProcessorConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        outcomes = [ConnectionError("reset"), None]

        def flaky() -> str:
            exc = outcomes.pop(0)
            if exc is not None:
                raise exc
            return "ok"

        with caplog.at_level(logging.WARNING, logger="ingestkit_workbook"):
            assert call_with_retry(flaky, "put k", test_config) == "ok"
        messages = [r.getMessage() for r in caplog.records]
        assert len(messages) == 1
        assert messages[0].startswith(f"{ErrorCode.W_STORE_RETRY.value}: put k failed (attempt 1/")

    def test_gives_up(self, test_config: WorkbookProcessorConfig) -> None:
        calls = []

        def always() -> None:
            calls.append(1)
            raise TimeoutError("slow")

        with pytest.raises(TransientStoreError, match="after 3 attempts"):
            call_with_retry(always, "op", test_config)
        assert len(calls) == 3

    def test_non_retryable_propagates(self, test_config: WorkbookProcessorConfig) -> None:
        calls = []

        def rejected() -> None:
            calls.append(1)
            raise StoreRejectedError("forbidden")

        with pytest.raises(StoreRejectedError):
            call_with_retry(rejected, "op", test_config)
        assert len(calls) == 1

    def test_zero_retries(self) -> None:
        config = WorkbookProcessorConfig(backend_max_retries=0, backend_backoff_base=0.0)
        with pytest.raises(TransientStoreError, match="after 1 attempts"):
            call_with_retry(_raiser(TransientStoreError("x")), "op", config)

    def test_backoff_is_exponential(self, monkeypatch: pytest.MonkeyPatch) -> None:
        sleeps: list[float] = []
        monkeypatch.setattr("ingestkit_workbook.retry.time.sleep", sleeps.append)
        config = WorkbookProcessorConfig(backend_max_retries=3, backend_backoff_base=0.5)
        with pytest.raises(TransientStoreError):
            call_with_retry(_raiser(ConnectionError()), "op", config)
        assert sleeps == [0.5, 1.0, 2.0]


class TestStoreHelpers:
    def test_put_with_retry(self, mock_store, test_config: WorkbookProcessorConfig) -> None:
        mock_store.fail_puts["k"] = 2
        put_with_retry(mock_store, "k", b"data", "text/plain", test_config)
        assert mock_store.objects["k"] == b"data"

    def test_get_not_found_not_retried(self, mock_store, test_config: WorkbookProcessorConfig) -> None:
        with pytest.raises(ObjectNotFoundError):
            get_with_retry(mock_store, "missing", test_config)
        assert mock_store.get_log == ["missing"]

    def test_read_with_retry(self, mock_store, test_config: WorkbookProcessorConfig) -> None:
        mock_store.put_object("k", b"body", "text/plain")
        mock_store.fail_gets["k"] = 1
        assert read_with_retry(mock_store, "k", test_config) == b"body"
