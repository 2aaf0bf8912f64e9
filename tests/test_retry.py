"""Tests for RetryExecutor: backoff schedule, retryable kinds, per-attempt logging."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
from prometheus_client import REGISTRY

from src.erp_sync.sync.errors import (
    ErrorKind,
    SyncAuthError,
    SyncError,
    SyncNetworkError,
    SyncServerError,
    SyncValidationError,
)
from src.erp_sync.sync.integration_log import IntegrationLog
from src.erp_sync.sync.retry import RetryExecutor
from src.erp_sync.sync.schemas import (
    ContactContext,
    LogCategory,
    LogLevel,
    RetryConfig,
)


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_executor(config: RetryConfig | None = None):
    event_log = IntegrationLog(buffer_size=100)
    sleeps: list[float] = []

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    executor = RetryExecutor(event_log, config or RetryConfig(), sleep=_sleep)
    return executor, event_log, sleeps


def _entries(event_log: IntegrationLog):
    # Buffer queries are newest first
    return list(reversed(event_log.query()))


# ── Tests ──────────────────────────────────────────────────────────────────


class TestRetryExecutor:
    async def test_success_first_attempt_logs_one_info_entry(self):
        executor, event_log, sleeps = _make_executor()
        operation = AsyncMock(return_value="ok")

        result = await executor.execute_with_retry(
            operation,
            ContactContext(tenant_id="t1", local_id="c1"),
            operation_name="contact.create",
        )

        assert result == "ok"
        assert operation.await_count == 1
        assert sleeps == []
        [entry] = _entries(event_log)
        assert entry.level == LogLevel.INFO
        assert entry.category == LogCategory.API
        assert entry.context.operation == "contact.create"
        assert entry.context.local_id == "c1"
        assert entry.context.details["attempt"] == 1

    async def test_transient_errors_exhaust_three_attempts(self):
        executor, event_log, sleeps = _make_executor()
        operation = AsyncMock(side_effect=SyncNetworkError("connection reset"))

        with pytest.raises(SyncNetworkError) as exc_info:
            await executor.execute_with_retry(operation, operation_name="product.list")

        assert operation.await_count == 3
        assert exc_info.value.attempts == 3
        assert sleeps == [1.0, 2.0]
        entries = _entries(event_log)
        assert [e.level for e in entries] == [LogLevel.WARNING, LogLevel.WARNING, LogLevel.ERROR]
        assert [e.context.details["will_retry"] for e in entries] == [True, True, False]

    async def test_recovers_after_transient_failure(self):
        executor, event_log, sleeps = _make_executor()
        operation = AsyncMock(side_effect=[SyncServerError("502"), "done"])

        result = await executor.execute_with_retry(operation, operation_name="partner_get")

        assert result == "done"
        assert sleeps == [1.0]
        entries = _entries(event_log)
        assert len(entries) == 2
        # A success that needed a retry is still worth a warning
        assert entries[1].level == LogLevel.WARNING
        assert "succeeded on attempt 2" in entries[1].message

    @pytest.mark.parametrize(
        "error",
        [
            SyncValidationError("name required"),
            SyncAuthError("bad key"),
            SyncError("opr_code 7"),
        ],
    )
    async def test_terminal_kinds_are_not_retried(self, error):
        executor, event_log, sleeps = _make_executor()
        operation = AsyncMock(side_effect=error)

        with pytest.raises(SyncError) as exc_info:
            await executor.execute_with_retry(operation, operation_name="partner_add")

        assert exc_info.value is error
        assert exc_info.value.attempts == 1
        assert operation.await_count == 1
        assert sleeps == []
        [entry] = _entries(event_log)
        assert entry.level == LogLevel.ERROR

    async def test_auth_failures_are_logged_under_auth(self):
        executor, event_log, _ = _make_executor()

        with pytest.raises(SyncAuthError):
            await executor.execute_with_retry(
                AsyncMock(side_effect=SyncAuthError("bad key")), operation_name="ping"
            )

        assert _entries(event_log)[0].category == LogCategory.AUTH

    async def test_foreign_transport_error_is_normalized_and_retried(self):
        executor, _, _ = _make_executor()
        original = httpx.ConnectError("refused")
        operation = AsyncMock(side_effect=original)

        with pytest.raises(SyncNetworkError) as exc_info:
            await executor.execute_with_retry(operation, operation_name="partner_list")

        assert operation.await_count == 3
        assert exc_info.value.__cause__ is original

    async def test_unknown_foreign_error_fails_fast(self):
        executor, _, _ = _make_executor()
        operation = AsyncMock(side_effect=KeyError("mk_id"))

        with pytest.raises(SyncError) as exc_info:
            await executor.execute_with_retry(operation, operation_name="partner_get")

        assert exc_info.value.kind == ErrorKind.UNKNOWN
        assert operation.await_count == 1

    async def test_custom_policy_schedule(self):
        config = RetryConfig(max_attempts=5, base_delay_ms=10, backoff_multiplier=3.0)
        executor, _, sleeps = _make_executor(config)

        with pytest.raises(SyncServerError):
            await executor.execute_with_retry(
                AsyncMock(side_effect=SyncServerError("down")), operation_name="x"
            )

        assert sleeps == pytest.approx([0.01, 0.03, 0.09, 0.27])

    async def test_per_call_config_overrides_default(self):
        executor, _, sleeps = _make_executor()
        operation = AsyncMock(side_effect=SyncServerError("down"))

        with pytest.raises(SyncServerError):
            await executor.execute_with_retry(
                operation, retry_config=RetryConfig(max_attempts=1), operation_name="x"
            )

        assert operation.await_count == 1
        assert sleeps == []

    async def test_retryable_kinds_are_configurable(self):
        config = RetryConfig(retryable_error_kinds=frozenset({ErrorKind.VALIDATION}))
        executor, _, _ = _make_executor(config)
        operation = AsyncMock(side_effect=[SyncValidationError("locked"), "ok"])

        assert await executor.execute_with_retry(operation, operation_name="x") == "ok"
        assert operation.await_count == 2

    async def test_every_attempt_is_counted(self):
        executor, _, _ = _make_executor()
        labels = {"operation": "metrics.check", "outcome": "error"}
        before = REGISTRY.get_sample_value("erp_requests_total", labels) or 0.0

        with pytest.raises(SyncServerError):
            await executor.execute_with_retry(
                AsyncMock(side_effect=SyncServerError("down")), operation_name="metrics.check"
            )

        assert REGISTRY.get_sample_value("erp_requests_total", labels) == before + 3
