"""Retry executor -- bounded retry with exponential backoff for ERP calls.

Wraps any gateway coroutine. On failure the error is normalized into the
SyncError taxonomy and classified; only kinds listed in the retry config
are retried (by default network, server and rate-limit errors), with
delay ``base_delay_ms * backoff_multiplier ** (attempt - 1)``.
Authentication, validation, not-found and unknown errors surface on the
first attempt.

Every attempt, successful or not, writes one integration log entry with
the operation name and caller context. When retries are exhausted the
last error is re-raised with ``attempts`` set.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.erp_sync.core.monitoring import track_erp_call
from src.erp_sync.sync.errors import ErrorKind, SyncError, as_sync_error
from src.erp_sync.sync.integration_log import IntegrationLog
from src.erp_sync.sync.schemas import (
    LogCategory,
    LogLevel,
    OperationContext,
    RetryConfig,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_AUTH_KINDS = {ErrorKind.AUTHENTICATION}


class RetryExecutor:
    """Runs operations under a RetryConfig, logging every attempt.

    Args:
        event_log: Integration log receiving one entry per attempt.
        default_config: RetryConfig used when a call does not pass one.
        sleep: Async sleep used between attempts (tests inject a recorder).
    """

    def __init__(
        self,
        event_log: IntegrationLog,
        default_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._log = event_log
        self._default_config = default_config or RetryConfig.from_settings()
        self._sleep = sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Any | None = None,
        retry_config: RetryConfig | None = None,
        *,
        operation_name: str | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the retry policy gives up.

        Args:
            operation: Zero-argument coroutine factory performing one attempt.
            context: Log context variant (ContactContext, DocumentContext, ...).
            retry_config: Policy for this call; defaults to the executor's.
            operation_name: Name recorded in logs and metrics.

        Returns:
            The operation's result.

        Raises:
            SyncError: The last attempt's error, with ``attempts`` set.
        """
        config = retry_config or self._default_config
        name = operation_name or getattr(operation, "__name__", "operation")
        context = context or OperationContext()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait_exponential(
                multiplier=config.base_delay_ms / 1000,
                exp_base=config.backoff_multiplier,
                min=0,
            ),
            retry=retry_if_exception(
                lambda exc: isinstance(exc, SyncError)
                and exc.kind in config.retryable_error_kinds
            ),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                try:
                    with track_erp_call(name):
                        result = await operation()
                except Exception as exc:
                    error = as_sync_error(exc)
                    error.attempts = number
                    self._record_failure(name, number, config, error, context)
                    if error is exc:
                        raise
                    raise error from exc

                self._log.log(
                    LogLevel.INFO if number == 1 else LogLevel.WARNING,
                    LogCategory.API,
                    f"{name} succeeded on attempt {number}",
                    self._with_details(context, operation=name, attempt=number),
                )
                return result

        # AsyncRetrying with reraise=True always returns or raises above
        raise RuntimeError(f"{name}: retry loop exited without a result")

    def _record_failure(
        self,
        name: str,
        number: int,
        config: RetryConfig,
        error: SyncError,
        context: Any,
    ) -> None:
        will_retry = error.kind in config.retryable_error_kinds and number < config.max_attempts
        category = LogCategory.AUTH if error.kind in _AUTH_KINDS else LogCategory.API
        self._log.log(
            LogLevel.WARNING if will_retry else LogLevel.ERROR,
            category,
            f"{name} failed on attempt {number}/{config.max_attempts}: {error.message}",
            self._with_details(
                context,
                operation=name,
                attempt=number,
                will_retry=will_retry,
                error=error.to_dict(),
            ),
        )
        logger.debug(
            "retry.attempt_failed",
            operation=name,
            attempt=number,
            kind=error.kind.value,
            will_retry=will_retry,
        )

    @staticmethod
    def _with_details(context: Any, *, operation: str, **details: Any) -> Any:
        return context.model_copy(
            update={"operation": operation, "details": {**context.details, **details}}
        )
