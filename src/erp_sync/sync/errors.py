"""Error taxonomy for ERP sync operations.

Every failure surfaced by a gateway, translator or store is expressed as a
SyncError subclass carrying an ErrorKind. The retry wrapper decides whether
to retry purely from the kind; the orchestrator records kind, code and
details on the mapping record and in the integration log.

Kinds:
- AUTHENTICATION: bad/expired credential or missing credentials. Terminal.
- VALIDATION: malformed payload or missing required field. Terminal.
- NOT_FOUND: local or remote entity missing. Terminal for that entity.
- NETWORK / SERVER / RATE_LIMIT: transient, retryable.
- UNKNOWN: anything else, treated as non-retryable.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base error for all sync failures.

    Args:
        message: Human-readable description.
        code: Original remote error code (HTTP status or in-band opr_code).
        details: Extra structured detail (field names, raw response, ...).
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.attempts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.code is not None:
            data["code"] = self.code
        if self.details:
            data["details"] = self.details
        if self.attempts is not None:
            data["attempts"] = self.attempts
        return data


class SyncAuthError(SyncError):
    kind = ErrorKind.AUTHENTICATION


class CredentialsNotFoundError(SyncAuthError):
    """No active ERP credentials are stored for the tenant."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"No ERP credentials configured for tenant {tenant_id}",
            details={"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class SyncValidationError(SyncError):
    kind = ErrorKind.VALIDATION


class TranslationError(SyncValidationError):
    """A required field is missing or malformed during translation."""

    def __init__(self, message: str, *, field: str, entity_type: str) -> None:
        super().__init__(message, details={"field": field, "entity_type": entity_type})
        self.field = field


class SyncNotFoundError(SyncError):
    kind = ErrorKind.NOT_FOUND


class SyncNetworkError(SyncError):
    kind = ErrorKind.NETWORK


class SyncServerError(SyncError):
    kind = ErrorKind.SERVER


class SyncRateLimitError(SyncError):
    kind = ErrorKind.RATE_LIMIT


class SyncInProgressError(SyncError):
    """A sync for the same (tenant, entity type, direction) is already running."""


_KIND_TO_ERROR: dict[ErrorKind, type[SyncError]] = {
    ErrorKind.AUTHENTICATION: SyncAuthError,
    ErrorKind.VALIDATION: SyncValidationError,
    ErrorKind.NOT_FOUND: SyncNotFoundError,
    ErrorKind.NETWORK: SyncNetworkError,
    ErrorKind.SERVER: SyncServerError,
    ErrorKind.RATE_LIMIT: SyncRateLimitError,
    ErrorKind.UNKNOWN: SyncError,
}


def error_for_status(status_code: int, message: str, **kwargs: Any) -> SyncError:
    """Map an HTTP status code to the matching SyncError subclass."""
    if status_code in (401, 403):
        kind = ErrorKind.AUTHENTICATION
    elif status_code == 404:
        kind = ErrorKind.NOT_FOUND
    elif status_code == 429:
        kind = ErrorKind.RATE_LIMIT
    elif status_code >= 500:
        kind = ErrorKind.SERVER
    elif status_code >= 400:
        kind = ErrorKind.VALIDATION
    else:
        kind = ErrorKind.UNKNOWN
    return _KIND_TO_ERROR[kind](message, code=str(status_code), **kwargs)


def error_for_opr_code(opr_code: str, message: str, **kwargs: Any) -> SyncError:
    """Map a vendor in-band ``opr_code`` to a SyncError.

    "1" is an authentication failure; "2" and any numeric code >= 100 are
    validation failures; every other non-zero code is unknown.
    """
    try:
        numeric = int(opr_code)
    except (TypeError, ValueError):
        numeric = None

    if opr_code == "1":
        cls: type[SyncError] = SyncAuthError
    elif opr_code == "2" or (numeric is not None and numeric >= 100):
        cls = SyncValidationError
    else:
        cls = SyncError
    return cls(message, code=str(opr_code), **kwargs)


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind of any exception raised during a sync attempt."""
    if isinstance(exc, SyncError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(exc.response.status_code, str(exc)).kind
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def as_sync_error(exc: BaseException) -> SyncError:
    """Wrap a foreign exception in the SyncError subclass matching its kind."""
    if isinstance(exc, SyncError):
        return exc
    kind = classify_error(exc)
    code = None
    if isinstance(exc, httpx.HTTPStatusError):
        code = str(exc.response.status_code)
    wrapped = _KIND_TO_ERROR[kind](str(exc) or type(exc).__name__, code=code)
    wrapped.__cause__ = exc
    return wrapped
