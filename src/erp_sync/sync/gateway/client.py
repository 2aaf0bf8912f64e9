"""Async HTTP client for the ERP's RPC-style JSON API.

Every call is a POST of a JSON body carrying the tenant's secret key and
account id to ``{endpoint}/{method}``. The ERP reports most failures
in-band: an HTTP 200 whose ``opr_code`` is not "0" is an error, not a
success. The client never retries; callers wrap it in the retry executor.

Classification:
- HTTP 401/403 -> SyncAuthError, 404 -> SyncNotFoundError, 429 -> SyncRateLimitError,
  >=500 -> SyncServerError, other 4xx -> SyncValidationError
- transport failure or timeout -> SyncNetworkError
- opr_code "1" -> SyncAuthError, "2" or >=100 -> SyncValidationError
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.erp_sync.config import get_settings
from src.erp_sync.sync.errors import (
    SyncNetworkError,
    SyncServerError,
    error_for_opr_code,
    error_for_status,
)
from src.erp_sync.sync.schemas import Credentials

logger = structlog.get_logger(__name__)


class ErpClient:
    """Async client for the ERP JSON API.

    Args:
        credentials: Tenant credentials (account id, secret key, endpoint).
        timeout: Per-request timeout in seconds. Defaults to ERP_REQUEST_TIMEOUT.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        credentials: Credentials,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._base_url = credentials.api_endpoint.rstrip("/")
        self._timeout = timeout if timeout is not None else get_settings().ERP_REQUEST_TIMEOUT
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def call(self, method: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke one RPC method and return the decoded response body.

        Raises:
            SyncError subclass matching the transport or in-band failure.
        """
        body = {
            "secret_key": self._credentials.secret_key,
            "company_id": self._credentials.remote_account_id,
            **(payload or {}),
        }

        try:
            async with self._client() as client:
                response = await client.post(f"{self._base_url}/{method}", json=body)
        except httpx.TimeoutException as exc:
            raise SyncNetworkError(
                f"ERP request {method} timed out after {self._timeout}s",
                details={"method": method},
            ) from exc
        except httpx.TransportError as exc:
            raise SyncNetworkError(
                f"ERP request {method} failed: {exc}",
                details={"method": method},
            ) from exc

        if response.status_code >= 400:
            logger.warning(
                "erp.http_error",
                method=method,
                status_code=response.status_code,
            )
            raise error_for_status(
                response.status_code,
                f"ERP request {method} failed with HTTP {response.status_code}",
                details={"method": method, "body": response.text[:500]},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SyncServerError(
                f"ERP request {method} returned invalid JSON",
                details={"method": method, "body": response.text[:500]},
            ) from exc

        opr_code = str(data.get("opr_code", "0"))
        if opr_code != "0":
            message = data.get("opr_desc") or f"ERP request {method} returned opr_code {opr_code}"
            logger.warning("erp.remote_error", method=method, opr_code=opr_code, message=message)
            raise error_for_opr_code(
                opr_code,
                message,
                details={"method": method, "response": data},
            )

        logger.debug("erp.call_ok", method=method)
        return data

    async def ping(self) -> None:
        """Issue a minimal authenticated request to verify the credentials."""
        await self.call("product_list", {"limit": 1})
