"""ERP credential store -- one active credential per tenant.

Saving a new credential deactivates the previous active row instead of
deleting it, and delete() only deactivates, so the table keeps an audit
trail of every credential a tenant has used.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import httpx
import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.erp_sync.sync.errors import SyncError
from src.erp_sync.sync.gateway.client import ErpClient
from src.erp_sync.sync.models import ErpCredentialModel
from src.erp_sync.sync.schemas import Credentials, CredentialTestResult

logger = structlog.get_logger(__name__)


class CredentialStore(ABC):
    """Abstract credential storage."""

    @abstractmethod
    async def get(self, tenant_id: str) -> Credentials | None:
        """Return the tenant's active credentials, if any."""
        ...

    @abstractmethod
    async def save(self, tenant_id: str, credentials: Credentials) -> None:
        """Store credentials, superseding the active ones."""
        ...

    @abstractmethod
    async def delete(self, tenant_id: str) -> None:
        """Deactivate the tenant's active credentials."""
        ...

    async def test(
        self,
        credentials: Credentials,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> CredentialTestResult:
        """Check credentials against the ERP with a minimal request."""
        client = ErpClient(credentials, transport=transport)
        try:
            await client.ping()
        except SyncError as exc:
            logger.warning(
                "credentials.test_failed",
                tenant_id=credentials.tenant_id,
                kind=exc.kind.value,
                error=exc.message,
            )
            return CredentialTestResult(ok=False, error=exc.message)
        return CredentialTestResult(ok=True)


def _model_to_credentials(model: ErpCredentialModel) -> Credentials:
    return Credentials(
        tenant_id=model.tenant_id,
        remote_account_id=model.remote_account_id,
        secret_key=model.secret_key,
        api_endpoint=model.api_endpoint,
    )


class SqlCredentialStore(CredentialStore):
    """Credential store backed by the erp_credentials table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, tenant_id: str) -> Credentials | None:
        async for session in self._session_factory():
            stmt = (
                select(ErpCredentialModel)
                .where(
                    ErpCredentialModel.tenant_id == tenant_id,
                    ErpCredentialModel.is_active.is_(True),
                )
                .order_by(ErpCredentialModel.created_at.desc())
            )
            result = await session.execute(stmt)
            model = result.scalars().first()
            if model is None:
                return None
            return _model_to_credentials(model)

    async def save(self, tenant_id: str, credentials: Credentials) -> None:
        async for session in self._session_factory():
            await session.execute(self._deactivate_stmt(tenant_id))
            session.add(
                ErpCredentialModel(
                    tenant_id=tenant_id,
                    remote_account_id=credentials.remote_account_id,
                    secret_key=credentials.secret_key,
                    api_endpoint=credentials.api_endpoint,
                    is_active=True,
                )
            )
            await session.commit()
            logger.info("credentials.saved", tenant_id=tenant_id)

    async def delete(self, tenant_id: str) -> None:
        async for session in self._session_factory():
            await session.execute(self._deactivate_stmt(tenant_id))
            await session.commit()
            logger.info("credentials.deactivated", tenant_id=tenant_id)

    @staticmethod
    def _deactivate_stmt(tenant_id: str):
        return (
            update(ErpCredentialModel)
            .where(
                ErpCredentialModel.tenant_id == tenant_id,
                ErpCredentialModel.is_active.is_(True),
            )
            .values(is_active=False, deactivated_at=datetime.now(timezone.utc))
        )
