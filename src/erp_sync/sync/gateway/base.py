"""Remote gateway abstract base class -- the per-entity-type ERP capability.

Every entity type (contact, product, sales document, order) gets one
gateway exposing create/update/get/list against the ERP. Gateways are pure
request/response: no retry, no mapping, no translation. The orchestrator
wraps every call in the retry executor.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from src.erp_sync.sync.schemas import EntityType, RemoteRef


class RemoteGateway(ABC):
    """Abstract interface for one ERP entity type.

    Methods:
        create: Create a remote entity, return its identity.
        update: Update a remote entity by remote id.
        get: Fetch a remote entity payload by remote id.
        list: List remote payloads matching optional filters.
    """

    entity_type: EntityType

    @abstractmethod
    async def create(self, payload: dict[str, Any]) -> RemoteRef:
        """Create remote entity, return its remote id (and number if any)."""
        ...

    @abstractmethod
    async def update(self, remote_id: str, payload: dict[str, Any]) -> None:
        """Update remote entity by remote id."""
        ...

    @abstractmethod
    async def get(
        self, remote_id: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Fetch remote entity payload.

        ``metadata`` carries hints stored on the mapping record (e.g. the
        remote document type) for gateways that need them.
        """
        ...

    @abstractmethod
    async def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """List remote entity payloads."""
        ...


GatewaySet = Mapping[EntityType, RemoteGateway]
