"""CRM data-layer interface consumed by the sync core.

The sync engine never queries CRM tables directly; the host application
supplies an EntityRepository implementation over its own storage.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.erp_sync.sync.schemas import EntityType, LocalEntity, ProductInventory


class EntityRepository(ABC):
    """Read/write access to CRM entities for one tenant at a time.

    Methods:
        get_by_id: Fetch one entity, or None if it does not exist.
        list: List entities of a type matching optional filters.
        upsert: Create (entity.id is None) or update an entity; returns the
            stored entity with its id set.
        save_inventory: Store the ERP inventory view of a product.
        legacy_mapping: Return the entity's metadata dict if it may embed a
            legacy ERP identity, else None.
    """

    @abstractmethod
    async def get_by_id(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> LocalEntity | None:
        ...

    @abstractmethod
    async def list(
        self,
        tenant_id: str,
        entity_type: EntityType,
        filters: dict[str, Any] | None = None,
    ) -> list[LocalEntity]:
        ...

    @abstractmethod
    async def upsert(
        self, tenant_id: str, entity_type: EntityType, entity: LocalEntity
    ) -> LocalEntity:
        ...

    @abstractmethod
    async def save_inventory(self, tenant_id: str, inventory: ProductInventory) -> None:
        ...

    async def legacy_mapping(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> dict[str, Any] | None:
        entity = await self.get_by_id(tenant_id, entity_type, entity_id)
        if entity is None:
            return None
        return entity.metadata or None
