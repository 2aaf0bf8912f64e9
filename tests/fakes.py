"""In-memory stand-ins for the ERP and the CRM data layer.

FakeGateway keeps remote records in a dict and can be told to fail the next
N calls of an operation. InMemoryEntityRepository stores CRM entities per
(tenant, entity type). build_harness() wires both into a SyncOrchestrator
with an in-memory mapping store, a no-sleep retry executor and a fresh
integration log.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.erp_sync.core.cache import Cache, MemoryCache
from src.erp_sync.sync.credentials import CredentialStore
from src.erp_sync.sync.entities import EntityRepository
from src.erp_sync.sync.errors import SyncNotFoundError
from src.erp_sync.sync.gateway.base import RemoteGateway
from src.erp_sync.sync.integration_log import IntegrationLog
from src.erp_sync.sync.mapping_store import InMemoryMappingStore, MappingStore
from src.erp_sync.sync.orchestrator import SyncOrchestrator
from src.erp_sync.sync.retry import RetryExecutor
from src.erp_sync.sync.schemas import (
    Credentials,
    EntityType,
    LocalEntity,
    ProductInventory,
    RemoteRef,
    RetryConfig,
)

TENANT = "tenant-alpha"
OTHER_TENANT = "tenant-beta"


class FakeGateway(RemoteGateway):
    """Dict-backed gateway for one entity type."""

    def __init__(self, entity_type: EntityType, prefix: str | None = None) -> None:
        self.entity_type = entity_type
        self.prefix = prefix or f"mk-{entity_type.value}"
        self.records: dict[str, dict[str, Any]] = {}
        self.inventory: dict[str, dict[str, Any]] = {}
        self.statuses: list[tuple[str, str]] = []
        self.calls: list[tuple[str, Any]] = []
        self.force_remote_id: str | None = None
        self.on_create: Callable[[dict[str, Any]], None] | None = None
        self.block: asyncio.Event | None = None
        self._failures: dict[str, list[Exception]] = {}
        self._counter = 0

    def fail(self, operation: str, *errors: Exception) -> None:
        """Raise these errors, in order, on the next calls of ``operation``."""
        self._failures.setdefault(operation, []).extend(errors)

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _maybe_fail(self, operation: str) -> None:
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    async def create(self, payload: dict[str, Any]) -> RemoteRef:
        self.calls.append(("create", payload))
        if self.block is not None:
            await self.block.wait()
        self._maybe_fail("create")
        self._counter += 1
        remote_id = self.force_remote_id or f"{self.prefix}-{self._counter}"
        self.records[remote_id] = dict(payload)
        if self.on_create is not None:
            self.on_create(payload)
        return RemoteRef(
            remote_id=remote_id,
            remote_number=payload.get("count_code") or payload.get("doc_number"),
        )

    async def update(self, remote_id: str, payload: dict[str, Any]) -> None:
        self.calls.append(("update", (remote_id, payload)))
        self._maybe_fail("update")
        if remote_id not in self.records:
            raise SyncNotFoundError(f"remote {remote_id} not found")
        self.records[remote_id] = dict(payload)

    async def get(
        self, remote_id: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        self.calls.append(("get", remote_id))
        self._maybe_fail("get")
        if remote_id not in self.records:
            raise SyncNotFoundError(f"remote {remote_id} not found")
        return {**self.records[remote_id], "mk_id": remote_id}

    async def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        self.calls.append(("list", filters))
        self._maybe_fail("list")
        return [{**record, "mk_id": remote_id} for remote_id, record in self.records.items()]

    async def get_inventory(self, remote_id: str) -> dict[str, Any]:
        self.calls.append(("get_inventory", remote_id))
        self._maybe_fail("get_inventory")
        return self.inventory.get(remote_id, {})

    async def update_status(self, remote_id: str, status_code: str) -> None:
        self.calls.append(("update_status", (remote_id, status_code)))
        self._maybe_fail("update_status")
        self.statuses.append((remote_id, status_code))


class InMemoryEntityRepository(EntityRepository):
    """CRM entities per (tenant, entity type), handed out as copies."""

    def __init__(self) -> None:
        self._entities: dict[tuple[str, EntityType], dict[str, LocalEntity]] = {}
        self.inventory: dict[tuple[str, str], ProductInventory] = {}
        self._counter = 0

    def add(self, tenant_id: str, entity_type: EntityType, entity: LocalEntity) -> LocalEntity:
        self._entities.setdefault((tenant_id, entity_type), {})[entity.id] = entity
        return entity

    def all(self, tenant_id: str, entity_type: EntityType) -> list[LocalEntity]:
        return list(self._entities.get((tenant_id, entity_type), {}).values())

    async def get_by_id(
        self, tenant_id: str, entity_type: EntityType, entity_id: str
    ) -> LocalEntity | None:
        entity = self._entities.get((tenant_id, entity_type), {}).get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def list(
        self,
        tenant_id: str,
        entity_type: EntityType,
        filters: dict[str, Any] | None = None,
    ) -> list[LocalEntity]:
        return [e.model_copy(deep=True) for e in self.all(tenant_id, entity_type)]

    async def upsert(
        self, tenant_id: str, entity_type: EntityType, entity: LocalEntity
    ) -> LocalEntity:
        if entity.id is None:
            self._counter += 1
            entity = entity.model_copy(update={"id": f"{entity_type.value}-{self._counter}"})
        self.add(tenant_id, entity_type, entity)
        return entity.model_copy(deep=True)

    async def save_inventory(self, tenant_id: str, inventory: ProductInventory) -> None:
        self.inventory[(tenant_id, inventory.product_id)] = inventory


class StaticCredentialStore(CredentialStore):
    def __init__(self, *tenant_ids: str) -> None:
        self._credentials = {
            tenant_id: Credentials(
                tenant_id=tenant_id,
                remote_account_id=f"acct-{tenant_id}",
                secret_key="s3cr3t",
                api_endpoint="https://erp.test/api/",
            )
            for tenant_id in tenant_ids
        }

    async def get(self, tenant_id: str) -> Credentials | None:
        return self._credentials.get(tenant_id)

    async def save(self, tenant_id: str, credentials: Credentials) -> None:
        self._credentials[tenant_id] = credentials

    async def delete(self, tenant_id: str) -> None:
        self._credentials.pop(tenant_id, None)


@dataclass
class SyncHarness:
    orchestrator: SyncOrchestrator
    gateways: dict[EntityType, FakeGateway]
    entities: InMemoryEntityRepository
    mappings: MappingStore
    credentials: StaticCredentialStore
    event_log: IntegrationLog
    sleeps: list[float] = field(default_factory=list)


def build_harness(
    *,
    tenants: tuple[str, ...] = (TENANT, OTHER_TENANT),
    mappings: MappingStore | None = None,
    cache: Cache | None = None,
    legacy: bool = False,
) -> SyncHarness:
    """Orchestrator over fakes; retries never sleep, delays are recorded."""
    entities = InMemoryEntityRepository()
    if mappings is None:
        mappings = InMemoryMappingStore(entities.legacy_mapping if legacy else None)
    event_log = IntegrationLog(buffer_size=500)
    sleeps: list[float] = []

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    gateways = {entity_type: FakeGateway(entity_type) for entity_type in EntityType}
    credentials = StaticCredentialStore(*tenants)
    orchestrator = SyncOrchestrator(
        entities=entities,
        mappings=mappings,
        credentials=credentials,
        event_log=event_log,
        gateway_factory=lambda _credentials: gateways,
        retry=RetryExecutor(event_log, RetryConfig(), sleep=_sleep),
        cache=cache or MemoryCache(default_ttl_seconds=300),
    )
    return SyncHarness(
        orchestrator=orchestrator,
        gateways=gateways,
        entities=entities,
        mappings=mappings,
        credentials=credentials,
        event_log=event_log,
        sleeps=sleeps,
    )
