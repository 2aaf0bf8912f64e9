"""Mapping store -- persistent local <-> remote identity per tenant and entity type.

Provides the MappingStore ABC and two implementations:
- SqlMappingStore: SQLAlchemy async, session_factory callable pattern,
  upsert via INSERT ... ON CONFLICT DO UPDATE on (tenant_id, entity_type, local_id)
- InMemoryMappingStore: dict-backed, for tests and single-process use

Store-level failures propagate to the caller unchanged.

Legacy migration: older CRM rows carry their ERP identity embedded in the
entity's own metadata. When no mapping row exists, get()/get_many() consult
an injected legacy lookup and, if a legacy identity is found, write it as a
proper synced mapping before returning it. Subsequent reads hit the row, so
the migration runs at most once per entity. A legacy remote id that another
local entity already maps is not migrated: the row is parked as needs_review
without a remote id.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.erp_sync.sync.models import EntityMappingModel
from src.erp_sync.sync.schemas import (
    EntityType,
    MappingRecord,
    SyncDirection,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

# (tenant_id, entity_type, local_id) -> legacy metadata dict or None
LegacyLookup = Callable[[str, EntityType, str], Awaitable[dict[str, Any] | None]]

_LEGACY_REMOTE_ID_KEYS = ("remote_id", "metakockaId", "metakocka_id")
_LEGACY_REMOTE_CODE_KEYS = ("remote_code", "metakockaCode", "count_code")
_LEGACY_METADATA_KEYS = {
    "document_type": ("document_type", "documentType"),
    "document_number": ("document_number", "documentNumber"),
}


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_legacy_mapping(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Extract an embedded ERP identity from entity metadata.

    Returns a dict with remote_id, remote_code and metadata keys, or None if
    the metadata holds no remote id.
    """
    if not metadata:
        return None
    remote_id = _first(metadata, _LEGACY_REMOTE_ID_KEYS)
    if remote_id is None:
        return None
    extra = {
        name: value
        for name, keys in _LEGACY_METADATA_KEYS.items()
        if (value := _first(metadata, keys)) is not None
    }
    remote_code = _first(metadata, _LEGACY_REMOTE_CODE_KEYS)
    return {
        "remote_id": str(remote_id),
        "remote_code": str(remote_code) if remote_code is not None else None,
        "metadata": extra,
    }


# ── Store Interface ─────────────────────────────────────────────────────────


class MappingStore(ABC):
    """Abstract mapping store.

    Subclasses implement the storage primitives; get()/get_many() add the
    legacy migration path on top of them.

    Args:
        legacy_lookup: Optional async callable returning an entity's
            metadata, consulted when no mapping row exists.
    """

    def __init__(self, legacy_lookup: LegacyLookup | None = None) -> None:
        self._legacy_lookup = legacy_lookup

    @property
    def migrates_legacy(self) -> bool:
        return self._legacy_lookup is not None

    async def get(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        """Get the mapping for a local entity, migrating a legacy one if present."""
        record = await self._fetch(tenant_id, entity_type, local_id)
        if record is None:
            record = await self._migrate_legacy(tenant_id, entity_type, local_id)
        return record

    async def get_many(
        self, tenant_id: str, entity_type: EntityType, local_ids: list[str]
    ) -> list[MappingRecord]:
        """Get the mappings that exist for the given local ids."""
        if not local_ids:
            return []
        records = await self._fetch_many(tenant_id, entity_type, local_ids)
        if self._legacy_lookup is not None:
            found = {r.local_id for r in records}
            for local_id in local_ids:
                if local_id in found:
                    continue
                migrated = await self._migrate_legacy(tenant_id, entity_type, local_id)
                if migrated is not None:
                    records.append(migrated)
        return records

    @abstractmethod
    async def upsert(
        self,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
        *,
        remote_id: str | None,
        status: SyncStatus,
        error: str | None = None,
        remote_code: str | None = None,
        direction: SyncDirection | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MappingRecord:
        """Insert or update the mapping for (tenant, entity type, local id).

        A None remote_id/remote_code/direction/metadata keeps the stored
        value, so a failed attempt never erases a known remote identity.
        """
        ...

    @abstractmethod
    async def find_by_remote_id(
        self, tenant_id: str, entity_type: EntityType, remote_id: str
    ) -> MappingRecord | None:
        """Reverse lookup used to guard against duplicate creation."""
        ...

    @abstractmethod
    async def remote_ids(self, tenant_id: str, entity_type: EntityType) -> set[str]:
        """All remote ids currently mapped for a tenant and entity type."""
        ...

    @abstractmethod
    async def _fetch(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        ...

    @abstractmethod
    async def _fetch_many(
        self, tenant_id: str, entity_type: EntityType, local_ids: list[str]
    ) -> list[MappingRecord]:
        ...

    async def _migrate_legacy(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        if self._legacy_lookup is None:
            return None
        legacy = parse_legacy_mapping(
            await self._legacy_lookup(tenant_id, entity_type, local_id)
        )
        if legacy is None:
            return None

        existing = await self.find_by_remote_id(tenant_id, entity_type, legacy["remote_id"])
        if existing is not None and existing.local_id != local_id:
            message = (
                f"Legacy remote {entity_type.value} {legacy['remote_id']} is already "
                f"mapped to local {existing.local_id}"
            )
            record = await self.upsert(
                tenant_id,
                entity_type,
                local_id,
                remote_id=None,
                status=SyncStatus.NEEDS_REVIEW,
                error=message,
                metadata={
                    **legacy["metadata"],
                    "legacy_remote_id": legacy["remote_id"],
                    "conflicting_local_id": existing.local_id,
                },
            )
            logger.warning(
                "mapping.legacy_conflict",
                tenant_id=tenant_id,
                entity_type=entity_type.value,
                local_id=local_id,
                remote_id=legacy["remote_id"],
                conflicting_local_id=existing.local_id,
            )
            return record

        record = await self.upsert(
            tenant_id,
            entity_type,
            local_id,
            remote_id=legacy["remote_id"],
            remote_code=legacy["remote_code"],
            status=SyncStatus.SYNCED,
            direction=SyncDirection.TO_REMOTE,
            metadata=legacy["metadata"],
        )
        logger.info(
            "mapping.legacy_migrated",
            tenant_id=tenant_id,
            entity_type=entity_type.value,
            local_id=local_id,
            remote_id=legacy["remote_id"],
        )
        return record


# ── SQL Implementation ──────────────────────────────────────────────────────


def _model_to_record(model: EntityMappingModel) -> MappingRecord:
    """Convert EntityMappingModel to MappingRecord schema."""
    return MappingRecord(
        tenant_id=model.tenant_id,
        entity_type=EntityType(model.entity_type),
        local_id=model.local_id,
        remote_id=model.remote_id,
        remote_code=model.remote_code,
        sync_direction=SyncDirection(model.sync_direction),
        sync_status=SyncStatus(model.sync_status),
        sync_error=model.sync_error,
        last_synced_at=model.last_synced_at,
        metadata=model.metadata_json or {},
    )


class SqlMappingStore(MappingStore):
    """Mapping store backed by the entity_mappings table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        legacy_lookup: Optional legacy metadata lookup (see MappingStore).
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        legacy_lookup: LegacyLookup | None = None,
    ) -> None:
        super().__init__(legacy_lookup)
        self._session_factory = session_factory

    async def upsert(
        self,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
        *,
        remote_id: str | None,
        status: SyncStatus,
        error: str | None = None,
        remote_code: str | None = None,
        direction: SyncDirection | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MappingRecord:
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            insert = pg_insert if session.bind.dialect.name == "postgresql" else sqlite_insert
            stmt = insert(EntityMappingModel).values(
                tenant_id=tenant_id,
                entity_type=entity_type.value,
                local_id=local_id,
                remote_id=remote_id,
                remote_code=remote_code,
                sync_direction=(direction or SyncDirection.TO_REMOTE).value,
                sync_status=status.value,
                sync_error=error,
                last_synced_at=now,
                metadata_json=metadata or {},
            )

            update_set: dict[str, Any] = {
                "sync_status": stmt.excluded.sync_status,
                "sync_error": stmt.excluded.sync_error,
                "last_synced_at": stmt.excluded.last_synced_at,
                "updated_at": now,
            }
            if remote_id is not None:
                update_set["remote_id"] = stmt.excluded.remote_id
            if remote_code is not None:
                update_set["remote_code"] = stmt.excluded.remote_code
            if direction is not None:
                update_set["sync_direction"] = stmt.excluded.sync_direction
            if metadata is not None:
                update_set["metadata_json"] = stmt.excluded.metadata_json

            stmt = stmt.on_conflict_do_update(
                index_elements=["tenant_id", "entity_type", "local_id"],
                set_=update_set,
            )
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(EntityMappingModel)
                .where(
                    EntityMappingModel.tenant_id == tenant_id,
                    EntityMappingModel.entity_type == entity_type.value,
                    EntityMappingModel.local_id == local_id,
                )
                .execution_options(populate_existing=True)
            )
            return _model_to_record(result.scalar_one())

    async def find_by_remote_id(
        self, tenant_id: str, entity_type: EntityType, remote_id: str
    ) -> MappingRecord | None:
        async for session in self._session_factory():
            stmt = (
                select(EntityMappingModel)
                .where(
                    EntityMappingModel.tenant_id == tenant_id,
                    EntityMappingModel.entity_type == entity_type.value,
                    EntityMappingModel.remote_id == remote_id,
                )
                .order_by(EntityMappingModel.created_at)
            )
            result = await session.execute(stmt)
            model = result.scalars().first()
            if model is None:
                return None
            return _model_to_record(model)

    async def remote_ids(self, tenant_id: str, entity_type: EntityType) -> set[str]:
        async for session in self._session_factory():
            stmt = select(EntityMappingModel.remote_id).where(
                EntityMappingModel.tenant_id == tenant_id,
                EntityMappingModel.entity_type == entity_type.value,
                EntityMappingModel.remote_id.is_not(None),
            )
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def _fetch(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        async for session in self._session_factory():
            stmt = select(EntityMappingModel).where(
                EntityMappingModel.tenant_id == tenant_id,
                EntityMappingModel.entity_type == entity_type.value,
                EntityMappingModel.local_id == local_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_record(model)

    async def _fetch_many(
        self, tenant_id: str, entity_type: EntityType, local_ids: list[str]
    ) -> list[MappingRecord]:
        async for session in self._session_factory():
            stmt = select(EntityMappingModel).where(
                EntityMappingModel.tenant_id == tenant_id,
                EntityMappingModel.entity_type == entity_type.value,
                EntityMappingModel.local_id.in_(local_ids),
            )
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]


# ── In-Memory Implementation ────────────────────────────────────────────────


class InMemoryMappingStore(MappingStore):
    """Dict-backed mapping store with the same upsert semantics as the SQL one."""

    def __init__(self, legacy_lookup: LegacyLookup | None = None) -> None:
        super().__init__(legacy_lookup)
        self._records: dict[tuple[str, EntityType, str], MappingRecord] = {}

    async def upsert(
        self,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
        *,
        remote_id: str | None,
        status: SyncStatus,
        error: str | None = None,
        remote_code: str | None = None,
        direction: SyncDirection | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MappingRecord:
        key = (tenant_id, entity_type, local_id)
        existing = self._records.get(key)
        record = MappingRecord(
            tenant_id=tenant_id,
            entity_type=entity_type,
            local_id=local_id,
            remote_id=remote_id if remote_id is not None else (existing and existing.remote_id),
            remote_code=(
                remote_code if remote_code is not None else (existing and existing.remote_code)
            ),
            sync_direction=(
                direction
                or (existing.sync_direction if existing else SyncDirection.TO_REMOTE)
            ),
            sync_status=status,
            sync_error=error,
            last_synced_at=datetime.now(timezone.utc),
            metadata=(
                metadata if metadata is not None else (existing.metadata if existing else {})
            ),
        )
        self._records[key] = record
        return record.model_copy(deep=True)

    async def find_by_remote_id(
        self, tenant_id: str, entity_type: EntityType, remote_id: str
    ) -> MappingRecord | None:
        for (tid, etype, _), record in self._records.items():
            if tid == tenant_id and etype == entity_type and record.remote_id == remote_id:
                return record.model_copy(deep=True)
        return None

    async def remote_ids(self, tenant_id: str, entity_type: EntityType) -> set[str]:
        return {
            r.remote_id
            for (tid, etype, _), r in self._records.items()
            if tid == tenant_id and etype == entity_type and r.remote_id
        }

    async def _fetch(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        record = self._records.get((tenant_id, entity_type, local_id))
        return record.model_copy(deep=True) if record else None

    async def _fetch_many(
        self, tenant_id: str, entity_type: EntityType, local_ids: list[str]
    ) -> list[MappingRecord]:
        records = []
        for local_id in local_ids:
            record = await self._fetch(tenant_id, entity_type, local_id)
            if record is not None:
                records.append(record)
        return records
