"""Sync orchestrator -- create-or-update reconciliation between CRM and ERP.

For one entity and direction, an attempt moves through:

    resolve mapping -> (no remote id) create  -> created
                    -> (remote id)    update  -> updated
    any translator/gateway/store exception    -> failed

Outbound (to_remote) keys on the local id: the mapping record decides
between Gateway.create and Gateway.update, so re-running a synced entity
updates the same remote record instead of creating a second one. After a
create, the returned remote id is checked against existing mappings; if it
already belongs to another local entity the new mapping is parked as
needs_review and the attempt fails.

Inbound (from_remote) keys on the remote id: find_by_remote_id decides
between updating the mapped local entity and creating a new one.

Every attempt upserts the mapping record (synced or error, keeping any
known remote id) and appends a sync-history entry to the integration log.

Batches run strictly sequentially. Each entity is isolated in its own
try/except so one failure never aborts the batch; only setup failures
(missing credentials, listing failures, a run already in progress for the
same key) raise out of sync_many(). A per-key in-progress map doubles as
the cooperative cancellation flag checked between entities.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from src.erp_sync.core.cache import Cache, MemoryCache
from src.erp_sync.core.monitoring import sync_entities_total, sync_runs_in_progress
from src.erp_sync.sync.credentials import CredentialStore
from src.erp_sync.sync.entities import EntityRepository
from src.erp_sync.sync.errors import (
    CredentialsNotFoundError,
    SyncInProgressError,
    SyncNotFoundError,
    SyncValidationError,
    as_sync_error,
)
from src.erp_sync.sync.gateway import GatewaySet, RemoteGateway, build_gateways
from src.erp_sync.sync.integration_log import IntegrationLog
from src.erp_sync.sync.mapping_store import MappingStore
from src.erp_sync.sync.retry import RetryExecutor
from src.erp_sync.sync.schemas import (
    BulkSyncError,
    BulkSyncResult,
    Contact,
    Credentials,
    EntityType,
    LocalEntity,
    LogCategory,
    LogLevel,
    MappingRecord,
    OperationContext,
    Product,
    RemoteRef,
    RetryConfig,
    SalesDocument,
    SyncAction,
    SyncDirection,
    SyncKey,
    SyncResult,
    SyncStatus,
    context_for,
)
from src.erp_sync.sync.translators import EntityTranslator, ReferenceMap, default_translators

logger = structlog.get_logger(__name__)

GatewayFactory = Callable[[Credentials], GatewaySet]

_RESYNC_STATUSES = {SyncStatus.PENDING, SyncStatus.ERROR}


def _merge_direction(
    existing: MappingRecord | None, direction: SyncDirection
) -> SyncDirection:
    if existing is None:
        return direction
    if existing.sync_direction in (direction, SyncDirection.BIDIRECTIONAL):
        return existing.sync_direction
    return SyncDirection.BIDIRECTIONAL


def batch_log_level(result: BulkSyncResult) -> LogLevel:
    """Info when nothing failed, warning on partial failure, error otherwise."""
    if result.failed == 0:
        return LogLevel.INFO
    if result.created or result.updated:
        return LogLevel.WARNING
    return LogLevel.ERROR


class SyncOrchestrator:
    """Reconciles CRM entities with the ERP for any tenant.

    Args:
        entities: CRM data layer.
        mappings: Mapping store.
        credentials: Credential store; a tenant without credentials cannot sync.
        event_log: Integration log receiving sync history and errors.
        gateway_factory: Builds the per-entity gateway set from credentials.
        retry: Retry executor wrapping every gateway call.
        translators: Per-entity translators. Defaults to default_translators().
        cache: Mapping lookup cache. Defaults to a MemoryCache.
        retry_config: Policy for gateway calls when ``retry`` is not given.
    """

    def __init__(
        self,
        *,
        entities: EntityRepository,
        mappings: MappingStore,
        credentials: CredentialStore,
        event_log: IntegrationLog,
        gateway_factory: GatewayFactory = build_gateways,
        retry: RetryExecutor | None = None,
        translators: dict[EntityType, EntityTranslator] | None = None,
        cache: Cache | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._entities = entities
        self._mappings = mappings
        self._credentials = credentials
        self._log = event_log
        self._gateway_factory = gateway_factory
        self._retry = retry or RetryExecutor(event_log, retry_config)
        self._translators = translators or default_translators()
        self._cache = cache or MemoryCache()
        self._gateway_sets: dict[str, tuple[Credentials, GatewaySet]] = {}
        self._running: dict[SyncKey, asyncio.Event] = {}

    # ── Operator Surface ────────────────────────────────────────────────

    async def sync_one(
        self,
        tenant_id: str,
        entity_type: EntityType,
        entity_id: str,
        direction: SyncDirection = SyncDirection.TO_REMOTE,
        *,
        raise_errors: bool = True,
    ) -> SyncResult:
        """Sync a single entity.

        ``entity_id`` is the local id for to_remote and the remote id for
        from_remote. Errors raise by default; with ``raise_errors=False``
        they are returned as a failed SyncResult instead.

        Shares the per-key in-progress guard with sync_many(), so it raises
        SyncInProgressError while a batch for the same key is running.
        """
        try:
            if direction == SyncDirection.BIDIRECTIONAL:
                raise SyncValidationError(
                    "sync_one needs an explicit direction (to_remote or from_remote)"
                )
            key = SyncKey(tenant_id, entity_type, direction)
            if key in self._running:
                raise SyncInProgressError(
                    f"{entity_type.value} {direction.value} sync already running "
                    f"for tenant {tenant_id}"
                )
            self._running[key] = asyncio.Event()
            try:
                gateways = await self.gateways_for(tenant_id)
                if direction == SyncDirection.FROM_REMOTE:
                    await self._migrate_legacy_identities(tenant_id, entity_type)
                return await self._sync_entity(
                    gateways, tenant_id, entity_type, entity_id, direction
                )
            finally:
                del self._running[key]
        except Exception as exc:
            if raise_errors:
                raise
            error = as_sync_error(exc)
            return SyncResult(
                success=False,
                entity_type=entity_type,
                local_id=entity_id if direction == SyncDirection.TO_REMOTE else None,
                remote_id=entity_id if direction == SyncDirection.FROM_REMOTE else None,
                error=error.message,
                error_code=error.code or error.kind.value,
                error_details=error.to_dict(),
            )

    async def sync_many(
        self,
        tenant_id: str,
        entity_type: EntityType,
        ids: list[str] | None = None,
        direction: SyncDirection = SyncDirection.TO_REMOTE,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> BulkSyncResult:
        """Sync a batch of entities sequentially.

        With ``ids`` omitted, selects the unsynced entities: local entities
        without a synced mapping (outbound) or remote entities whose id is
        not mapped (inbound). Bidirectional runs inbound first, then
        outbound, and merges both results.

        Raises:
            CredentialsNotFoundError: Tenant has no active credentials.
            SyncInProgressError: A run for the same key is already executing.
            SyncError: Candidate entities could not be listed.
        """
        if direction == SyncDirection.BIDIRECTIONAL:
            if ids is not None:
                raise SyncValidationError("Bidirectional batches select their own entities")
            inbound = await self.sync_many(
                tenant_id, entity_type, None, SyncDirection.FROM_REMOTE, cancel_event=cancel_event
            )
            outbound = await self.sync_many(
                tenant_id, entity_type, None, SyncDirection.TO_REMOTE, cancel_event=cancel_event
            )
            return inbound.merge(outbound)

        key = SyncKey(tenant_id, entity_type, direction)
        if key in self._running:
            raise SyncInProgressError(
                f"{entity_type.value} {direction.value} sync already running for tenant {tenant_id}"
            )
        cancel = cancel_event or asyncio.Event()
        self._running[key] = cancel
        sync_runs_in_progress.inc()

        try:
            gateways = await self.gateways_for(tenant_id)
            if direction == SyncDirection.FROM_REMOTE:
                await self._migrate_legacy_identities(tenant_id, entity_type)
            prefetched: dict[str, dict[str, Any]] = {}
            if ids is None:
                ids, prefetched = await self._unsynced(gateways, tenant_id, entity_type, direction)

            result = BulkSyncResult()
            for entity_id in ids:
                if cancel.is_set():
                    result.cancelled = True
                    logger.info(
                        "sync.batch_cancelled",
                        tenant_id=tenant_id,
                        entity_type=entity_type.value,
                        remaining=len(ids) - result.attempted,
                    )
                    break
                try:
                    outcome = await self._sync_entity(
                        gateways,
                        tenant_id,
                        entity_type,
                        entity_id,
                        direction,
                        payload=prefetched.get(entity_id),
                    )
                except Exception as exc:
                    result.failed += 1
                    result.errors.append(BulkSyncError(id=entity_id, error=str(exc)))
                    logger.error(
                        "sync.batch_entity_error",
                        tenant_id=tenant_id,
                        entity_type=entity_type.value,
                        entity_id=entity_id,
                        error=str(exc),
                    )
                    continue

                if outcome.action == SyncAction.CREATED:
                    result.created += 1
                else:
                    result.updated += 1

            result.success = result.failed == 0
            self._log.log(
                batch_log_level(result),
                LogCategory.SYNC,
                f"{entity_type.value} {direction.value} batch: created={result.created} "
                f"updated={result.updated} failed={result.failed}",
                OperationContext(
                    tenant_id=tenant_id,
                    entity_type=entity_type.value,
                    operation="sync_many",
                    details={
                        "created": result.created,
                        "updated": result.updated,
                        "failed": result.failed,
                        "cancelled": result.cancelled,
                    },
                ),
            )
            logger.info(
                "sync.batch_complete",
                tenant_id=tenant_id,
                entity_type=entity_type.value,
                direction=direction.value,
                created=result.created,
                updated=result.updated,
                failed=result.failed,
            )
            return result
        finally:
            del self._running[key]
            sync_runs_in_progress.dec()

    async def get_sync_status(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        """Latest mapping state for a local entity, read from the store."""
        return await self._mappings.get(tenant_id, entity_type, local_id)

    def is_syncing(self, key: SyncKey) -> bool:
        return key in self._running

    def cancel(self, tenant_id: str, entity_type: EntityType, direction: SyncDirection) -> bool:
        """Ask a running batch to stop before its next entity."""
        event = self._running.get(SyncKey(tenant_id, entity_type, direction))
        if event is None:
            return False
        event.set()
        return True

    @property
    def entities(self) -> EntityRepository:
        return self._entities

    @property
    def event_log(self) -> IntegrationLog:
        return self._log

    @property
    def retry(self) -> RetryExecutor:
        return self._retry

    # ── Setup ───────────────────────────────────────────────────────────

    async def gateways_for(self, tenant_id: str) -> GatewaySet:
        """Gateway set for the tenant's active credentials.

        Raises:
            CredentialsNotFoundError: No active credentials; terminal for the tenant.
        """
        credentials = await self._credentials.get(tenant_id)
        if credentials is None:
            self._log.error(
                LogCategory.AUTH,
                f"No ERP credentials configured for tenant {tenant_id}",
                OperationContext(tenant_id=tenant_id, operation="load_credentials"),
            )
            raise CredentialsNotFoundError(tenant_id)

        cached = self._gateway_sets.get(tenant_id)
        if cached is not None and cached[0] == credentials:
            return cached[1]
        gateways = self._gateway_factory(credentials)
        self._gateway_sets[tenant_id] = (credentials, gateways)
        return gateways

    async def _migrate_legacy_identities(self, tenant_id: str, entity_type: EntityType) -> None:
        """Turn identities embedded in CRM metadata into mapping rows before remote-id lookups."""
        if not self._mappings.migrates_legacy:
            return
        entities = await self._entities.list(tenant_id, entity_type)
        await self._mappings.get_many(tenant_id, entity_type, [e.id for e in entities if e.id])

    def _gateway(self, gateways: GatewaySet, entity_type: EntityType) -> RemoteGateway:
        try:
            return gateways[entity_type]
        except KeyError:
            raise SyncValidationError(f"No gateway configured for {entity_type.value}") from None

    async def _unsynced(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        entity_type: EntityType,
        direction: SyncDirection,
    ) -> tuple[list[str], dict[str, dict[str, Any]]]:
        """Candidate ids for a batch, plus any payloads fetched while listing."""
        if direction == SyncDirection.TO_REMOTE:
            entities = await self._entities.list(tenant_id, entity_type)
            local_ids = [e.id for e in entities if e.id]
            mapped = {
                m.local_id: m
                for m in await self._mappings.get_many(tenant_id, entity_type, local_ids)
            }
            return [
                local_id
                for local_id in local_ids
                if local_id not in mapped or mapped[local_id].sync_status in _RESYNC_STATUSES
            ], {}

        gateway = self._gateway(gateways, entity_type)
        payloads = await self._retry.execute_with_retry(
            gateway.list,
            OperationContext(tenant_id=tenant_id, entity_type=entity_type.value),
            operation_name=f"{entity_type.value}.list",
        )
        known = await self._mappings.remote_ids(tenant_id, entity_type)
        fresh = {
            str(p["mk_id"]): p
            for p in payloads
            if p.get("mk_id") not in (None, "") and str(p["mk_id"]) not in known
        }
        return list(fresh), fresh

    # ── Per-Entity State Machine ────────────────────────────────────────

    async def _sync_entity(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        entity_type: EntityType,
        entity_id: str,
        direction: SyncDirection,
        payload: dict[str, Any] | None = None,
    ) -> SyncResult:
        if direction == SyncDirection.FROM_REMOTE:
            return await self._pull(gateways, tenant_id, entity_type, entity_id, payload)
        return await self._push(gateways, tenant_id, entity_type, entity_id)

    async def _push(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
    ) -> SyncResult:
        entity = await self._entities.get_by_id(tenant_id, entity_type, local_id)
        context = self._context(entity_type, tenant_id, local_id=local_id, entity=entity)
        if entity is None:
            self._log.error(
                LogCategory.SYNC,
                f"{entity_type.value} {local_id} not found in CRM",
                context,
            )
            raise SyncNotFoundError(
                f"{entity_type.value} {local_id} not found",
                details={"local_id": local_id},
            )

        gateway = self._gateway(gateways, entity_type)
        translator = self._translators[entity_type]
        mapping = await self.lookup_mapping(tenant_id, entity_type, local_id)
        if (
            mapping is not None
            and mapping.sync_status == SyncStatus.NEEDS_REVIEW
            and not mapping.remote_id
        ):
            message = mapping.sync_error or f"{entity_type.value} {local_id} needs review"
            self._log.error(LogCategory.MAPPING, message, context)
            raise SyncValidationError(message, details={"local_id": local_id})
        ref: RemoteRef | None = None

        try:
            refs = await self._resolve_local_refs(
                gateways, tenant_id, translator.local_references(entity)
            )
            translation = translator.to_remote(entity, refs, mapping)
            self._log_warnings(translation.warnings, context)
            payload = translation.value

            if mapping is not None and mapping.remote_id:
                remote_id = mapping.remote_id
                await self._retry.execute_with_retry(
                    lambda: gateway.update(remote_id, payload),
                    context,
                    operation_name=f"{entity_type.value}.update",
                )
                action = SyncAction.UPDATED
            else:
                ref = await self._retry.execute_with_retry(
                    lambda: gateway.create(payload),
                    context,
                    operation_name=f"{entity_type.value}.create",
                )
                remote_id = ref.remote_id
                action = SyncAction.CREATED
        except Exception as exc:
            await self._record_failure(
                tenant_id, entity_type, local_id, SyncDirection.TO_REMOTE, exc, context
            )
            raise

        if action == SyncAction.CREATED:
            await self._guard_duplicate_remote(tenant_id, entity_type, local_id, remote_id, context)

        metadata = {**(mapping.metadata if mapping else {}), **self._remote_metadata(payload, ref)}
        await self.save_mapping(
            tenant_id,
            entity_type,
            local_id,
            remote_id=remote_id,
            remote_code=payload.get("count_code") or (ref.remote_number if ref else None),
            status=SyncStatus.SYNCED,
            direction=_merge_direction(mapping, SyncDirection.TO_REMOTE),
            metadata=metadata,
        )
        return self._record_success(
            entity_type, SyncDirection.TO_REMOTE, action, local_id, remote_id, context
        )

    async def _pull(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        entity_type: EntityType,
        remote_id: str,
        payload: dict[str, Any] | None = None,
    ) -> SyncResult:
        gateway = self._gateway(gateways, entity_type)
        translator = self._translators[entity_type]
        mapping = await self._mappings.find_by_remote_id(tenant_id, entity_type, remote_id)
        local_id = mapping.local_id if mapping else None
        context = self._context(entity_type, tenant_id, local_id=local_id, remote_id=remote_id)

        try:
            if payload is None:
                payload = await self._retry.execute_with_retry(
                    lambda: gateway.get(remote_id, mapping.metadata if mapping else None),
                    context,
                    operation_name=f"{entity_type.value}.get",
                )
            payload = {**payload, "mk_id": payload.get("mk_id") or remote_id}
            refs = await self._resolve_remote_refs(
                gateways, tenant_id, translator.remote_references(payload)
            )
            translation = translator.to_local(payload, refs, local_id)
            self._log_warnings(translation.warnings, context)
            saved = await self._entities.upsert(tenant_id, entity_type, translation.value)
        except Exception as exc:
            if local_id is not None:
                await self._record_failure(
                    tenant_id, entity_type, local_id, SyncDirection.FROM_REMOTE, exc, context
                )
            else:
                self._log_failure(entity_type, SyncDirection.FROM_REMOTE, exc, context)
            raise

        action = SyncAction.UPDATED if mapping is not None else SyncAction.CREATED
        await self.save_mapping(
            tenant_id,
            entity_type,
            saved.id,
            remote_id=remote_id,
            remote_code=payload.get("count_code") or payload.get("doc_number"),
            status=SyncStatus.SYNCED,
            direction=_merge_direction(mapping, SyncDirection.FROM_REMOTE),
            metadata={**(mapping.metadata if mapping else {}), **self._remote_metadata(payload)},
        )
        context = context.model_copy(update={"local_id": saved.id})
        return self._record_success(
            entity_type, SyncDirection.FROM_REMOTE, action, saved.id, remote_id, context
        )

    async def _guard_duplicate_remote(
        self,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
        remote_id: str,
        context: Any,
    ) -> None:
        """Park the mapping for review if the new remote id is already taken."""
        existing = await self._mappings.find_by_remote_id(tenant_id, entity_type, remote_id)
        if existing is None or existing.local_id == local_id:
            return

        message = (
            f"Remote {entity_type.value} {remote_id} is already mapped to "
            f"local {existing.local_id}"
        )
        await self.save_mapping(
            tenant_id,
            entity_type,
            local_id,
            remote_id=remote_id,
            status=SyncStatus.NEEDS_REVIEW,
            error=message,
            direction=SyncDirection.TO_REMOTE,
        )
        self._log.error(
            LogCategory.MAPPING,
            message,
            context.model_copy(
                update={"remote_id": remote_id, "details": {"conflicting_local_id": existing.local_id}}
            ),
        )
        sync_entities_total.labels(
            entity_type=entity_type.value, direction="to_remote", outcome="needs_review"
        ).inc()
        raise SyncValidationError(message, details={"conflicting_local_id": existing.local_id})

    # ── References ──────────────────────────────────────────────────────

    async def _resolve_local_refs(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        references: list[tuple[EntityType, str]],
    ) -> ReferenceMap:
        """Remote ids for referenced local entities; customers are pushed first if unmapped."""
        refs = ReferenceMap()
        for ref_type, ref_local_id in references:
            mapping = await self.lookup_mapping(tenant_id, ref_type, ref_local_id)
            if (mapping is None or not mapping.remote_id) and ref_type == EntityType.CONTACT:
                result = await self._push(gateways, tenant_id, ref_type, ref_local_id)
                refs.add(ref_type, ref_local_id, result.remote_id)
                continue
            if mapping is not None and mapping.remote_id:
                refs.add(ref_type, ref_local_id, mapping.remote_id)
        return refs

    async def _resolve_remote_refs(
        self,
        gateways: GatewaySet,
        tenant_id: str,
        references: list[tuple[EntityType, str]],
    ) -> ReferenceMap:
        """Local ids for referenced remote entities; customers are pulled first if unmapped."""
        refs = ReferenceMap()
        for ref_type, ref_remote_id in references:
            mapping = await self._mappings.find_by_remote_id(tenant_id, ref_type, ref_remote_id)
            if mapping is None and ref_type == EntityType.CONTACT:
                await self._migrate_legacy_identities(tenant_id, ref_type)
                mapping = await self._mappings.find_by_remote_id(
                    tenant_id, ref_type, ref_remote_id
                )
            if mapping is None and ref_type == EntityType.CONTACT:
                result = await self._pull(gateways, tenant_id, ref_type, ref_remote_id)
                refs.add(ref_type, result.local_id, ref_remote_id)
                continue
            if mapping is not None:
                refs.add(ref_type, mapping.local_id, ref_remote_id)
        return refs

    # ── Mapping Cache ───────────────────────────────────────────────────

    @staticmethod
    def _cache_key(tenant_id: str, entity_type: EntityType, local_id: str) -> str:
        return f"mapping:{tenant_id}:{entity_type.value}:{local_id}"

    async def lookup_mapping(
        self, tenant_id: str, entity_type: EntityType, local_id: str
    ) -> MappingRecord | None:
        """Mapping for a local entity, served from the cache when present."""
        key = self._cache_key(tenant_id, entity_type, local_id)
        try:
            cached = await self._cache.get(key)
        except Exception as exc:
            self._cache_unavailable("get", exc, tenant_id)
            cached = None
        if cached is not None:
            return MappingRecord.model_validate(cached)

        record = await self._mappings.get(tenant_id, entity_type, local_id)
        if record is not None:
            await self._cache_put(key, record)
        return record

    async def save_mapping(
        self, tenant_id: str, entity_type: EntityType, local_id: str, **fields: Any
    ) -> MappingRecord:
        """Upsert a mapping and refresh its cache entry."""
        record = await self._mappings.upsert(tenant_id, entity_type, local_id, **fields)
        await self._cache_put(self._cache_key(tenant_id, entity_type, local_id), record)
        return record

    async def _cache_put(self, key: str, record: MappingRecord) -> None:
        try:
            await self._cache.set(key, record.model_dump(mode="json"))
        except Exception as exc:
            self._cache_unavailable("set", exc, record.tenant_id)
            try:
                await self._cache.delete(key)
            except Exception:
                logger.warning("cache.delete_failed", key=key)

    def _cache_unavailable(self, operation: str, exc: Exception, tenant_id: str) -> None:
        self._log.warning(
            LogCategory.CACHE,
            f"Mapping cache {operation} failed: {exc}",
            OperationContext(tenant_id=tenant_id, operation=f"cache.{operation}"),
        )

    # ── History & Logging ───────────────────────────────────────────────

    def _context(
        self,
        entity_type: EntityType,
        tenant_id: str,
        *,
        local_id: str | None = None,
        remote_id: str | None = None,
        entity: LocalEntity | None = None,
    ) -> Any:
        fields: dict[str, Any] = {
            "tenant_id": tenant_id,
            "local_id": local_id,
            "remote_id": remote_id,
            "operation": f"sync_{entity_type.value}",
        }
        if isinstance(entity, Contact):
            fields["email"] = entity.email
        elif isinstance(entity, Product):
            fields["sku"] = entity.sku
        elif isinstance(entity, SalesDocument):
            fields["document_type"] = entity.document_type
            fields["document_number"] = entity.document_number
        return context_for(entity_type, **fields)

    @staticmethod
    def _remote_metadata(
        payload: dict[str, Any], ref: RemoteRef | None = None
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if payload.get("doc_type"):
            metadata["remote_document_type"] = payload["doc_type"]
        number = (ref.remote_number if ref else None) or payload.get("doc_number")
        if payload.get("doc_type") and number:
            metadata["document_number"] = number
        return metadata

    def _log_warnings(self, warnings: list[str], context: Any) -> None:
        for warning in warnings:
            self._log.warning(LogCategory.MAPPING, warning, context)

    async def _record_failure(
        self,
        tenant_id: str,
        entity_type: EntityType,
        local_id: str,
        direction: SyncDirection,
        exc: Exception,
        context: Any,
    ) -> None:
        error = as_sync_error(exc)
        try:
            await self.save_mapping(
                tenant_id,
                entity_type,
                local_id,
                remote_id=None,
                status=SyncStatus.ERROR,
                error=error.message,
            )
        except Exception as store_exc:
            logger.error(
                "sync.mapping_write_failed",
                tenant_id=tenant_id,
                entity_type=entity_type.value,
                local_id=local_id,
                error=str(store_exc),
            )
        self._log_failure(entity_type, direction, error, context)

    def _log_failure(
        self,
        entity_type: EntityType,
        direction: SyncDirection,
        exc: Exception,
        context: Any,
    ) -> None:
        error = as_sync_error(exc)
        self._log.error(
            LogCategory.SYNC,
            f"{entity_type.value} {direction.value} sync failed: {error.message}",
            context.model_copy(
                update={"details": {**context.details, "success": False, "error": error.to_dict()}}
            ),
        )
        sync_entities_total.labels(
            entity_type=entity_type.value, direction=direction.value, outcome="error"
        ).inc()

    def _record_success(
        self,
        entity_type: EntityType,
        direction: SyncDirection,
        action: SyncAction,
        local_id: str,
        remote_id: str,
        context: Any,
    ) -> SyncResult:
        self._log.info(
            LogCategory.SYNC,
            f"{entity_type.value} {local_id} {action.value} ({direction.value}, remote {remote_id})",
            context.model_copy(
                update={
                    "remote_id": remote_id,
                    "details": {**context.details, "success": True, "action": action.value},
                }
            ),
        )
        sync_entities_total.labels(
            entity_type=entity_type.value, direction=direction.value, outcome=action.value
        ).inc()
        return SyncResult(
            success=True,
            entity_type=entity_type,
            local_id=local_id,
            remote_id=remote_id,
            action=action,
        )
