"""Inventory and order workflows layered on the sync orchestrator.

Both services reuse the orchestrator's mapping cache, gateway set and
retry executor, so every ERP call they make is retried and logged the same
way as a regular sync.
"""

from __future__ import annotations

from decimal import Decimal

import structlog

from src.erp_sync.sync.errors import (
    SyncInProgressError,
    SyncNotFoundError,
    SyncValidationError,
    as_sync_error,
)
from src.erp_sync.sync.orchestrator import SyncOrchestrator, batch_log_level
from src.erp_sync.sync.schemas import (
    Availability,
    BulkSyncError,
    BulkSyncResult,
    DocumentContext,
    EntityType,
    LogCategory,
    OperationContext,
    ProductContext,
    ProductInventory,
    SalesDocument,
    SyncAction,
    SyncResult,
    SyncStatus,
)
from src.erp_sync.sync.translators.codes import ORDER_STATUSES
from src.erp_sync.sync.translators.products import inventory_from_remote

logger = structlog.get_logger(__name__)


class InventoryService:
    """Pulls warehouse stock for mapped products into the CRM."""

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._running: set[str] = set()

    def is_syncing(self, tenant_id: str) -> bool:
        return tenant_id in self._running

    async def sync_product_inventory(self, tenant_id: str, product_id: str) -> ProductInventory:
        """Fetch and store the ERP inventory of one product.

        Raises:
            SyncNotFoundError: The product has no remote mapping yet.
            SyncError: The ERP call failed after retries.
        """
        orchestrator = self._orchestrator
        mapping = await orchestrator.lookup_mapping(tenant_id, EntityType.PRODUCT, product_id)
        context = ProductContext(
            tenant_id=tenant_id,
            local_id=product_id,
            remote_id=mapping.remote_id if mapping else None,
            operation="sync_inventory",
        )
        if mapping is None or not mapping.remote_id:
            orchestrator.event_log.error(
                LogCategory.SYNC,
                f"Product {product_id} is not synced to the ERP; inventory unavailable",
                context,
            )
            raise SyncNotFoundError(
                f"product {product_id} has no ERP mapping",
                details={"local_id": product_id},
            )

        gateways = await orchestrator.gateways_for(tenant_id)
        gateway = gateways[EntityType.PRODUCT]
        remote_id = mapping.remote_id
        data = await orchestrator.retry.execute_with_retry(
            lambda: gateway.get_inventory(remote_id),
            context,
            operation_name="product.inventory",
        )
        inventory = inventory_from_remote(product_id, data)
        await orchestrator.entities.save_inventory(tenant_id, inventory)

        orchestrator.event_log.info(
            LogCategory.SYNC,
            f"Inventory for product {product_id}: on hand {inventory.quantity_on_hand}, "
            f"available {inventory.available}",
            context.model_copy(
                update={
                    "details": {
                        "quantity_on_hand": str(inventory.quantity_on_hand),
                        "reserved": str(inventory.reserved),
                        "available": str(inventory.available),
                    }
                }
            ),
        )
        return inventory

    async def sync_all_inventory(self, tenant_id: str) -> BulkSyncResult:
        """Refresh inventory for every product that has a remote mapping.

        Unmapped products are skipped, not counted as failures.
        """
        if tenant_id in self._running:
            raise SyncInProgressError(f"inventory sync already running for tenant {tenant_id}")
        self._running.add(tenant_id)
        try:
            return await self._sync_all(tenant_id)
        finally:
            self._running.discard(tenant_id)

    async def _sync_all(self, tenant_id: str) -> BulkSyncResult:
        orchestrator = self._orchestrator
        products = await orchestrator.entities.list(tenant_id, EntityType.PRODUCT)
        result = BulkSyncResult()
        for product in products:
            if not product.id:
                continue
            mapping = await orchestrator.lookup_mapping(tenant_id, EntityType.PRODUCT, product.id)
            if mapping is None or not mapping.remote_id:
                continue
            try:
                await self.sync_product_inventory(tenant_id, product.id)
            except Exception as exc:
                result.failed += 1
                result.errors.append(BulkSyncError(id=product.id, error=str(exc)))
                continue
            result.updated += 1

        result.success = result.failed == 0
        orchestrator.event_log.log(
            batch_log_level(result),
            LogCategory.SYNC,
            f"inventory batch: updated={result.updated} failed={result.failed}",
            OperationContext(
                tenant_id=tenant_id,
                entity_type=EntityType.PRODUCT.value,
                operation="sync_all_inventory",
                details={"updated": result.updated, "failed": result.failed},
            ),
        )
        logger.info(
            "inventory.batch_complete",
            tenant_id=tenant_id,
            updated=result.updated,
            failed=result.failed,
        )
        return result

    async def check_availability(
        self, tenant_id: str, product_id: str, quantity: Decimal | int
    ) -> Availability:
        """Live stock check against the ERP for one product."""
        inventory = await self.sync_product_inventory(tenant_id, product_id)
        requested = Decimal(quantity)
        return Availability(
            product_id=product_id,
            requested=requested,
            available=inventory.available,
            in_stock=inventory.available >= requested,
        )


class OrderService:
    """Order status changes pushed to the ERP and mirrored locally."""

    def __init__(self, orchestrator: SyncOrchestrator) -> None:
        self._orchestrator = orchestrator

    async def update_status(self, tenant_id: str, order_id: str, status: str) -> SyncResult:
        """Set an order's status in the ERP, then locally.

        The local order and its mapping only change after the ERP accepts
        the new status. A rejected call marks the mapping as error.

        Raises:
            SyncValidationError: Unknown order status.
            SyncNotFoundError: Order missing locally or not yet synced.
            SyncError: The ERP call failed after retries.
        """
        lookup = ORDER_STATUSES.to_remote(status)
        if lookup.fallback:
            raise SyncValidationError(
                f"Unknown order status '{status}'",
                details={"allowed": ORDER_STATUSES.local_codes()},
            )
        local_status = ORDER_STATUSES.to_local(lookup.value).value

        orchestrator = self._orchestrator
        order = await orchestrator.entities.get_by_id(tenant_id, EntityType.ORDER, order_id)
        if order is None:
            raise SyncNotFoundError(f"order {order_id} not found", details={"local_id": order_id})
        mapping = await orchestrator.lookup_mapping(tenant_id, EntityType.ORDER, order_id)
        if mapping is None or not mapping.remote_id:
            raise SyncNotFoundError(
                f"order {order_id} has not been synced to the ERP",
                details={"local_id": order_id},
            )

        remote_id = mapping.remote_id
        context = DocumentContext(
            tenant_id=tenant_id,
            local_id=order_id,
            remote_id=remote_id,
            operation="update_order_status",
            document_type="order",
            document_number=order.document_number if isinstance(order, SalesDocument) else None,
            details={"status": local_status, "status_code": lookup.value},
        )
        gateways = await orchestrator.gateways_for(tenant_id)
        gateway = gateways[EntityType.ORDER]

        try:
            await orchestrator.retry.execute_with_retry(
                lambda: gateway.update_status(remote_id, lookup.value),
                context,
                operation_name="order.update_status",
            )
        except Exception as exc:
            error = as_sync_error(exc)
            await orchestrator.save_mapping(
                tenant_id,
                EntityType.ORDER,
                order_id,
                remote_id=None,
                status=SyncStatus.ERROR,
                error=error.message,
            )
            orchestrator.event_log.error(
                LogCategory.SYNC,
                f"Order {order_id} status update to {local_status} failed: {error.message}",
                context,
            )
            raise

        await orchestrator.entities.upsert(
            tenant_id, EntityType.ORDER, order.model_copy(update={"status": local_status})
        )
        await orchestrator.save_mapping(
            tenant_id,
            EntityType.ORDER,
            order_id,
            remote_id=remote_id,
            status=SyncStatus.SYNCED,
        )
        orchestrator.event_log.info(
            LogCategory.SYNC,
            f"Order {order_id} status set to {local_status}",
            context,
        )
        return SyncResult(
            success=True,
            entity_type=EntityType.ORDER,
            local_id=order_id,
            remote_id=remote_id,
            action=SyncAction.UPDATED,
        )

    async def fulfill(self, tenant_id: str, order_id: str) -> SyncResult:
        return await self.update_status(tenant_id, order_id, "fulfilled")

    async def cancel(self, tenant_id: str, order_id: str) -> SyncResult:
        return await self.update_status(tenant_id, order_id, "cancelled")
