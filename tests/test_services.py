"""Tests for InventoryService and OrderService."""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.erp_sync.sync.errors import (
    SyncInProgressError,
    SyncNotFoundError,
    SyncServerError,
    SyncValidationError,
)
from src.erp_sync.sync.schemas import (
    EntityType,
    LogCategory,
    LogFilter,
    LogLevel,
    Product,
    SalesDocument,
    SalesDocumentItem,
    SyncAction,
    SyncStatus,
)
from src.erp_sync.sync.services import InventoryService, OrderService
from tests.fakes import TENANT

PRODUCT = EntityType.PRODUCT
ORDER = EntityType.ORDER


# ── Helpers ────────────────────────────────────────────────────────────────


async def _add_mapped_product(harness, local_id: str, remote_id: str, stock: dict) -> None:
    harness.entities.add(TENANT, PRODUCT, Product(id=local_id, name=f"Product {local_id}"))
    await harness.mappings.upsert(
        TENANT, PRODUCT, local_id, remote_id=remote_id, status=SyncStatus.SYNCED
    )
    harness.gateways[PRODUCT].inventory[remote_id] = stock


async def _add_synced_order(harness, local_id: str = "o1", remote_id: str = "mk-o1") -> None:
    harness.entities.add(
        TENANT,
        ORDER,
        SalesDocument(
            id=local_id,
            document_type="order",
            document_number="ORD-1",
            status="confirmed",
            customer_id="c1",
            items=[SalesDocumentItem(description="Widget")],
        ),
    )
    await harness.mappings.upsert(
        TENANT, ORDER, local_id, remote_id=remote_id, status=SyncStatus.SYNCED
    )


# ── Inventory ──────────────────────────────────────────────────────────────


class TestInventoryService:
    async def test_sync_product_inventory_stores_stock(self, harness):
        await _add_mapped_product(
            harness, "p1", "mk-p1", {"stock_list": [{"amount": "12", "reserved_amount": "2"}]}
        )
        service = InventoryService(harness.orchestrator)

        inventory = await service.sync_product_inventory(TENANT, "p1")

        assert inventory.quantity_on_hand == Decimal("12")
        assert inventory.available == Decimal("10")
        assert harness.entities.inventory[(TENANT, "p1")] == inventory
        assert harness.gateways[PRODUCT].calls == [("get_inventory", "mk-p1")]

    async def test_unmapped_product_is_rejected(self, harness):
        harness.entities.add(TENANT, PRODUCT, Product(id="p1", name="Widget"))

        with pytest.raises(SyncNotFoundError):
            await InventoryService(harness.orchestrator).sync_product_inventory(TENANT, "p1")

        assert harness.gateways[PRODUCT].calls == []
        assert harness.event_log.query(LogFilter(level=LogLevel.ERROR))

    async def test_sync_all_counts_failures_and_skips_unmapped(self, harness):
        await _add_mapped_product(harness, "p1", "mk-p1", {"amount": "3"})
        await _add_mapped_product(harness, "p2", "mk-p2", {"amount": "4"})
        harness.entities.add(TENANT, PRODUCT, Product(id="p3", name="Not in ERP"))
        harness.gateways[PRODUCT].fail("get_inventory", SyncValidationError("unknown product"))

        result = await InventoryService(harness.orchestrator).sync_all_inventory(TENANT)

        assert (result.updated, result.failed) == (1, 1)
        assert result.success is False
        assert [e.id for e in result.errors] == ["p1"]
        assert (TENANT, "p2") in harness.entities.inventory
        assert harness.event_log.query()[0].level == LogLevel.WARNING

    async def test_sync_all_rejects_overlapping_run(self, harness):
        await _add_mapped_product(harness, "p1", "mk-p1", {"amount": "3"})
        service = InventoryService(harness.orchestrator)
        service._running.add(TENANT)

        with pytest.raises(SyncInProgressError):
            await service.sync_all_inventory(TENANT)

    async def test_sync_all_clears_running_flag(self, harness):
        service = InventoryService(harness.orchestrator)

        result = await service.sync_all_inventory(TENANT)

        assert result.success is True
        assert service.is_syncing(TENANT) is False

    @pytest.mark.parametrize("quantity, in_stock", [(5, True), (10, True), (11, False)])
    async def test_check_availability(self, harness, quantity, in_stock):
        await _add_mapped_product(
            harness, "p1", "mk-p1", {"amount": "12", "reserved_amount": "2"}
        )

        availability = await InventoryService(harness.orchestrator).check_availability(
            TENANT, "p1", quantity
        )

        assert availability.requested == Decimal(quantity)
        assert availability.available == Decimal("10")
        assert availability.in_stock is in_stock


# ── Orders ─────────────────────────────────────────────────────────────────


class TestOrderService:
    async def test_update_status_pushes_then_mirrors_locally(self, harness):
        await _add_synced_order(harness)

        result = await OrderService(harness.orchestrator).update_status(
            TENANT, "o1", "processing"
        )

        assert result.action == SyncAction.UPDATED
        assert result.remote_id == "mk-o1"
        assert harness.gateways[ORDER].statuses == [("mk-o1", "in_process")]
        [order] = harness.entities.all(TENANT, ORDER)
        assert order.status == "processing"
        mapping = await harness.mappings.get(TENANT, ORDER, "o1")
        assert mapping.sync_status == SyncStatus.SYNCED

    async def test_fulfill_and_cancel(self, harness):
        await _add_synced_order(harness)
        service = OrderService(harness.orchestrator)

        await service.fulfill(TENANT, "o1")
        await service.cancel(TENANT, "o1")

        assert harness.gateways[ORDER].statuses == [("mk-o1", "shipped"), ("mk-o1", "canceled")]
        [order] = harness.entities.all(TENANT, ORDER)
        assert order.status == "cancelled"

    async def test_unknown_status_is_rejected(self, harness):
        await _add_synced_order(harness)

        with pytest.raises(SyncValidationError) as exc_info:
            await OrderService(harness.orchestrator).update_status(TENANT, "o1", "lost")

        assert "fulfilled" in exc_info.value.details["allowed"]
        assert harness.gateways[ORDER].calls == []

    async def test_missing_order(self, harness):
        with pytest.raises(SyncNotFoundError):
            await OrderService(harness.orchestrator).fulfill(TENANT, "o404")

    async def test_unsynced_order(self, harness):
        harness.entities.add(TENANT, ORDER, SalesDocument(id="o1", document_type="order"))

        with pytest.raises(SyncNotFoundError, match="not been synced"):
            await OrderService(harness.orchestrator).fulfill(TENANT, "o1")

    async def test_rejected_status_marks_mapping_error(self, harness):
        await _add_synced_order(harness)
        harness.gateways[ORDER].fail("update_status", SyncValidationError("status locked"))

        with pytest.raises(SyncValidationError):
            await OrderService(harness.orchestrator).cancel(TENANT, "o1")

        [order] = harness.entities.all(TENANT, ORDER)
        assert order.status == "confirmed"
        mapping = await harness.mappings.get(TENANT, ORDER, "o1")
        assert mapping.sync_status == SyncStatus.ERROR
        assert mapping.remote_id == "mk-o1"
        assert mapping.sync_error == "status locked"
        [entry] = harness.event_log.query(
            LogFilter(level=LogLevel.ERROR, category=LogCategory.SYNC)
        )
        assert entry.context.document_number == "ORD-1"

    async def test_transient_failure_is_retried(self, harness):
        await _add_synced_order(harness)
        harness.gateways[ORDER].fail("update_status", SyncServerError("502"))

        result = await OrderService(harness.orchestrator).fulfill(TENANT, "o1")

        assert result.success is True
        assert harness.sleeps == [1.0]
        assert harness.gateways[ORDER].count("update_status") == 2
