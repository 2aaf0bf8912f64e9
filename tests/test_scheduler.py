"""Tests for AutoSyncScheduler job registration and job execution."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.erp_sync.sync.scheduler import AutoSyncScheduler, job_id
from src.erp_sync.sync.schemas import (
    AutoSyncConfig,
    AutoSyncJob,
    Contact,
    EntityType,
    LogCategory,
    LogFilter,
    LogLevel,
    Product,
    SyncDirection,
    SyncStatus,
)
from src.erp_sync.sync.services import InventoryService
from tests.fakes import OTHER_TENANT, TENANT, build_harness


def _contacts_job(minutes: int = 5) -> AutoSyncJob:
    return AutoSyncJob(
        target=EntityType.CONTACT, direction=SyncDirection.TO_REMOTE, interval_minutes=minutes
    )


def _inventory_job() -> AutoSyncJob:
    return AutoSyncJob(target="inventory", interval_minutes=10)


@pytest_asyncio.fixture
async def autosync(harness):
    scheduler = AutoSyncScheduler(
        harness.orchestrator,
        InventoryService(harness.orchestrator),
        scheduler=AsyncIOScheduler(),
    )
    yield scheduler
    scheduler.stop_all()


# ── Registration ───────────────────────────────────────────────────────────


class TestJobRegistration:
    async def test_default_jobs(self, autosync):
        ids = autosync.start(TENANT)

        assert sorted(ids) == [
            "autosync:tenant-alpha:contact:to_remote",
            "autosync:tenant-alpha:inventory:from_remote",
            "autosync:tenant-alpha:product:from_remote",
            "autosync:tenant-alpha:sales_document:to_remote",
        ]
        assert autosync._scheduler.running

        products = autosync._scheduler.get_job("autosync:tenant-alpha:product:from_remote")
        assert products.trigger.interval == timedelta(minutes=30)
        assert products.max_instances == 1
        assert products.coalesce is True

    async def test_custom_config(self, autosync):
        config = AutoSyncConfig(jobs=[_contacts_job(7)])

        [identifier] = autosync.start(TENANT, config)

        assert identifier == job_id(TENANT, _contacts_job())
        job = autosync._scheduler.get_job(identifier)
        assert job.trigger.interval == timedelta(minutes=7)
        assert job.args[0] == TENANT

    async def test_restart_replaces_jobs(self, autosync):
        autosync.start(TENANT)

        autosync.start(TENANT, AutoSyncConfig(jobs=[_contacts_job()]))

        assert autosync.scheduled_keys(TENANT) == ["autosync:tenant-alpha:contact:to_remote"]

    async def test_disabled_config_schedules_nothing(self, autosync):
        autosync.start(TENANT)

        assert autosync.start(TENANT, AutoSyncConfig(enabled=False)) == []
        assert autosync.scheduled_keys(TENANT) == []

    async def test_stop_only_affects_one_tenant(self, autosync):
        autosync.start(TENANT)
        autosync.start(OTHER_TENANT, AutoSyncConfig(jobs=[_contacts_job()]))

        assert autosync.stop(TENANT) == 4

        assert autosync.scheduled_keys() == ["autosync:tenant-beta:contact:to_remote"]
        assert autosync.stop(TENANT) == 0


# ── Execution ──────────────────────────────────────────────────────────────


class TestJobExecution:
    async def test_entity_job_runs_a_batch(self, harness, autosync):
        harness.entities.add(TENANT, EntityType.CONTACT, Contact(id="c1", first_name="Ana"))

        await autosync._run_job(TENANT, _contacts_job())

        mapping = await harness.mappings.get(TENANT, EntityType.CONTACT, "c1")
        assert mapping.sync_status == SyncStatus.SYNCED

    async def test_job_is_skipped_while_previous_run_is_active(self, harness, autosync):
        harness.entities.add(TENANT, EntityType.CONTACT, Contact(id="c1", first_name="Ana"))
        gateway = harness.gateways[EntityType.CONTACT]
        gateway.block = asyncio.Event()
        running = asyncio.create_task(harness.orchestrator.sync_many(TENANT, EntityType.CONTACT))
        while gateway.count("create") == 0:
            await asyncio.sleep(0)

        await autosync._run_job(TENANT, _contacts_job())

        assert gateway.count("create") == 1
        assert "skipped" in harness.event_log.query()[0].message
        gateway.block.set()
        await running

    async def test_failures_are_logged_not_raised(self):
        harness = build_harness(tenants=(TENANT,))
        autosync = AutoSyncScheduler(harness.orchestrator, scheduler=AsyncIOScheduler())

        await autosync._run_job(OTHER_TENANT, _contacts_job())

        entries = harness.event_log.query(LogFilter(level=LogLevel.ERROR, category=LogCategory.SYNC))
        assert entries[0].message.startswith("Auto-sync of contact failed")
        assert entries[0].context.details["error"]["kind"] == "authentication"

    async def test_inventory_job_refreshes_stock(self, harness, autosync):
        harness.entities.add(TENANT, EntityType.PRODUCT, Product(id="p1", name="Widget"))
        await harness.mappings.upsert(
            TENANT, EntityType.PRODUCT, "p1", remote_id="mk-p1", status=SyncStatus.SYNCED
        )
        harness.gateways[EntityType.PRODUCT].inventory["mk-p1"] = {"amount": "8"}

        await autosync._run_job(TENANT, _inventory_job())

        assert (TENANT, "p1") in harness.entities.inventory

    async def test_inventory_job_without_service_is_ignored(self, harness):
        autosync = AutoSyncScheduler(harness.orchestrator, scheduler=AsyncIOScheduler())

        await autosync._run_job(TENANT, _inventory_job())

        assert harness.gateways[EntityType.PRODUCT].calls == []
        assert len(harness.event_log) == 0
