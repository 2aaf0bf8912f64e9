"""Periodic auto-sync per tenant.

Wraps an AsyncIOScheduler with one interval job per (tenant, target,
direction), where the target is an entity type or inventory. Default
intervals come from the AUTO_SYNC_*_MINUTES settings:
- products pulled every 30 minutes
- sales documents pushed every 15 minutes
- contacts pushed every 60 minutes
- inventory pulled every 10 minutes

A job that fires while the same sync is still running is skipped. Job
failures are logged and never reach the scheduler.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import structlog

from src.erp_sync.sync.errors import as_sync_error
from src.erp_sync.sync.orchestrator import SyncOrchestrator
from src.erp_sync.sync.schemas import (
    AutoSyncConfig,
    AutoSyncJob,
    EntityType,
    LogCategory,
    OperationContext,
    SyncKey,
)
from src.erp_sync.sync.services import InventoryService

logger = structlog.get_logger(__name__)

INVENTORY_TARGET = "inventory"


def _target_name(job: AutoSyncJob) -> str:
    return job.target.value if isinstance(job.target, EntityType) else job.target


def job_id(tenant_id: str, job: AutoSyncJob) -> str:
    return f"autosync:{tenant_id}:{_target_name(job)}:{job.direction.value}"


class AutoSyncScheduler:
    """Interval-driven auto-sync for any number of tenants.

    Args:
        orchestrator: Orchestrator running entity batches.
        inventory_service: Runs inventory jobs. Inventory jobs are skipped
            when it is not given.
        scheduler: Scheduler to register jobs on. Defaults to a new
            AsyncIOScheduler.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        inventory_service: InventoryService | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._inventory = inventory_service
        self._scheduler = scheduler or AsyncIOScheduler()

    def start(self, tenant_id: str, config: AutoSyncConfig | None = None) -> list[str]:
        """Schedule the tenant's jobs, replacing any already scheduled.

        Returns:
            Ids of the scheduled jobs; empty when auto-sync is disabled.
        """
        config = config or AutoSyncConfig.defaults()
        self.stop(tenant_id)
        if not config.enabled:
            logger.info("autosync.disabled", tenant_id=tenant_id)
            return []

        ids: list[str] = []
        for job in config.jobs:
            identifier = job_id(tenant_id, job)
            self._scheduler.add_job(
                self._run_job,
                trigger=IntervalTrigger(minutes=job.interval_minutes),
                args=[tenant_id, job],
                id=identifier,
                name=f"Auto-sync {_target_name(job)} {job.direction.value} for {tenant_id}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            ids.append(identifier)

        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("autosync.started", tenant_id=tenant_id, jobs=ids)
        return ids

    def stop(self, tenant_id: str) -> int:
        """Remove the tenant's jobs. Returns how many were removed."""
        prefix = f"autosync:{tenant_id}:"
        removed = 0
        for job in self._scheduler.get_jobs():
            if job.id.startswith(prefix):
                self._scheduler.remove_job(job.id)
                removed += 1
        if removed:
            logger.info("autosync.stopped", tenant_id=tenant_id, removed=removed)
        return removed

    def stop_all(self) -> None:
        """Remove every job and shut the scheduler down."""
        self._scheduler.remove_all_jobs()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("autosync.shutdown")

    def scheduled_keys(self, tenant_id: str | None = None) -> list[str]:
        prefix = f"autosync:{tenant_id}:" if tenant_id else "autosync:"
        return sorted(job.id for job in self._scheduler.get_jobs() if job.id.startswith(prefix))

    async def _run_job(self, tenant_id: str, job: AutoSyncJob) -> None:
        target = _target_name(job)
        context = OperationContext(
            tenant_id=tenant_id,
            entity_type=target,
            operation="auto_sync",
            details={"direction": job.direction.value},
        )

        if target == INVENTORY_TARGET:
            if self._inventory is None:
                logger.warning("autosync.inventory_unavailable", tenant_id=tenant_id)
                return
            busy = self._inventory.is_syncing(tenant_id)
        else:
            busy = self._orchestrator.is_syncing(SyncKey(tenant_id, job.target, job.direction))

        if busy:
            self._orchestrator.event_log.info(
                LogCategory.SYNC,
                f"Auto-sync of {target} skipped: previous run still in progress",
                context,
            )
            logger.info("autosync.skipped", tenant_id=tenant_id, target=target)
            return

        try:
            if target == INVENTORY_TARGET:
                result = await self._inventory.sync_all_inventory(tenant_id)
            else:
                result = await self._orchestrator.sync_many(
                    tenant_id, job.target, None, job.direction
                )
        except Exception as exc:
            error = as_sync_error(exc)
            self._orchestrator.event_log.error(
                LogCategory.SYNC,
                f"Auto-sync of {target} failed: {error.message}",
                context.model_copy(update={"details": {**context.details, "error": error.to_dict()}}),
            )
            logger.error(
                "autosync.job_failed",
                tenant_id=tenant_id,
                target=target,
                error=error.message,
            )
            return

        logger.info(
            "autosync.job_complete",
            tenant_id=tenant_id,
            target=target,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
        )


__all__ = ["AutoSyncScheduler", "job_id"]
