"""CRM <-> ERP synchronization engine.

Provides:
- SyncOrchestrator: create-or-update reconciliation per entity and batch
- MappingStore: durable local <-> remote identity mapping (SQL and in-memory)
- RetryExecutor: bounded exponential-backoff wrapper for ERP calls
- IntegrationLog: ring-buffered, optionally persisted sync event log
- InventoryService / OrderService: inventory pulls and order status pushes
- AutoSyncScheduler: periodic per-tenant sync jobs
"""

from src.erp_sync.sync.credentials import CredentialStore, SqlCredentialStore
from src.erp_sync.sync.entities import EntityRepository
from src.erp_sync.sync.integration_log import IntegrationLog, LogStore, SqlLogStore
from src.erp_sync.sync.mapping_store import InMemoryMappingStore, MappingStore, SqlMappingStore
from src.erp_sync.sync.orchestrator import SyncOrchestrator
from src.erp_sync.sync.retry import RetryExecutor
from src.erp_sync.sync.scheduler import AutoSyncScheduler
from src.erp_sync.sync.services import InventoryService, OrderService

__all__ = [
    "CredentialStore",
    "SqlCredentialStore",
    "EntityRepository",
    "IntegrationLog",
    "LogStore",
    "SqlLogStore",
    "MappingStore",
    "SqlMappingStore",
    "InMemoryMappingStore",
    "SyncOrchestrator",
    "RetryExecutor",
    "AutoSyncScheduler",
    "InventoryService",
    "OrderService",
]
