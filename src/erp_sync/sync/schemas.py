"""Pydantic schemas for ERP sync -- entities, mappings, results, log entries.

Defines all structured types shared by the sync core:
- Enums: EntityType, SyncDirection, SyncStatus, SyncAction, LogLevel, LogCategory
- Local CRM entities: Contact, Product, SalesDocument(+Item), ProductInventory
- Mapping state: MappingRecord, RemoteRef
- Results: SyncResult, BulkSyncResult, BulkSyncError
- Event log: tagged LogContext variants, LogEntry, LogFilter, LogStatistics
- Configuration: RetryConfig, Credentials, AutoSyncJob, AutoSyncConfig
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, NamedTuple, Union

from pydantic import BaseModel, Field

from src.erp_sync.sync.errors import ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class EntityType(str, Enum):
    """Entity types the sync engine reconciles."""

    CONTACT = "contact"
    PRODUCT = "product"
    SALES_DOCUMENT = "sales_document"
    ORDER = "order"


class SyncDirection(str, Enum):
    TO_REMOTE = "to_remote"
    FROM_REMOTE = "from_remote"
    BIDIRECTIONAL = "bidirectional"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"
    NEEDS_REVIEW = "needs_review"


class SyncAction(str, Enum):
    """What a successful sync attempt did on the target side."""

    CREATED = "created"
    UPDATED = "updated"


class LogLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


class LogCategory(str, Enum):
    SYNC = "sync"
    API = "api"
    AUTH = "auth"
    MAPPING = "mapping"
    CACHE = "cache"
    GENERAL = "general"


class SyncKey(NamedTuple):
    """Identity of a sync run: at most one run per key executes at a time."""

    tenant_id: str
    entity_type: EntityType
    direction: SyncDirection


# ── Local CRM Entities ──────────────────────────────────────────────────────


class Contact(BaseModel):
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()


class Product(BaseModel):
    id: str | None = None
    name: str | None = None
    sku: str | None = None
    description: str | None = None
    unit: str = "piece"
    unit_price: Decimal | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SalesDocumentItem(BaseModel):
    product_id: str | None = None
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    total: Decimal | None = None


class SalesDocument(BaseModel):
    """A sales document (invoice, offer, order, proforma).

    Orders are SalesDocuments with document_type "order" whose status comes
    from the order status table.
    """

    id: str | None = None
    document_type: str = "invoice"
    document_number: str | None = None
    document_date: date | None = None
    due_date: date | None = None
    status: str = "draft"
    customer_id: str | None = None
    currency: str = "EUR"
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    notes: str | None = None
    payment_method: str | None = None
    items: list[SalesDocumentItem] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProductInventory(BaseModel):
    product_id: str
    quantity_on_hand: Decimal = Decimal("0")
    reserved: Decimal = Decimal("0")
    available: Decimal = Decimal("0")
    last_updated: datetime = Field(default_factory=_utcnow)


class Availability(BaseModel):
    product_id: str
    requested: Decimal
    available: Decimal
    in_stock: bool


LocalEntity = Union[Contact, Product, SalesDocument]


# ── Mapping State ───────────────────────────────────────────────────────────


class MappingRecord(BaseModel):
    """Persisted association between a local entity and its remote counterpart."""

    tenant_id: str
    entity_type: EntityType
    local_id: str
    remote_id: str | None = None
    remote_code: str | None = None
    sync_direction: SyncDirection = SyncDirection.TO_REMOTE
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    last_synced_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RemoteRef(BaseModel):
    """Identity returned by a remote create call."""

    remote_id: str
    remote_number: str | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class SyncResult(BaseModel):
    """Outcome of reconciling one entity."""

    success: bool
    entity_type: EntityType
    local_id: str | None = None
    remote_id: str | None = None
    action: SyncAction | None = None
    error: str | None = None
    error_code: str | None = None
    error_details: dict[str, Any] | None = None


class BulkSyncError(BaseModel):
    id: str
    error: str


class BulkSyncResult(BaseModel):
    """Aggregated batch outcome. created + updated + failed == attempted."""

    success: bool = True
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[BulkSyncError] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return self.created + self.updated + self.failed

    def merge(self, other: BulkSyncResult) -> BulkSyncResult:
        failed = self.failed + other.failed
        return BulkSyncResult(
            success=failed == 0,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            failed=failed,
            errors=[*self.errors, *other.errors],
            cancelled=self.cancelled or other.cancelled,
        )


# ── Event Log ───────────────────────────────────────────────────────────────


class _ContextBase(BaseModel):
    tenant_id: str | None = None
    local_id: str | None = None
    remote_id: str | None = None
    operation: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ContactContext(_ContextBase):
    kind: Literal["contact"] = "contact"
    email: str | None = None


class ProductContext(_ContextBase):
    kind: Literal["product"] = "product"
    sku: str | None = None


class DocumentContext(_ContextBase):
    kind: Literal["document"] = "document"
    document_type: str | None = None
    document_number: str | None = None


class OperationContext(_ContextBase):
    """Context for operations not tied to a single entity (batches, auth, ...)."""

    kind: Literal["operation"] = "operation"
    entity_type: str | None = None


LogContext = Annotated[
    Union[ContactContext, ProductContext, DocumentContext, OperationContext],
    Field(discriminator="kind"),
]


def context_for(entity_type: EntityType, **fields: Any) -> _ContextBase:
    """Build the context variant matching an entity type."""
    if entity_type == EntityType.CONTACT:
        return ContactContext(**fields)
    if entity_type == EntityType.PRODUCT:
        return ProductContext(**fields)
    return DocumentContext(**fields)


class LogEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=_utcnow)
    level: LogLevel
    category: LogCategory
    message: str
    context: LogContext = Field(default_factory=OperationContext)
    resolved: bool = False
    resolution_notes: str | None = None
    resolved_at: datetime | None = None

    @property
    def tenant_id(self) -> str | None:
        return self.context.tenant_id


class LogFilter(BaseModel):
    level: LogLevel | None = None
    category: LogCategory | None = None
    tenant_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    resolved: bool | None = None
    limit: int | None = 100

    def matches(self, entry: LogEntry) -> bool:
        if self.level is not None and entry.level != self.level:
            return False
        if self.category is not None and entry.category != self.category:
            return False
        if self.tenant_id is not None and entry.tenant_id != self.tenant_id:
            return False
        if self.from_date is not None and entry.timestamp < self.from_date:
            return False
        if self.to_date is not None and entry.timestamp > self.to_date:
            return False
        if self.resolved is not None and entry.resolved != self.resolved:
            return False
        return True


class LogStatistics(BaseModel):
    total_errors: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_day: dict[str, int] = Field(default_factory=dict)
    resolution_rate: float = 0.0


# ── Configuration Schemas ───────────────────────────────────────────────────


class RetryConfig(BaseModel):
    """Bounded retry with exponential backoff for ERP calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retryable_error_kinds: frozenset[ErrorKind] = frozenset(
        {ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.RATE_LIMIT}
    )

    @classmethod
    def from_settings(cls) -> RetryConfig:
        from src.erp_sync.config import get_settings

        settings = get_settings()
        return cls(
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            base_delay_ms=settings.SYNC_BASE_DELAY_MS,
            backoff_multiplier=settings.SYNC_BACKOFF_MULTIPLIER,
        )


class Credentials(BaseModel):
    tenant_id: str
    remote_account_id: str
    secret_key: str
    api_endpoint: str = "https://main.metakocka.si/rest/eshop/v1/json/"


class CredentialTestResult(BaseModel):
    ok: bool
    error: str | None = None


class AutoSyncJob(BaseModel):
    """One periodic sync: an entity type (or "inventory") in one direction."""

    target: EntityType | Literal["inventory"]
    direction: SyncDirection = SyncDirection.FROM_REMOTE
    interval_minutes: int = Field(ge=1)


class AutoSyncConfig(BaseModel):
    enabled: bool = True
    jobs: list[AutoSyncJob] = Field(default_factory=list)

    @classmethod
    def defaults(cls) -> AutoSyncConfig:
        """Products and inventory pulled from the ERP; contacts and documents pushed."""
        from src.erp_sync.config import get_settings

        settings = get_settings()
        return cls(
            jobs=[
                AutoSyncJob(
                    target=EntityType.PRODUCT,
                    direction=SyncDirection.FROM_REMOTE,
                    interval_minutes=settings.AUTO_SYNC_PRODUCTS_MINUTES,
                ),
                AutoSyncJob(
                    target=EntityType.SALES_DOCUMENT,
                    direction=SyncDirection.TO_REMOTE,
                    interval_minutes=settings.AUTO_SYNC_SALES_DOCUMENTS_MINUTES,
                ),
                AutoSyncJob(
                    target=EntityType.CONTACT,
                    direction=SyncDirection.TO_REMOTE,
                    interval_minutes=settings.AUTO_SYNC_CONTACTS_MINUTES,
                ),
                AutoSyncJob(
                    target="inventory",
                    direction=SyncDirection.FROM_REMOTE,
                    interval_minutes=settings.AUTO_SYNC_INVENTORY_MINUTES,
                ),
            ]
        )
