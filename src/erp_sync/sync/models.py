"""Sync state persistence models.

Three SQLAlchemy models on SyncBase:
- EntityMappingModel: local <-> remote identity plus sync status per
  (tenant, entity type, local id)
- IntegrationLogModel: persisted integration log entries with resolution workflow
- ErpCredentialModel: ERP credentials per tenant; superseded rows are
  deactivated, never deleted

Column types are dialect-neutral (Uuid, JSON) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.erp_sync.core.database import SyncBase


class EntityMappingModel(SyncBase):
    """Association between a CRM entity and its ERP counterpart.

    One row per (tenant, entity type, local id), enforced by unique
    constraint so concurrent upserts resolve via ON CONFLICT. Reverse
    lookups by remote id use a non-unique index; uniqueness of the
    remote side is checked by the orchestrator.
    """

    __tablename__ = "entity_mappings"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "entity_type",
            "local_id",
            name="uq_entity_mapping_tenant_type_local",
        ),
        Index("ix_entity_mapping_tenant_type_remote", "tenant_id", "entity_type", "remote_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    local_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remote_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sync_direction: Mapped[str] = mapped_column(String(20), nullable=False, default="to_remote")
    sync_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class IntegrationLogModel(SyncBase):
    """Persisted integration log entry."""

    __tablename__ = "integration_logs"
    __table_args__ = (
        Index("ix_integration_logs_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_integration_logs_level_resolved", "level", "resolved"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    context_json: Mapped[dict] = mapped_column(JSON, default=dict)
    tenant_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ErpCredentialModel(SyncBase):
    """ERP API credentials. At most one active row per tenant."""

    __tablename__ = "erp_credentials"
    __table_args__ = (Index("ix_erp_credentials_tenant_active", "tenant_id", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    remote_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    secret_key: Mapped[str] = mapped_column(String(255), nullable=False)
    api_endpoint: Mapped[str] = mapped_column(String(500), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
