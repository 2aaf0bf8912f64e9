"""Sync state tables: entity mappings, integration logs, ERP credentials.

Revision ID: 001_sync_state
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_sync_state"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "entity_mappings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("local_id", sa.String(100), nullable=False),
        sa.Column("remote_id", sa.String(100), nullable=True),
        sa.Column("remote_code", sa.String(100), nullable=True),
        sa.Column("sync_direction", sa.String(20), nullable=False, server_default="to_remote"),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "tenant_id",
            "entity_type",
            "local_id",
            name="uq_entity_mapping_tenant_type_local",
        ),
    )
    op.create_index(
        "ix_entity_mapping_tenant_type_remote",
        "entity_mappings",
        ["tenant_id", "entity_type", "remote_id"],
    )

    op.create_table(
        "integration_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context_json", sa.JSON(), nullable=True),
        sa.Column("tenant_id", sa.String(100), nullable=True),
        sa.Column("resolved", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_integration_logs_tenant_timestamp", "integration_logs", ["tenant_id", "timestamp"]
    )
    op.create_index(
        "ix_integration_logs_level_resolved", "integration_logs", ["level", "resolved"]
    )

    op.create_table(
        "erp_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("remote_account_id", sa.String(100), nullable=False),
        sa.Column("secret_key", sa.String(255), nullable=False),
        sa.Column("api_endpoint", sa.String(500), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_erp_credentials_tenant_active", "erp_credentials", ["tenant_id", "is_active"]
    )


def downgrade() -> None:
    op.drop_index("ix_erp_credentials_tenant_active", table_name="erp_credentials")
    op.drop_table("erp_credentials")
    op.drop_index("ix_integration_logs_level_resolved", table_name="integration_logs")
    op.drop_index("ix_integration_logs_tenant_timestamp", table_name="integration_logs")
    op.drop_table("integration_logs")
    op.drop_index("ix_entity_mapping_tenant_type_remote", table_name="entity_mappings")
    op.drop_table("entity_mappings")
