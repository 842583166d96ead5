"""Deletion requests and audit events

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUS_SQL = "status IN ('pending_verification', 'verified', 'processing')"


def upgrade() -> None:
    # Create deletion_requests table
    op.create_table(
        "deletion_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("subject_id", sa.String(255), nullable=False),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_deletion_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_token", sa.String(128), nullable=False),
        sa.Column("cancellation_token", sa.String(128), nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('pending_verification', 'verified', 'processing', "
            "'completed', 'failed', 'cancelled')",
            name="ck_deletion_requests_status",
        ),
        sa.CheckConstraint(
            "subject_type IN ('renter', 'landlord', 'agency', 'admin')",
            name="ck_deletion_requests_subject_type",
        ),
    )
    op.create_index(
        "uq_deletion_requests_verification_token",
        "deletion_requests",
        ["verification_token"],
        unique=True,
    )
    op.create_index(
        "uq_deletion_requests_cancellation_token",
        "deletion_requests",
        ["cancellation_token"],
        unique=True,
    )
    op.create_index(
        "idx_deletion_requests_due",
        "deletion_requests",
        ["status", "scheduled_deletion_at"],
    )
    op.create_index("idx_deletion_requests_subject", "deletion_requests", ["subject_id"])

    # At most one non-terminal request per subject
    op.create_index(
        "uq_deletion_requests_active_subject",
        "deletion_requests",
        ["subject_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
    )

    # Create audit_events table
    op.create_table(
        "audit_events",
        sa.Column("audit_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("subject_id", sa.String(255), nullable=True),
        sa.Column("subject_type", sa.String(50), nullable=True),
        sa.Column("resource_type", sa.String(50), nullable=True),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("event_data", postgresql.JSONB, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_audit_event_type", "audit_events", ["event_type"])
    op.create_index("idx_audit_subject", "audit_events", ["subject_id"])
    op.create_index("idx_audit_created", "audit_events", ["created_at"])
    op.create_index("idx_audit_resource", "audit_events", ["resource_type", "resource_id"])


def downgrade() -> None:
    op.drop_index("idx_audit_resource", table_name="audit_events")
    op.drop_index("idx_audit_created", table_name="audit_events")
    op.drop_index("idx_audit_subject", table_name="audit_events")
    op.drop_index("idx_audit_event_type", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("uq_deletion_requests_active_subject", table_name="deletion_requests")
    op.drop_index("idx_deletion_requests_subject", table_name="deletion_requests")
    op.drop_index("idx_deletion_requests_due", table_name="deletion_requests")
    op.drop_index("uq_deletion_requests_cancellation_token", table_name="deletion_requests")
    op.drop_index("uq_deletion_requests_verification_token", table_name="deletion_requests")
    op.drop_table("deletion_requests")
