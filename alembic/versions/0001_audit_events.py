"""Initial AuditGate schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_audit_events"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the audit_events table and its indexes."""
    op.create_table(
        "audit_events",
        sa.Column("event_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("user_name", sa.String(length=255), nullable=False),
        sa.Column("user_role", sa.String(length=50), nullable=False),
        sa.Column("company_id", sa.String(length=64), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("user_agent", sa.Text(), nullable=False, server_default=""),
        sa.Column("device", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("request_id", sa.String(length=255), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("resource_type", sa.String(length=50), nullable=True),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
    )

    op.create_index("idx_audit_timestamp", "audit_events", ["timestamp", "event_id"])
    op.create_index("idx_audit_user", "audit_events", ["user_id", "timestamp"])
    op.create_index("idx_audit_company", "audit_events", ["company_id", "timestamp"])
    op.create_index("idx_audit_action", "audit_events", ["action", "timestamp"])
    op.create_index("idx_audit_category", "audit_events", ["category", "timestamp"])
    op.create_index("idx_audit_severity", "audit_events", ["severity", "timestamp"])
    op.create_index("idx_audit_status", "audit_events", ["status"])
    op.create_index("idx_audit_resource", "audit_events", ["resource_type", "resource_id"])
    op.create_index("idx_audit_ip", "audit_events", ["ip_address"])


def downgrade() -> None:
    """Drop the audit_events table."""
    for index in (
        "idx_audit_ip",
        "idx_audit_resource",
        "idx_audit_status",
        "idx_audit_severity",
        "idx_audit_category",
        "idx_audit_action",
        "idx_audit_company",
        "idx_audit_user",
        "idx_audit_timestamp",
    ):
        op.drop_index(index, table_name="audit_events")
    op.drop_table("audit_events")
