"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from auditgate.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (local sqlite runs).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class AuditEventTable(Base):
    """Audit events table - append-mostly security and admin trail."""

    __tablename__ = "audit_events"

    event_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Actor
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_role: Mapped[str] = mapped_column(String(50), nullable=False)

    # Tenant
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Classification
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)

    # Narrative
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Context
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    device: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    # Denormalized from metadata for related-event lookups
    resource_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_audit_timestamp", "timestamp", "event_id"),
        Index("idx_audit_user", "user_id", "timestamp"),
        Index("idx_audit_company", "company_id", "timestamp"),
        Index("idx_audit_action", "action", "timestamp"),
        Index("idx_audit_category", "category", "timestamp"),
        Index("idx_audit_severity", "severity", "timestamp"),
        Index("idx_audit_status", "status"),
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_ip", "ip_address"),
    )
