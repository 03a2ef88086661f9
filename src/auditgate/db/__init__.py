"""AuditGate database layer."""

from auditgate.db.base import Base, close_db, init_db
from auditgate.db.repositories import AuditEventRepository
from auditgate.db.tables import AuditEventTable

__all__ = [
    "AuditEventRepository",
    "AuditEventTable",
    "Base",
    "close_db",
    "init_db",
]
