"""AuditGate engine - classification, ingestion, queries and retention."""

from auditgate.engine.core import AuditGateEngine
from auditgate.errors import (
    AuditGateError,
    DeadlineExceeded,
    EventNotFound,
    ExportLimitExceeded,
    InvalidFilter,
    PersistenceError,
    ValidationError,
)

__all__ = [
    "AuditGateEngine",
    "AuditGateError",
    "DeadlineExceeded",
    "EventNotFound",
    "ExportLimitExceeded",
    "InvalidFilter",
    "PersistenceError",
    "ValidationError",
]
