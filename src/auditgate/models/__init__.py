"""AuditGate data models."""

from auditgate.models.enums import (
    Category,
    EventStatus,
    ExportFormat,
    GroupBy,
    ResourceType,
    Severity,
    SortOrder,
)
from auditgate.models.event import (
    ActorInfo,
    Annotation,
    AuditEvent,
    EventContext,
    TenantInfo,
)

__all__ = [
    "ActorInfo",
    "Annotation",
    "AuditEvent",
    "Category",
    "EventContext",
    "EventStatus",
    "ExportFormat",
    "GroupBy",
    "ResourceType",
    "Severity",
    "SortOrder",
    "TenantInfo",
]
