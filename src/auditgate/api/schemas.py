"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auditgate.models import Category, EventStatus, Severity


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Health & metrics
# ============================================================================


class HealthResponse(CamelModel):
    status: str
    version: str


class MetricsResponse(CamelModel):
    counters: dict[str, float]
    gauges: dict[str, float]
    histograms: dict[str, dict[str, Any]]


# ============================================================================
# Events
# ============================================================================


class PaginationSchema(CamelModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class EventListResponse(CamelModel):
    """One page of events."""

    events: list[dict[str, Any]]
    pagination: PaginationSchema
    next_cursor: Optional[str] = Field(None, description="Seek cursor for the following page")


class StatsResponse(CamelModel):
    total_logs: int
    critical_logs: int
    security_logs: int
    failed_logs: int
    admin_logs: int
    user_logs: int


class EventDetailResponse(CamelModel):
    event: dict[str, Any]
    related_events: list[dict[str, Any]] = Field(default_factory=list)


class AlertsResponse(CamelModel):
    alerts: list[dict[str, Any]]
    count: int


class EventContextSchema(CamelModel):
    ip_address: str = ""
    user_agent: str = ""
    device: str = ""
    location: str = ""
    session_id: Optional[str] = None
    request_id: Optional[str] = None


class RecordEventRequest(CamelModel):
    """Manual audit entry."""

    action: str = Field(..., min_length=1, description="Action code, e.g. user_deleted")
    description: str = Field(..., min_length=1)
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None
    tenant_id: Optional[str] = None
    tenant_name: Optional[str] = None
    category: Optional[Category] = Field(None, description="Overrides the table only together with severity")
    severity: Optional[Severity] = None
    status: EventStatus = EventStatus.SUCCESS
    context: Optional[EventContextSchema] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Annotations
# ============================================================================


class AnnotateRequest(CamelModel):
    text: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    author_id: Optional[str] = None


class AnnotationResponse(CamelModel):
    text: str
    tags: list[str]
    author_id: Optional[str]
    timestamp: datetime


class AnnotationListResponse(CamelModel):
    event_id: str
    annotations: list[AnnotationResponse]


# ============================================================================
# Retention
# ============================================================================


class CleanupRequest(CamelModel):
    days_to_keep: int = Field(..., ge=1, description="Keep low/medium events newer than this")


class CleanupResponse(CamelModel):
    deleted_count: int
