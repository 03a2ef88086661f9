"""REST API router."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auditgate import __version__
from auditgate.api.deps import get_db_session, verify_api_key
from auditgate.api.schemas import (
    AlertsResponse,
    AnnotateRequest,
    AnnotationListResponse,
    AnnotationResponse,
    CleanupRequest,
    CleanupResponse,
    EventDetailResponse,
    EventListResponse,
    HealthResponse,
    MetricsResponse,
    RecordEventRequest,
    StatsResponse,
)
from auditgate.config import settings
from auditgate.engine import AuditGateEngine
from auditgate.models import ActorInfo, Annotation, EventContext, GroupBy, TenantInfo
from auditgate.models.filter import AuditFilter, Pagination, SortSpec
from auditgate.observability.metrics import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


def audit_filter(
    user_id: Optional[str] = Query(None, alias="userId"),
    company_id: Optional[str] = Query(None, alias="companyId"),
    action: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    severity: Optional[str] = Query(None, description="One severity or a comma-separated list"),
    status: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    ip_address: Optional[str] = Query(None, alias="ipAddress"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
) -> AuditFilter:
    """Filter query parameters shared by every read endpoint."""
    return AuditFilter.parse(
        user_id=user_id,
        company_id=company_id,
        action=action,
        category=category or None,
        severity=[s.strip() for s in severity.split(",") if s.strip()] if severity else None,
        status=status or None,
        start_date=start_date,
        end_date=end_date,
        search_term=search_term,
        ip_address=ip_address,
        session_id=session_id,
        resource_type=resource_type or None,
        resource_id=resource_id,
    )


def _annotation_response(annotation: Annotation) -> AnnotationResponse:
    return AnnotationResponse(
        text=annotation.text,
        tags=annotation.tags,
        author_id=annotation.author_id,
        timestamp=annotation.timestamp,
    )


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    """In-process counters, gauges and histograms."""
    return MetricsResponse(**metrics.snapshot())


# ============================================================================
# Events - collection reads
# ============================================================================


@router.get("/events", response_model=EventListResponse)
async def list_events(
    f: AuditFilter = Depends(audit_filter),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=settings.max_list_limit),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    cursor: Optional[str] = Query(None, description="Seek cursor from a previous page"),
    session: AsyncSession = Depends(get_db_session),
):
    """List audit events with filtering, sorting and pagination."""
    engine = AuditGateEngine(session)
    result = await engine.list_events(
        f,
        Pagination(page=page, limit=limit or settings.default_list_limit),
        SortSpec(field=sort_by, order=sort_order),
        cursor=cursor,
    )
    return EventListResponse(**result.to_dict())


@router.get("/events/stats", response_model=StatsResponse)
async def get_stats(
    f: AuditFilter = Depends(audit_filter),
    session: AsyncSession = Depends(get_db_session),
):
    """Headline counters for the filtered events."""
    engine = AuditGateEngine(session)
    stats = await engine.stats(f)
    return StatsResponse(**stats.to_dict())


@router.get("/events/analytics")
async def get_analytics(
    f: AuditFilter = Depends(audit_filter),
    group_by: GroupBy = Query(GroupBy.DAY, alias="groupBy"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    timeout: Optional[float] = Query(None, gt=0, description="Deadline in seconds"),
    session: AsyncSession = Depends(get_db_session),
):
    """Trends, top actions/actors/tenants and security insights."""
    engine = AuditGateEngine(session)
    return await engine.analytics_summary(f, group_by, limit, timeout)


@router.get("/events/alerts", response_model=AlertsResponse)
async def get_alerts(
    severity: str = Query("high", description="Minimum severity, or 'all' for high and above"),
    hours: Optional[float] = Query(None, gt=0),
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    limit: Optional[int] = Query(None, ge=1, le=settings.max_list_limit),
    session: AsyncSession = Depends(get_db_session),
):
    """Recent events at or above a severity floor."""
    engine = AuditGateEngine(session)
    alerts = await engine.get_alerts(severity, hours, tenant_id, limit)
    return AlertsResponse(alerts=[a.to_dict() for a in alerts], count=len(alerts))


@router.get("/events/export")
async def export_events(
    f: AuditFilter = Depends(audit_filter),
    format: str = Query("csv"),
    include_metadata: bool = Query(False, alias="includeMetadata"),
    timeout: Optional[float] = Query(None, gt=0, description="Deadline in seconds"),
    session: AsyncSession = Depends(get_db_session),
):
    """Stream a snapshot export as CSV, TSV or JSON."""
    engine = AuditGateEngine(session)
    stream = await engine.export(f, format, include_metadata, timeout)
    return StreamingResponse(
        stream.chunks,
        media_type=stream.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{stream.filename}"',
            "X-Export-Row-Count": str(stream.row_count),
        },
    )


@router.get("/events/dashboard")
async def get_dashboard(
    company_id: Optional[str] = Query(None, alias="companyId"),
    time_range: str = Query("7d", alias="timeRange"),
    session: AsyncSession = Depends(get_db_session),
):
    """Operator dashboard for the last 1, 7, 30 or 90 days."""
    engine = AuditGateEngine(session)
    return await engine.analytics.dashboard(company_id, time_range)


@router.get("/events/actors/{actor_id}/activity")
async def get_actor_activity(
    actor_id: str,
    f: AuditFilter = Depends(audit_filter),
    session: AsyncSession = Depends(get_db_session),
):
    """Activity pattern of one actor."""
    engine = AuditGateEngine(session)
    return await engine.analytics.actor_activity(actor_id, f)


@router.get("/events/tenants/{tenant_id}/activity")
async def get_tenant_activity(
    tenant_id: str,
    f: AuditFilter = Depends(audit_filter),
    session: AsyncSession = Depends(get_db_session),
):
    """Activity summary of one tenant."""
    engine = AuditGateEngine(session)
    return await engine.analytics.tenant_activity(tenant_id, f)


# ============================================================================
# Events - writes
# ============================================================================


@router.post("/events", status_code=201)
async def record_event(
    request: RecordEventRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Record a manual audit entry."""
    engine = AuditGateEngine(session)
    context = request.context
    event = await engine.record_event(
        request.action,
        request.description,
        actor=ActorInfo(
            user_id=request.actor_id,
            email=request.actor_email,
            name=request.actor_name,
            role=request.actor_role,
        ),
        tenant=TenantInfo(company_id=request.tenant_id, name=request.tenant_name),
        category=request.category,
        severity=request.severity,
        status=request.status,
        context=EventContext(**context.model_dump()) if context else None,
        metadata=request.metadata,
    )
    if event is None:
        raise HTTPException(status_code=503, detail="Audit event could not be persisted; retry later")
    return event.to_dict()


@router.post("/events/cleanup", response_model=CleanupResponse)
async def cleanup_events(
    request: CleanupRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Delete low/medium events older than daysToKeep."""
    engine = AuditGateEngine(session)
    deleted = await engine.cleanup(request.days_to_keep)
    return CleanupResponse(deleted_count=deleted)


# ============================================================================
# Single event
# ============================================================================


@router.get("/events/{event_id}", response_model=EventDetailResponse)
async def get_event(
    event_id: UUID,
    include_related: bool = Query(True, alias="includeRelated"),
    session: AsyncSession = Depends(get_db_session),
):
    """Get an event and the other events that touched the same resource."""
    engine = AuditGateEngine(session)
    details = await engine.get_event(event_id, include_related=include_related)
    return EventDetailResponse(**details.to_dict())


@router.post("/events/{event_id}/annotations", response_model=AnnotationResponse, status_code=201)
async def add_annotation(
    event_id: UUID,
    request: AnnotateRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Append an investigation note to an event."""
    engine = AuditGateEngine(session)
    annotation = await engine.add_annotation(event_id, request.text, request.tags, request.author_id)
    return _annotation_response(annotation)


@router.get("/events/{event_id}/annotations", response_model=AnnotationListResponse)
async def list_annotations(
    event_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """Annotations of an event, oldest first."""
    engine = AuditGateEngine(session)
    annotations = await engine.get_annotations(event_id)
    return AnnotationListResponse(
        event_id=str(event_id),
        annotations=[_annotation_response(a) for a in annotations],
    )
