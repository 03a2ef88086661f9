"""AuditGate core engine - one entry point over the read and write paths."""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.db import base as db_base
from auditgate.engine.alerts import AlertDetector
from auditgate.engine.analytics import AnalyticsEngine
from auditgate.engine.annotations import AnnotationStore
from auditgate.engine.export import Exporter, ExportStream
from auditgate.engine.ingestion import IngestionService
from auditgate.engine.query import AuditStats, EventDetails, EventPage, QueryEngine
from auditgate.engine.retention import RetentionSweeper
from auditgate.integrations.directory_client import get_directory_client
from auditgate.models import Annotation, AuditEvent, ExportFormat, GroupBy, Severity
from auditgate.models.filter import AuditFilter, Cursor, Pagination, SortSpec

logger = logging.getLogger(__name__)


class AuditGateEngine:
    """
    Request-scoped facade used by the HTTP layer.

    Reads share the caller's session. Ingestion, streaming export and
    retention open their own sessions from the module session factory.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.query = QueryEngine(session)
        self.analytics = AnalyticsEngine(session)
        self.alerts = AlertDetector(self.query)
        self.annotations = AnnotationStore(session)

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_events(
        self,
        f: AuditFilter,
        pagination: Pagination,
        sort: SortSpec,
        cursor: Optional[str] = None,
    ) -> EventPage:
        after = Cursor.decode(cursor) if cursor else None
        return await self.query.list_events(f, pagination, sort, after)

    async def get_event(self, event_id: UUID, include_related: bool = True) -> EventDetails:
        return await self.query.get_event(event_id, include_related=include_related)

    async def stats(self, f: AuditFilter) -> AuditStats:
        return await self.query.stats(f)

    async def analytics_summary(
        self,
        f: AuditFilter,
        group_by: GroupBy,
        limit: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        return await self.analytics.summary(f, group_by, limit, deadline)

    async def get_alerts(
        self,
        min_severity: Optional[Severity | str],
        lookback_hours: Optional[float],
        tenant_id: Optional[str],
        limit: Optional[int],
    ) -> list[AuditEvent]:
        return await self.alerts.get_alerts(min_severity, lookback_hours, tenant_id, limit)

    async def export(
        self,
        f: AuditFilter,
        fmt: ExportFormat | str,
        include_metadata: bool = False,
        deadline: Optional[float] = None,
    ) -> ExportStream:
        exporter = Exporter(self.query, session_factory=db_base.async_session_factory)
        return await exporter.export(f, fmt, include_metadata, deadline)

    # =========================================================================
    # Writes
    # =========================================================================

    async def record_event(self, action: str, description: str, **kwargs: Any) -> Optional[AuditEvent]:
        """Synchronous (awaited) recording for manual entries."""
        service = IngestionService(directory=get_directory_client())
        return await service.record_event(action, description, **kwargs)

    async def add_annotation(
        self,
        event_id: UUID,
        text: str,
        tags: Optional[list[str]] = None,
        author_id: Optional[str] = None,
    ) -> Annotation:
        return await self.annotations.add_annotation(event_id, text, tags, author_id)

    async def get_annotations(self, event_id: UUID) -> list[Annotation]:
        return await self.annotations.get_annotations(event_id)

    async def cleanup(self, days_to_keep: Optional[int] = None) -> int:
        deleted = await RetentionSweeper().sweep(days_to_keep, settings.retention_batch_size)
        logger.info(f"Manual cleanup removed {deleted} events")
        return deleted
