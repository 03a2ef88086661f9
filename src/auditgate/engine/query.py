"""Query engine - filtered, sorted, paginated reads over the audit trail."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.db.repositories import AuditEventRepository
from auditgate.engine.deadline import Deadline
from auditgate.errors import EventNotFound
from auditgate.models import AuditEvent
from auditgate.models.filter import AuditFilter, Cursor, Pagination, SortSpec

logger = logging.getLogger(__name__)


def cursor_for(event: AuditEvent, sort: SortSpec) -> Cursor:
    """Seek position just past ``event`` under ``sort``."""
    value = getattr(event, sort.field)
    # Enum-backed columns are stored as their string values.
    value = getattr(value, "value", value)
    return Cursor(value=value, event_id=event.event_id)


@dataclass
class EventPage:
    """One page of events plus the numbers a client needs to page further."""

    events: list[AuditEvent]
    page: int
    limit: int
    total: int
    next_cursor: Optional[str] = None

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "pagination": self.pagination(),
            "nextCursor": self.next_cursor,
        }


@dataclass
class AuditStats:
    """Headline counters for a filtered subset."""

    total_logs: int = 0
    critical_logs: int = 0
    security_logs: int = 0
    failed_logs: int = 0
    admin_logs: int = 0
    user_logs: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalLogs": self.total_logs,
            "criticalLogs": self.critical_logs,
            "securityLogs": self.security_logs,
            "failedLogs": self.failed_logs,
            "adminLogs": self.admin_logs,
            "userLogs": self.user_logs,
        }


@dataclass
class EventDetails:
    """A single event with the other events that touched the same resource."""

    event: AuditEvent
    related: list[AuditEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "relatedEvents": [e.to_dict() for e in self.related],
        }


class QueryEngine:
    """Read side shared by the list API, alerts, analytics and export."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.events = AuditEventRepository(session)

    async def list_events(
        self,
        f: Optional[AuditFilter] = None,
        pagination: Optional[Pagination] = None,
        sort: Optional[SortSpec] = None,
        cursor: Optional[Cursor] = None,
    ) -> EventPage:
        """
        One page of matching events, ordered by (sort field, event_id).

        With ``cursor`` the page continues from that seek position instead of
        the numeric offset; ``page`` is then only echoed back.
        """
        f = f or AuditFilter()
        pagination = pagination or Pagination(limit=settings.default_list_limit)
        sort = sort or SortSpec()
        limit = min(pagination.limit, settings.max_list_limit)

        if cursor is not None:
            events = await self.events.seek(f, sort, cursor, limit)
            total = await self.events.count(f)
        else:
            events, total = await self.events.query(
                f, Pagination(page=pagination.page, limit=limit), sort
            )

        next_cursor = None
        if len(events) == limit:
            next_cursor = cursor_for(events[-1], sort).encode()

        return EventPage(
            events=events,
            page=pagination.page,
            limit=limit,
            total=total,
            next_cursor=next_cursor,
        )

    async def iterate(
        self,
        f: AuditFilter,
        sort: Optional[SortSpec] = None,
        batch_size: int = 1000,
        deadline: Optional[Deadline] = None,
    ) -> AsyncIterator[list[AuditEvent]]:
        """
        Yield every matching event in bounded batches.

        Continuation is keyset based, so rows inserted while iterating never
        shift later batches.
        """
        sort = sort or SortSpec()
        after: Optional[Cursor] = None
        while True:
            if deadline is not None:
                deadline.check()
            batch = await self.events.seek(f, sort, after, batch_size)
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            after = cursor_for(batch[-1], sort)

    async def count(self, f: AuditFilter) -> int:
        return await self.events.count(f)

    async def get_event(self, event_id: UUID, include_related: bool = False) -> EventDetails:
        """
        Fetch one event.

        Raises:
            EventNotFound: no event with that id
        """
        event = await self.events.get(event_id)
        if event is None:
            raise EventNotFound(str(event_id))

        related: list[AuditEvent] = []
        if include_related:
            related = await self.events.related(event)
        return EventDetails(event=event, related=related)

    async def stats(self, f: Optional[AuditFilter] = None) -> AuditStats:
        counts = await self.events.stats(f or AuditFilter())
        return AuditStats(
            total_logs=counts["total"],
            critical_logs=counts["critical"],
            security_logs=counts["security"],
            failed_logs=counts["failed"],
            admin_logs=counts["admin"],
            user_logs=counts["user"],
        )
