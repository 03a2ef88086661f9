"""Database repositories for AuditGate entities."""

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import ColumnElement, and_, case, delete, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.db.tables import AuditEventTable
from auditgate.errors import InvalidFilter
from auditgate.models import (
    Annotation,
    AuditEvent,
    Category,
    EventStatus,
    Severity,
)
from auditgate.models.filter import AuditFilter, Cursor, Pagination, SortSpec
from auditgate.utils.time import ensure_utc

# Columns matched by free-text search (OR-combined, case-insensitive substring).
SEARCH_COLUMNS = (
    AuditEventTable.user_name,
    AuditEventTable.user_email,
    AuditEventTable.action,
    AuditEventTable.description,
    AuditEventTable.company_name,
)


def filter_conditions(f: AuditFilter) -> list[ColumnElement[bool]]:
    """Translate an AuditFilter into WHERE clauses."""
    t = AuditEventTable
    conditions: list[ColumnElement[bool]] = []

    if f.user_id:
        conditions.append(t.user_id == f.user_id)
    if f.company_id:
        conditions.append(t.company_id == f.company_id)
    if f.action:
        conditions.append(t.action == f.action)
    if f.category:
        conditions.append(t.category == f.category.value)
    if f.severity:
        conditions.append(t.severity.in_(sorted(s.value for s in f.severity)))
    if f.status:
        conditions.append(t.status == f.status.value)
    if f.start_date:
        conditions.append(t.timestamp >= f.start_date)
    if f.end_date:
        conditions.append(t.timestamp <= f.end_date)
    if f.before:
        conditions.append(t.timestamp < f.before)
    if f.ip_address:
        conditions.append(t.ip_address == f.ip_address)
    if f.session_id:
        conditions.append(t.session_id == f.session_id)
    if f.resource_type:
        conditions.append(t.resource_type == f.resource_type.value)
    if f.resource_id:
        conditions.append(t.resource_id == f.resource_id)
    if f.search_term:
        conditions.append(
            or_(*(column.icontains(f.search_term, autoescape=True) for column in SEARCH_COLUMNS))
        )

    return conditions


# Severity sorts by escalation level, not by its stored string.
SEVERITY_RANK = case(
    {s.value: s.rank for s in Severity},
    value=AuditEventTable.severity,
    else_=-1,
)


def _sort_key(sort: SortSpec) -> ColumnElement[Any]:
    if sort.field == "severity":
        return SEVERITY_RANK
    return getattr(AuditEventTable, sort.field)


def _cursor_key(sort: SortSpec, cursor: Cursor) -> Any:
    if sort.field != "severity":
        return cursor.value
    try:
        return Severity(cursor.value).rank
    except (ValueError, TypeError):
        raise InvalidFilter("Malformed pagination cursor", field="cursor")


def _order_by(sort: SortSpec) -> list[Any]:
    key = _sort_key(sort)
    if sort.descending:
        return [key.desc(), AuditEventTable.event_id.desc()]
    return [key.asc(), AuditEventTable.event_id.asc()]


def _seek_condition(sort: SortSpec, cursor: Cursor) -> ColumnElement[bool]:
    """Rows strictly after ``cursor`` in (sort key, event_id) order."""
    key = _sort_key(sort)
    value = _cursor_key(sort, cursor)
    if sort.descending:
        return or_(
            key < value,
            and_(key == value, AuditEventTable.event_id < cursor.event_id),
        )
    return or_(
        key > value,
        and_(key == value, AuditEventTable.event_id > cursor.event_id),
    )


class AuditEventRepository:
    """Repository for audit event storage, lookup and aggregation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Writes
    # =========================================================================

    async def insert(self, event: AuditEvent) -> AuditEvent:
        """Append a new event."""
        metadata = dict(event.metadata)
        resource_id = metadata.get("resourceId")
        row = AuditEventTable(
            event_id=event.event_id,
            timestamp=event.timestamp,
            user_id=event.user_id,
            user_email=event.user_email,
            user_name=event.user_name,
            user_role=event.user_role,
            company_id=event.company_id,
            company_name=event.company_name,
            action=event.action,
            category=event.category.value,
            severity=event.severity.value,
            description=event.description,
            status=event.status.value,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            device=event.device,
            location=event.location,
            session_id=event.session_id,
            request_id=event.request_id,
            event_metadata=metadata,
            resource_type=metadata.get("resourceType"),
            resource_id=str(resource_id) if resource_id is not None else None,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def append_annotation(self, event_id: UUID, annotation: Annotation) -> Annotation | None:
        """
        Append an annotation to an event's metadata.

        The row is locked for the read-modify-write so concurrent annotators
        cannot overwrite each other's appends. Returns None if the event is unknown.
        """
        result = await self.session.execute(
            select(AuditEventTable)
            .where(AuditEventTable.event_id == event_id)
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None

        metadata = dict(row.event_metadata or {})
        metadata["annotations"] = [*metadata.get("annotations", []), annotation.to_dict()]
        # Reassign so the JSON column is flagged dirty.
        row.event_metadata = metadata
        await self.session.flush()
        return annotation

    async def ids_matching(
        self,
        conditions: Sequence[ColumnElement[bool]],
        limit: int,
    ) -> list[UUID]:
        """Oldest-first ids matching raw conditions, for batched deletes."""
        result = await self.session.execute(
            select(AuditEventTable.event_id)
            .where(*conditions)
            .order_by(AuditEventTable.timestamp.asc(), AuditEventTable.event_id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_ids(self, event_ids: Sequence[UUID]) -> int:
        """Delete events by id. Returns rows removed."""
        if not event_ids:
            return 0
        result = await self.session.execute(
            delete(AuditEventTable).where(AuditEventTable.event_id.in_(list(event_ids)))
        )
        return result.rowcount or 0

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, event_id: UUID) -> AuditEvent | None:
        """Get an event by ID."""
        result = await self.session.execute(
            select(AuditEventTable).where(AuditEventTable.event_id == event_id)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def count(self, f: AuditFilter) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AuditEventTable).where(*filter_conditions(f))
        )
        return int(result.scalar_one())

    async def query(
        self,
        f: AuditFilter,
        pagination: Pagination,
        sort: SortSpec,
    ) -> tuple[list[AuditEvent], int]:
        """Offset page plus total count for a filter."""
        total = await self.count(f)
        result = await self.session.execute(
            select(AuditEventTable)
            .where(*filter_conditions(f))
            .order_by(*_order_by(sort))
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        return [self._row_to_model(r) for r in result.scalars().all()], total

    async def seek(
        self,
        f: AuditFilter,
        sort: SortSpec,
        after: Cursor | None,
        limit: int,
    ) -> list[AuditEvent]:
        """Keyset page: rows after ``after`` in (sort field, event_id) order."""
        query = select(AuditEventTable).where(*filter_conditions(f))
        if after is not None:
            query = query.where(_seek_condition(sort, after))
        query = query.order_by(*_order_by(sort)).limit(limit)

        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def scan_activity(
        self,
        f: AuditFilter,
        after: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[tuple[datetime, UUID, str]]:
        """Oldest-first keyset scan of (timestamp, event_id, category) for bucketing."""
        t = AuditEventTable
        query = select(t.timestamp, t.event_id, t.category).where(*filter_conditions(f))
        if after is not None:
            ts, event_id = after
            query = query.where(or_(t.timestamp > ts, and_(t.timestamp == ts, t.event_id > event_id)))
        query = query.order_by(t.timestamp.asc(), t.event_id.asc()).limit(limit)

        result = await self.session.execute(query)
        return [(ensure_utc(ts), event_id, category) for ts, event_id, category in result.all()]

    async def related(self, event: AuditEvent, limit: int = 10) -> list[AuditEvent]:
        """Other events touching the same resource, newest first."""
        resource_id = event.metadata.get("resourceId")
        resource_type = event.metadata.get("resourceType")
        if resource_id is None:
            return []

        result = await self.session.execute(
            select(AuditEventTable)
            .where(
                AuditEventTable.resource_id == str(resource_id),
                AuditEventTable.resource_type == resource_type,
                AuditEventTable.event_id != event.event_id,
            )
            .order_by(AuditEventTable.timestamp.desc(), AuditEventTable.event_id.desc())
            .limit(limit)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    # =========================================================================
    # Aggregations
    # =========================================================================

    async def stats(self, f: AuditFilter) -> dict[str, int]:
        """Headline counters for a filter."""
        t = AuditEventTable

        def _count_where(condition: ColumnElement[bool]):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        result = await self.session.execute(
            select(
                func.count().label("total"),
                _count_where(t.severity == Severity.CRITICAL.value).label("critical"),
                _count_where(t.category == Category.SECURITY.value).label("security"),
                _count_where(t.status == EventStatus.FAILED.value).label("failed"),
                _count_where(t.category == Category.ADMIN.value).label("admin"),
                _count_where(t.category == Category.USER.value).label("user"),
            )
            .select_from(t)
            .where(*filter_conditions(f))
        )
        row = result.one()
        return {key: int(value or 0) for key, value in row._mapping.items()}

    async def group_counts(
        self,
        f: AuditFilter,
        field: str,
        limit: int | None = None,
    ) -> list[tuple[Any, int, datetime]]:
        """(key, count, last activity) grouped on one column; busiest first, ties by recency."""
        column = getattr(AuditEventTable, field)
        count = func.count().label("count")
        last = func.max(AuditEventTable.timestamp).label("last_activity")
        query = (
            select(column, count, last)
            .where(*filter_conditions(f))
            .group_by(column)
            .order_by(count.desc(), last.desc())
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [(key, int(n), ensure_utc(ts)) for key, n, ts in result.all()]

    async def top_actors(self, f: AuditFilter, limit: int) -> list[dict[str, Any]]:
        t = AuditEventTable
        count = func.count().label("count")
        last = func.max(t.timestamp).label("last_activity")
        result = await self.session.execute(
            select(
                t.user_id,
                func.max(t.user_name).label("user_name"),
                func.max(t.user_email).label("user_email"),
                count,
                func.min(t.timestamp).label("first_activity"),
                last,
            )
            .where(*filter_conditions(f))
            .group_by(t.user_id)
            .order_by(count.desc(), last.desc())
            .limit(limit)
        )
        return [self._activity_row(row._mapping) for row in result.all()]

    async def top_tenants(self, f: AuditFilter, limit: int) -> list[dict[str, Any]]:
        t = AuditEventTable
        count = func.count().label("count")
        last = func.max(t.timestamp).label("last_activity")
        result = await self.session.execute(
            select(
                t.company_id,
                func.max(t.company_name).label("company_name"),
                count,
                func.count(distinct(t.user_id)).label("unique_users"),
                func.min(t.timestamp).label("first_activity"),
                last,
            )
            .where(*filter_conditions(f))
            .group_by(t.company_id)
            .order_by(count.desc(), last.desc())
            .limit(limit)
        )
        return [self._activity_row(row._mapping) for row in result.all()]

    async def security_breakdown(self, f: AuditFilter) -> list[tuple[str, int, int]]:
        """(severity, count, failed) for security-category events."""
        t = AuditEventTable
        failed = func.coalesce(func.sum(case((t.status == EventStatus.FAILED.value, 1), else_=0)), 0)
        result = await self.session.execute(
            select(t.severity, func.count(), failed)
            .where(*filter_conditions(f.with_(category=Category.SECURITY)))
            .group_by(t.severity)
        )
        return [(severity, int(n), int(failed_n)) for severity, n, failed_n in result.all()]

    async def activity_window(self, f: AuditFilter) -> tuple[datetime | None, datetime | None]:
        """(first, last) timestamps of matching events."""
        result = await self.session.execute(
            select(func.min(AuditEventTable.timestamp), func.max(AuditEventTable.timestamp))
            .where(*filter_conditions(f))
        )
        first, last = result.one()
        return (
            ensure_utc(first) if first is not None else None,
            ensure_utc(last) if last is not None else None,
        )

    async def distinct_values(self, f: AuditFilter, field: str) -> list[Any]:
        column = getattr(AuditEventTable, field)
        result = await self.session.execute(
            select(column).where(*filter_conditions(f)).distinct().order_by(column)
        )
        return [value for value in result.scalars().all()]

    def _activity_row(self, mapping: Any) -> dict[str, Any]:
        row = dict(mapping)
        for key in ("first_activity", "last_activity"):
            if row.get(key) is not None:
                row[key] = ensure_utc(row[key])
        row["count"] = int(row["count"])
        if "unique_users" in row:
            row["unique_users"] = int(row["unique_users"])
        return row

    def _row_to_model(self, row: AuditEventTable) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            timestamp=ensure_utc(row.timestamp),
            user_id=row.user_id,
            user_email=row.user_email,
            user_name=row.user_name,
            user_role=row.user_role,
            company_id=row.company_id,
            company_name=row.company_name,
            action=row.action,
            category=Category(row.category),
            severity=Severity(row.severity),
            description=row.description,
            status=EventStatus(row.status),
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            device=row.device,
            location=row.location,
            session_id=row.session_id,
            request_id=row.request_id,
            metadata=dict(row.event_metadata or {}),
        )
