"""
Query Engine Tests

Filters AND together, pages are stable and complete, and keyset iteration
is not disturbed by concurrent inserts.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from auditgate.db.repositories import _seek_condition
from auditgate.engine.query import QueryEngine
from auditgate.errors import EventNotFound, InvalidFilter
from auditgate.models import Category, EventStatus, Severity, SortOrder
from auditgate.models.filter import AuditFilter, Cursor, Pagination, SortSpec
from auditgate.utils.time import utc_now


@pytest.mark.asyncio
async def test_category_and_date_range_filter(session, store, make_event, minutes_ago):
    d1, d2 = minutes_ago(120), minutes_ago(30)
    await store(
        make_event(category=Category.ADMIN, action="user_created", timestamp=minutes_ago(60)),
        make_event(category=Category.ADMIN, action="user_updated", timestamp=minutes_ago(90)),
        make_event(category=Category.ADMIN, action="user_deleted", timestamp=minutes_ago(200)),
        make_event(category=Category.ADMIN, action="company_updated", timestamp=minutes_ago(5)),
        make_event(category=Category.USER, action="task_created", timestamp=minutes_ago(60)),
    )

    page = await QueryEngine(session).list_events(
        AuditFilter(category=Category.ADMIN, start_date=d1, end_date=d2)
    )

    assert page.total == 2
    assert {e.action for e in page.events} == {"user_created", "user_updated"}
    for event in page.events:
        assert event.category == Category.ADMIN
        assert d1 <= event.timestamp <= d2


@pytest.mark.asyncio
async def test_date_bounds_are_inclusive(session, store, make_event, minutes_ago):
    edge = minutes_ago(10)
    await store(make_event(timestamp=edge))

    page = await QueryEngine(session).list_events(AuditFilter(start_date=edge, end_date=edge))

    assert page.total == 1


@pytest.mark.asyncio
async def test_search_term_is_case_insensitive_across_fields(session, store, make_event):
    await store(
        make_event(user_name="Grace HOPPER"),
        make_event(user_email="hopper@navy.mil", user_name="G"),
        make_event(description="Reset password for hopper"),
        make_event(company_name="Hopper Compilers"),
        make_event(action="hopper_sync"),
        make_event(user_name="Someone Else", user_email="x@y.z", description="nothing"),
    )

    page = await QueryEngine(session).list_events(AuditFilter(search_term="  hopper "))

    assert page.total == 5


@pytest.mark.asyncio
async def test_search_term_treats_wildcards_literally(session, store, make_event):
    await store(make_event(description="100% done"), make_event(description="1000 done"))

    page = await QueryEngine(session).list_events(AuditFilter(search_term="100%"))

    assert page.total == 1


@pytest.mark.asyncio
async def test_severity_set_and_status_filters(session, store, make_event):
    await store(
        make_event(severity=Severity.LOW),
        make_event(severity=Severity.HIGH, status=EventStatus.FAILED),
        make_event(severity=Severity.CRITICAL),
        make_event(severity=Severity.HIGH),
    )
    query = QueryEngine(session)

    high_up = await query.list_events(AuditFilter(severity=Severity.at_least(Severity.HIGH)))
    failed_high = await query.list_events(AuditFilter(severity="high", status="failed"))

    assert high_up.total == 3
    assert failed_high.total == 1


@pytest.mark.asyncio
async def test_pages_concatenate_to_total_without_duplicates(session, store, make_event):
    # Many identical timestamps force the id tiebreaker to do its job.
    ts = utc_now() - timedelta(minutes=1)
    await store(*[make_event(timestamp=ts if i % 2 else ts - timedelta(seconds=i)) for i in range(23)])

    query = QueryEngine(session)
    seen = []
    page_no = 1
    while True:
        page = await query.list_events(AuditFilter(), Pagination(page=page_no, limit=5), SortSpec())
        seen.extend(e.event_id for e in page.events)
        if not page.has_next:
            break
        page_no += 1

    assert page.total == 23
    assert page.pages == 5
    assert len(seen) == 23
    assert len(set(seen)) == 23, "No event may appear on two pages"


@pytest.mark.asyncio
async def test_pagination_metadata(session, store, make_event):
    await store(*[make_event() for _ in range(7)])

    page = await QueryEngine(session).list_events(AuditFilter(), Pagination(page=2, limit=3))

    assert page.pagination() == {
        "page": 2,
        "limit": 3,
        "total": 7,
        "pages": 3,
        "hasNext": True,
        "hasPrev": True,
    }


@pytest.mark.asyncio
async def test_default_sort_is_newest_first(session, store, make_event, minutes_ago):
    await store(*[make_event(timestamp=minutes_ago(m)) for m in (30, 10, 20)])

    page = await QueryEngine(session).list_events()

    stamps = [e.timestamp for e in page.events]
    assert stamps == sorted(stamps, reverse=True)


@pytest.mark.asyncio
async def test_sort_by_other_field_ascending(session, store, make_event):
    await store(*[make_event(action=a) for a in ("meeting_created", "admin_login", "task_created")])

    page = await QueryEngine(session).list_events(
        AuditFilter(), Pagination(), SortSpec(field="action", order="asc")
    )

    assert [e.action for e in page.events] == ["admin_login", "meeting_created", "task_created"]


@pytest.mark.asyncio
async def test_severity_sorts_by_escalation_level(session, store, make_event):
    await store(
        *[make_event(severity=s) for s in (Severity.MEDIUM, Severity.CRITICAL, Severity.LOW, Severity.HIGH)],
        make_event(severity=Severity.HIGH),
    )
    query = QueryEngine(session)
    sort = SortSpec(field="severity", order="desc")

    page = await query.list_events(AuditFilter(), Pagination(limit=10), sort)
    first = await query.list_events(AuditFilter(), Pagination(limit=2), sort)
    rest = await query.list_events(
        AuditFilter(), Pagination(page=2, limit=10), sort, cursor=Cursor.decode(first.next_cursor)
    )

    assert [e.severity for e in page.events] == [
        Severity.CRITICAL,
        Severity.HIGH,
        Severity.HIGH,
        Severity.MEDIUM,
        Severity.LOW,
    ]
    assert [e.event_id for e in first.events + rest.events] == [e.event_id for e in page.events]


def test_severity_cursor_must_name_a_severity():
    with pytest.raises(InvalidFilter):
        _seek_condition(SortSpec(field="severity"), Cursor(value="apocalyptic", event_id=uuid4()))


@pytest.mark.asyncio
async def test_cursor_continuation_ignores_new_inserts(session, store, make_event, minutes_ago):
    await store(*[make_event(timestamp=minutes_ago(m)) for m in range(10, 20)])
    query = QueryEngine(session)

    first = await query.list_events(AuditFilter(), Pagination(limit=4))
    # Newer rows land at the head of a newest-first listing.
    await store(*[make_event(timestamp=minutes_ago(1)) for _ in range(3)])
    second = await query.list_events(
        AuditFilter(), Pagination(page=2, limit=4), cursor=Cursor.decode(first.next_cursor)
    )

    first_ids = {e.event_id for e in first.events}
    assert not first_ids & {e.event_id for e in second.events}
    assert all(e.timestamp < first.events[-1].timestamp for e in second.events)


@pytest.mark.asyncio
async def test_iterate_is_stable_under_concurrent_inserts(session, store, make_event, minutes_ago):
    original = await store(*[make_event(timestamp=minutes_ago(m)) for m in range(100, 125)])
    query = QueryEngine(session)

    collected = []
    async for batch in query.iterate(AuditFilter(before=utc_now()), SortSpec(), batch_size=6):
        collected.extend(e.event_id for e in batch)
        await store(make_event(timestamp=utc_now()))

    assert len(collected) == len(set(collected))
    assert set(collected) == {e.event_id for e in original}


@pytest.mark.asyncio
async def test_stats(session, store, make_event):
    await store(
        make_event(category=Category.SECURITY, severity=Severity.CRITICAL, status=EventStatus.FAILED),
        make_event(category=Category.SECURITY, severity=Severity.HIGH),
        make_event(category=Category.ADMIN),
        make_event(category=Category.USER, status=EventStatus.FAILED),
        make_event(category=Category.USER, company_id="c-other"),
    )

    stats = await QueryEngine(session).stats(AuditFilter(company_id="c-1"))

    assert stats.to_dict() == {
        "totalLogs": 4,
        "criticalLogs": 1,
        "securityLogs": 2,
        "failedLogs": 2,
        "adminLogs": 1,
        "userLogs": 1,
    }


@pytest.mark.asyncio
async def test_get_event_with_related(session, store, make_event):
    target, sibling, _ = await store(
        make_event(metadata={"resourceType": "task", "resourceId": "t-1"}),
        make_event(metadata={"resourceType": "task", "resourceId": "t-1"}),
        make_event(metadata={"resourceType": "task", "resourceId": "t-2"}),
    )

    details = await QueryEngine(session).get_event(target.event_id, include_related=True)

    assert details.event.event_id == target.event_id
    assert [e.event_id for e in details.related] == [sibling.event_id]


@pytest.mark.asyncio
async def test_get_unknown_event_raises(session, engine):
    with pytest.raises(EventNotFound):
        await QueryEngine(session).get_event(uuid4())


def test_start_after_end_is_invalid():
    now = utc_now()
    with pytest.raises(InvalidFilter):
        AuditFilter(start_date=now, end_date=now - timedelta(days=1))


def test_parse_rejects_unknown_fields_and_values():
    with pytest.raises(InvalidFilter):
        AuditFilter.parse(colour="red")
    with pytest.raises(InvalidFilter):
        AuditFilter.parse(category="finance")
    with pytest.raises(InvalidFilter):
        AuditFilter.parse(severity=["high", "apocalyptic"])


def test_sort_spec_validation():
    assert SortSpec(field="userName", order=-1) == SortSpec(field="user_name", order=SortOrder.DESC)
    assert SortSpec(order="ASC").order == SortOrder.ASC
    with pytest.raises(InvalidFilter):
        SortSpec(field="password")
    with pytest.raises(InvalidFilter):
        SortSpec(order="sideways")


def test_pagination_validation():
    assert Pagination(page=3, limit=20).offset == 40
    with pytest.raises(InvalidFilter):
        Pagination(page=0)
    with pytest.raises(InvalidFilter):
        Pagination(limit=0)


def test_cursor_decode_rejects_garbage():
    cursor = Cursor(value=utc_now(), event_id=uuid4())
    assert Cursor.decode(cursor.encode()) == cursor
    for token in ("not-base64!!", "e30=", ""):
        with pytest.raises(InvalidFilter):
            Cursor.decode(token)
