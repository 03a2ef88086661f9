"""
Export Tests

Exports are bounded, snapshot-consistent and encode the same columns in
every tabular format.
"""

import csv
import io
import json
from uuid import uuid4

import pytest
from sqlalchemy import insert

from auditgate.db.tables import AuditEventTable
from auditgate.engine.export import EXPORT_COLUMNS, Exporter, parse_format
from auditgate.engine.query import QueryEngine
from auditgate.errors import ExportLimitExceeded, ValidationError
from auditgate.models import Category, ExportFormat
from auditgate.models.filter import AuditFilter
from auditgate.observability.metrics import metrics
from auditgate.utils.time import utc_now


@pytest.mark.asyncio
async def test_csv_header_and_rows(session, store, make_event, minutes_ago):
    events = await store(
        make_event(action="login_failed", category=Category.SECURITY, timestamp=minutes_ago(3)),
        make_event(description='Quoted "name", with comma', timestamp=minutes_ago(2)),
        make_event(user_id=None, session_id="s-1", timestamp=minutes_ago(1)),
    )

    stream = await Exporter(QueryEngine(session)).export(fmt="csv")
    body = (await stream.read_all()).decode("utf-8")

    assert stream.row_count == 3
    assert stream.media_type == "text/csv"
    rows = list(csv.reader(io.StringIO(body)))
    assert tuple(rows[0]) == EXPORT_COLUMNS
    assert len(rows) == 4

    by_id = {row[0]: dict(zip(EXPORT_COLUMNS, row)) for row in rows[1:]}
    for event in events:
        exported = by_id[str(event.event_id)]
        expected = event.to_dict()
        for column in EXPORT_COLUMNS:
            value = expected[column]
            assert exported[column] == ("" if value is None else str(value)), column


@pytest.mark.asyncio
async def test_tsv_uses_tabs(session, store, make_event):
    await store(make_event(description="tab\tinside"))

    stream = await Exporter(QueryEngine(session)).export(fmt=ExportFormat.TSV)
    body = (await stream.read_all()).decode("utf-8")

    rows = list(csv.reader(io.StringIO(body), delimiter="\t"))
    assert tuple(rows[0]) == EXPORT_COLUMNS
    assert dict(zip(EXPORT_COLUMNS, rows[1]))["description"] == "tab\tinside"
    assert stream.filename.endswith(".tsv")


@pytest.mark.asyncio
async def test_json_export_and_metadata_column(session, store, make_event):
    await store(make_event(metadata={"resourceType": "task", "resourceId": "t-1"}), make_event())
    exporter = Exporter(QueryEngine(session))

    listed = (await QueryEngine(session).list_events()).to_dict()["events"]
    exported = json.loads(await (await exporter.export(fmt="json")).read_all())
    plain_csv = (await (await exporter.export(fmt="csv")).read_all()).decode()
    csv_body = (await (await exporter.export(fmt="csv", include_metadata=True)).read_all()).decode()

    assert len(exported) == 2
    assert all(set(row) == set(listed[0]) for row in exported)
    assert any(row["metadata"].get("resourceId") == "t-1" for row in exported)
    assert "metadata" not in next(csv.reader(io.StringIO(plain_csv)))
    header = next(csv.reader(io.StringIO(csv_body)))
    assert header[-1] == "metadata"


@pytest.mark.asyncio
async def test_empty_export_still_has_header(session, engine):
    stream = await Exporter(QueryEngine(session)).export(AuditFilter(action="nothing"), "csv")

    assert (await stream.read_all()).decode() == ",".join(EXPORT_COLUMNS) + "\n"
    empty_json = await (await Exporter(QueryEngine(session)).export(fmt="json")).read_all()
    assert json.loads(empty_json) == []


@pytest.mark.asyncio
async def test_limit_exceeded_before_any_output(session, engine):
    now = utc_now()
    rows = [
        {
            "event_id": uuid4(),
            "timestamp": now,
            "user_email": "bulk@example.com",
            "user_name": "Bulk",
            "user_role": "user",
            "company_name": "",
            "action": "task_created",
            "category": "user",
            "severity": "low",
            "description": "bulk",
            "status": "success",
            "ip_address": "",
            "user_agent": "",
            "device": "",
            "location": "",
            "event_metadata": {},
        }
        for _ in range(10_001)
    ]
    await session.execute(insert(AuditEventTable), rows)
    await session.commit()

    with pytest.raises(ExportLimitExceeded) as exc_info:
        await Exporter(QueryEngine(session), max_rows=10_000).export(fmt="csv")

    assert exc_info.value.limit == 10_000
    assert exc_info.value.matched == 10_001
    assert metrics.counter_value("export.rows") == 0


@pytest.mark.asyncio
async def test_export_excludes_events_ingested_after_start(session, store, make_event, minutes_ago):
    await store(*[make_event(timestamp=minutes_ago(m)) for m in range(1, 8)])

    stream = await Exporter(QueryEngine(session), batch_size=2).export(fmt="json")
    chunks = stream.__aiter__()
    first = await chunks.__anext__()
    await store(make_event(timestamp=utc_now()), make_event(timestamp=utc_now()))
    rest = b"".join([chunk async for chunk in chunks])

    exported = json.loads(first + rest)
    assert len(exported) == 7
    assert stream.row_count == 7


@pytest.mark.asyncio
async def test_late_commit_inside_snapshot_does_not_exceed_row_count(
    session, store, make_event, minutes_ago
):
    await store(*[make_event(timestamp=minutes_ago(m)) for m in range(1, 4)])

    stream = await Exporter(QueryEngine(session), batch_size=2).export(fmt="csv")
    chunks = stream.__aiter__()
    first = await chunks.__anext__()
    # Stamped before the export started but committed after it was counted.
    await store(make_event(timestamp=minutes_ago(30)))
    rest = b"".join([chunk async for chunk in chunks])

    rows = list(csv.reader(io.StringIO((first + rest).decode("utf-8"))))
    assert stream.row_count == 3
    assert len(rows) == 1 + 3
    assert metrics.counter_value("export.rows") == 3


@pytest.mark.asyncio
async def test_export_filter_is_applied(session, store, make_event):
    await store(make_event(category=Category.ADMIN), make_event(category=Category.USER))

    stream = await Exporter(QueryEngine(session)).export(AuditFilter(category="admin"), "json")

    assert [row["category"] for row in json.loads(await stream.read_all())] == ["admin"]
    assert metrics.counter_value("export.rows") == 1


def test_unknown_format_is_rejected():
    assert parse_format("CSV") == ExportFormat.CSV
    with pytest.raises(ValidationError):
        parse_format("xlsx")
