"""
Ingestion Tests

Recording classifies, enriches and persists events, and never raises to the
producer. The dispatcher is bounded and drops the oldest pending record
when full.
"""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from auditgate.db.repositories import AuditEventRepository
from auditgate.engine.ingestion import (
    EventDispatcher,
    IngestionService,
    get_dispatcher,
    start_dispatcher,
    stop_dispatcher,
)
from auditgate.models import (
    ActorInfo,
    Category,
    EventContext,
    EventStatus,
    Severity,
    TenantInfo,
)
from auditgate.models.filter import AuditFilter
from auditgate.observability.metrics import metrics


class FakeDirectory:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.user_lookups: list[str] = []
        self.tenant_lookups: list[str] = []

    async def get_user(self, user_id):
        self.user_lookups.append(user_id)
        if self.fail:
            raise RuntimeError("directory down")
        return ActorInfo(
            user_id=user_id,
            email="grace@example.com",
            name="Grace Hopper",
            role="manager",
            company_id="c-42",
        )

    async def get_tenant(self, company_id):
        self.tenant_lookups.append(company_id)
        if self.fail:
            raise RuntimeError("directory down")
        return TenantInfo(company_id=company_id, name="Compilers Inc")


class FailingSessionFactory:
    """Every attempt to open a session fails like a dropped connection."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        raise OperationalError("INSERT INTO audit_events", {}, Exception("connection refused"))


@pytest.mark.asyncio
async def test_login_failed_is_security_high(session_factory, session):
    service = IngestionService(session_factory)

    event = await service.record_event("login_failed", "Bad password for ada@example.com")

    assert event is not None
    assert event.category == Category.SECURITY
    assert event.severity == Severity.HIGH

    stored = await AuditEventRepository(session).get(event.event_id)
    assert stored is not None
    assert stored.category == Category.SECURITY
    assert stored.severity == Severity.HIGH
    assert stored.timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_task_created_is_user_low_with_defaults(session_factory):
    service = IngestionService(session_factory)

    event = await service.record_event("task_created", "Created task #12")

    assert event.category == Category.USER
    assert event.severity == Severity.LOW
    assert event.status == EventStatus.SUCCESS
    # No actor supplied: system placeholders.
    assert event.user_id is None
    assert (event.user_email, event.user_name, event.user_role) == ("system", "System", "system")
    assert event.company_name == ""
    assert event.metadata["resourceType"] == "task"


@pytest.mark.asyncio
async def test_explicit_override_pair_wins(session_factory):
    service = IngestionService(session_factory)

    event = await service.record_event(
        "task_created", "Imported tasks", category="admin", severity="high"
    )
    assert (event.category, event.severity) == (Category.ADMIN, Severity.HIGH)

    partial = await service.record_event("task_created", "Imported tasks", severity="critical")
    assert (partial.category, partial.severity) == (Category.USER, Severity.LOW)


@pytest.mark.asyncio
async def test_invalid_override_falls_back_to_table(session_factory):
    service = IngestionService(session_factory)

    event = await service.record_event("login_failed", "x", category="nope", severity="high")

    assert event is not None
    assert (event.category, event.severity) == (Category.SECURITY, Severity.HIGH)


@pytest.mark.asyncio
async def test_complete_actor_skips_directory(session_factory):
    directory = FakeDirectory()
    service = IngestionService(session_factory, directory=directory)

    event = await service.record_event(
        "user_updated",
        "Changed display name",
        actor=ActorInfo(user_id="u-7", email="a@b.c", name="A", role="admin"),
        tenant=TenantInfo(company_id="c-1", name="Acme"),
    )

    assert directory.user_lookups == []
    assert directory.tenant_lookups == []
    assert (event.user_email, event.company_name) == ("a@b.c", "Acme")


@pytest.mark.asyncio
async def test_partial_actor_is_enriched_from_directory(session_factory):
    directory = FakeDirectory()
    service = IngestionService(session_factory, directory=directory)

    event = await service.record_event(
        "leave_requested",
        "Requested two days off",
        actor=ActorInfo(user_id="u-9"),
        context=EventContext(ip_address="10.1.1.1", user_agent="Mozilla/5.0 (iPhone)"),
    )

    assert directory.user_lookups == ["u-9"]
    assert directory.tenant_lookups == ["c-42"]
    assert event.user_email == "grace@example.com"
    assert event.user_role == "manager"
    assert event.company_id == "c-42"
    assert event.company_name == "Compilers Inc"
    assert event.device == "Mobile"


@pytest.mark.asyncio
async def test_directory_failure_uses_placeholders(session_factory):
    service = IngestionService(session_factory, directory=FakeDirectory(fail=True))

    event = await service.record_event(
        "task_updated",
        "Moved task",
        actor=ActorInfo(user_id="u-9"),
        tenant=TenantInfo(company_id="c-3"),
    )

    assert event is not None
    assert event.user_id == "u-9"
    assert (event.user_email, event.user_name, event.user_role) == ("system", "System", "system")
    assert event.company_id == "c-3"
    assert event.company_name == ""


@pytest.mark.asyncio
async def test_non_json_metadata_is_stringified(session_factory, session):
    service = IngestionService(session_factory)

    event = await service.record_event(
        "plan_upgraded", "Upgraded plan", metadata={"amount": Decimal("9.99"), "obj": object()}
    )

    assert event is not None
    stored = await AuditEventRepository(session).get(event.event_id)
    assert stored.metadata["amount"] == "9.99"
    assert isinstance(stored.metadata["obj"], str)
    assert stored.metadata["resourceType"] == "subscription"


@pytest.mark.asyncio
async def test_persist_failure_is_retried_then_dropped():
    factory = FailingSessionFactory()
    service = IngestionService(factory, max_retries=3, backoff_ms=1)

    result = await service.record_event("login_failed", "Bad password")

    assert result is None, "Dropped events are reported as None, not raised"
    assert factory.calls == 3
    assert metrics.counter_value("ingest.retried") == 2
    assert metrics.counter_value("ingest.dropped") == 1
    assert metrics.counter_value("ingest.recorded") == 0


@pytest.mark.asyncio
async def test_unbuildable_record_is_dropped_not_raised(session_factory, session):
    service = IngestionService(session_factory)

    bad_keys = await service.record_event("task_created", "d", metadata={uuid4(): "x"})
    no_description = await service.record_event("task_created", None)

    assert bad_keys is None
    assert no_description is None
    assert metrics.counter_value("ingest.dropped") == 2
    assert await AuditEventRepository(session).count(AuditFilter()) == 0


class RecordingService:
    def __init__(self):
        self.recorded: list[str] = []

    async def record_event(self, action, description, **kwargs):
        self.recorded.append(action)


@pytest.mark.asyncio
async def test_dispatcher_drops_oldest_when_full():
    service = RecordingService()
    dispatcher = EventDispatcher(service, maxsize=2, workers=1)

    dispatcher.submit("first", "1")
    dispatcher.submit("second", "2")
    dispatcher.submit("third", "3")

    assert dispatcher.qsize == 2
    assert dispatcher.dropped == 1
    assert metrics.counter_value("ingest.queue.dropped_oldest") == 1

    dispatcher.start()
    await asyncio.wait_for(dispatcher.join(), timeout=5)
    await dispatcher.stop()

    assert service.recorded == ["second", "third"]
    assert not dispatcher.running


@pytest.mark.asyncio
async def test_dispatcher_persists_through_service(session_factory, session):
    dispatcher = EventDispatcher(IngestionService(session_factory), maxsize=10, workers=2)
    dispatcher.start()

    for i in range(5):
        dispatcher.submit("task_created", f"Task {i}")
    await dispatcher.stop(drain=True)

    assert await AuditEventRepository(session).count(AuditFilter(action="task_created")) == 5
    assert metrics.counter_value("ingest.recorded") == 5


@pytest.mark.asyncio
async def test_process_dispatcher_lifecycle(session_factory, session):
    assert get_dispatcher() is None

    dispatcher = await start_dispatcher(IngestionService(session_factory))
    assert get_dispatcher() is dispatcher
    get_dispatcher().submit("login_success", "Signed in", actor=ActorInfo(user_id="u-1"))
    await stop_dispatcher()

    assert get_dispatcher() is None
    assert await AuditEventRepository(session).count(AuditFilter(action="login_success")) == 1
