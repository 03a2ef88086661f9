"""
Retention Tests

Age-based sweeps prune only low and medium severity events, in batches,
and running a sweep twice changes nothing the second time.
"""

import asyncio
from datetime import timedelta

import pytest

from auditgate.config import settings
from auditgate.db.repositories import AuditEventRepository
from auditgate.engine.retention import RetentionSweeper
from auditgate.errors import ValidationError
from auditgate.models import Severity
from auditgate.models.filter import AuditFilter, Pagination, SortSpec
from auditgate.observability.metrics import metrics
from auditgate.tasks import sweep
from auditgate.tasks.sweep import start_retention_sweep, stop_retention_sweep
from auditgate.utils.time import utc_now


@pytest.fixture
def seeded(store, make_event):
    async def _seed():
        old = utc_now() - timedelta(days=120)
        recent = utc_now() - timedelta(days=5)
        return await store(
            *[make_event(severity=Severity.LOW, timestamp=old - timedelta(minutes=i)) for i in range(7)],
            make_event(severity=Severity.MEDIUM, timestamp=old),
            make_event(severity=Severity.HIGH, action="login_failed", timestamp=old),
            make_event(severity=Severity.CRITICAL, action="user_deleted", timestamp=old),
            make_event(severity=Severity.LOW, timestamp=recent),
        )

    return _seed


@pytest.mark.asyncio
async def test_sweep_prunes_old_low_value_events(session_factory, seeded):
    await seeded()
    sweeper = RetentionSweeper(session_factory)

    deleted = await sweeper.sweep(days_to_keep=90, batch_size=3)

    assert deleted == 8
    assert metrics.counter_value("retention.deleted") == 8
    async with session_factory() as session:
        remaining, total = await AuditEventRepository(session).query(
            AuditFilter(), Pagination(page=1, limit=50), SortSpec()
        )
    assert total == 3
    assert sorted(e.severity.value for e in remaining) == ["critical", "high", "low"]


@pytest.mark.asyncio
async def test_sweep_is_idempotent(session_factory, seeded):
    await seeded()
    sweeper = RetentionSweeper(session_factory)

    first = await sweeper.sweep(days_to_keep=90)
    second = await sweeper.sweep(days_to_keep=90)

    assert first == 8
    assert second == 0


@pytest.mark.asyncio
async def test_high_and_critical_survive_any_age(session_factory, seeded):
    await seeded()

    await RetentionSweeper(session_factory).sweep(days_to_keep=1)

    async with session_factory() as session:
        repo = AuditEventRepository(session)
        assert await repo.count(AuditFilter(severity=["high", "critical"])) == 2
        assert await repo.count(AuditFilter(severity=["low", "medium"])) == 0


@pytest.mark.asyncio
async def test_invalid_days_to_keep(session_factory):
    with pytest.raises(ValidationError):
        await RetentionSweeper(session_factory).sweep(days_to_keep=0)


@pytest.mark.asyncio
async def test_purge_by_filter(session_factory, store, make_event):
    await store(
        make_event(company_id="c-gone", severity=Severity.CRITICAL),
        make_event(company_id="c-gone"),
        make_event(company_id="c-stays"),
    )
    sweeper = RetentionSweeper(session_factory)

    with pytest.raises(ValidationError):
        await sweeper.purge(AuditFilter())
    assert await sweeper.purge(AuditFilter(company_id="c-gone")) == 2

    async with session_factory() as session:
        assert await AuditEventRepository(session).count(AuditFilter()) == 1


@pytest.mark.asyncio
async def test_background_sweep_runs_and_stops(session_factory, seeded, monkeypatch):
    await seeded()
    monkeypatch.setattr(settings, "retention_enabled", True)
    monkeypatch.setattr(settings, "retention_days", 90)
    monkeypatch.setattr(settings, "retention_sweep_interval_seconds", 3600)

    await start_retention_sweep()
    try:
        for _ in range(100):
            if metrics.counter_value("retention.deleted") >= 8:
                break
            await asyncio.sleep(0.05)
    finally:
        await stop_retention_sweep()

    assert metrics.counter_value("retention.deleted") == 8


@pytest.mark.asyncio
async def test_background_sweep_disabled(monkeypatch):
    monkeypatch.setattr(settings, "retention_enabled", False)

    await start_retention_sweep()

    assert sweep._sweep_task is None
