"""
Pytest fixtures for AuditGate tests.
"""

import os
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing auditgate modules.
os.environ.setdefault("AUDITGATE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("AUDITGATE_ENV", "development")
os.environ.setdefault("AUDITGATE_DATABASE_URL", "sqlite+aiosqlite:///./auditgate_test.db")
os.environ.setdefault("AUDITGATE_RETENTION_ENABLED", "false")

from auditgate.db import base as db_base
from auditgate.db.repositories import AuditEventRepository
from auditgate.models import AuditEvent, Category, EventStatus, Severity
from auditgate.observability.metrics import metrics
from auditgate.utils.time import utc_now
import auditgate.db.tables  # noqa: F401


@pytest.fixture
async def engine(tmp_path):
    """Point auditgate.db.base at a fresh sqlite file for this test."""
    db_base.configure(f"sqlite+aiosqlite:///{tmp_path / 'auditgate.db'}")
    async with db_base.engine.begin() as conn:
        await conn.run_sync(db_base.Base.metadata.create_all)

    yield db_base.engine
    await db_base.engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db_base.async_session_factory


@pytest.fixture
async def session(session_factory):
    """Provide a database session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_event():
    """Build an AuditEvent with sensible defaults; keyword overrides win."""

    def _make(**overrides: Any) -> AuditEvent:
        data: dict[str, Any] = {
            "event_id": uuid4(),
            "timestamp": utc_now(),
            "user_id": "u-1",
            "user_email": "ada@example.com",
            "user_name": "Ada Lovelace",
            "user_role": "admin",
            "company_id": "c-1",
            "company_name": "Analytical Engines Ltd",
            "action": "task_created",
            "category": Category.USER,
            "severity": Severity.LOW,
            "description": "Created a task",
            "status": EventStatus.SUCCESS,
            "ip_address": "10.0.0.1",
            "user_agent": "Mozilla/5.0",
            "device": "Desktop",
        }
        data.update(overrides)
        return AuditEvent(**data)

    return _make


@pytest.fixture
def store(session_factory):
    """Insert events in their own committed transaction."""

    async def _store(*events: AuditEvent) -> list[AuditEvent]:
        async with session_factory() as session:
            repo = AuditEventRepository(session)
            stored = [await repo.insert(e) for e in events]
            await session.commit()
        return stored

    return _store


@pytest.fixture
def minutes_ago():
    now = utc_now()

    def _ago(minutes: float) -> datetime:
        return now - timedelta(minutes=minutes)

    return _ago


@pytest.fixture
async def client(engine):
    """Async test client against the app; lifespan is not run."""
    from auditgate.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
