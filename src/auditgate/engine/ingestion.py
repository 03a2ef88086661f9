"""Event ingestion - classify, enrich and persist audit events.

Recording is fire-and-forget for producers: ``record_event`` never raises.
A record that cannot be persisted after the configured retries is logged,
counted and dropped.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.db import base as db_base
from auditgate.db.repositories import AuditEventRepository
from auditgate.engine.classifier import (
    classify,
    device_from_user_agent,
    resolve_classification,
    resource_type_for,
)
from auditgate.integrations.directory_client import DirectoryClient, get_directory_client
from auditgate.models import (
    ActorInfo,
    AuditEvent,
    Category,
    EventContext,
    EventStatus,
    Severity,
    TenantInfo,
)
from auditgate.models.event import SYSTEM_EMAIL, SYSTEM_NAME, SYSTEM_ROLE
from auditgate.observability.metrics import metrics
from auditgate.utils.time import utc_now

logger = logging.getLogger("auditgate.ingest")

SessionFactory = Callable[[], AsyncSession]


class IngestionService:
    """Builds complete AuditEvents from producer input and stores them."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        directory: Optional[DirectoryClient] = None,
        max_retries: Optional[int] = None,
        backoff_ms: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.directory = directory
        self.max_retries = max_retries if max_retries is not None else settings.ingest_max_retries
        self.backoff_ms = backoff_ms if backoff_ms is not None else settings.ingest_retry_backoff_ms

    @property
    def session_factory(self) -> SessionFactory:
        # Resolved per call so db_base.configure() is honoured.
        return self._session_factory or db_base.async_session_factory

    async def record_event(
        self,
        action: str,
        description: str,
        *,
        actor: Optional[ActorInfo] = None,
        tenant: Optional[TenantInfo] = None,
        category: Optional[Category | str] = None,
        severity: Optional[Severity | str] = None,
        status: EventStatus | str = EventStatus.SUCCESS,
        context: Optional[EventContext] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEvent]:
        """
        Record one audit event.

        Returns the stored event, or None when it was dropped because it
        could not be built or persisted.
        """
        try:
            event = await self.build_event(
                action,
                description,
                actor=actor,
                tenant=tenant,
                category=category,
                severity=severity,
                status=status,
                context=context,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Dropping audit event {action}: could not build record: {e}")
            metrics.inc_counter("ingest.dropped")
            return None
        return await self._persist(event)

    async def build_event(
        self,
        action: str,
        description: str,
        *,
        actor: Optional[ActorInfo] = None,
        tenant: Optional[TenantInfo] = None,
        category: Optional[Category | str] = None,
        severity: Optional[Severity | str] = None,
        status: EventStatus | str = EventStatus.SUCCESS,
        context: Optional[EventContext] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """Classify and enrich producer input into an unsaved AuditEvent."""
        try:
            rule = resolve_classification(action, category, severity)
        except ValueError:
            logger.warning(
                f"Ignoring invalid classification override for {action}: "
                f"category={category!r} severity={severity!r}"
            )
            rule = classify(action)

        try:
            event_status = EventStatus(status)
        except ValueError:
            logger.warning(f"Unknown status {status!r} for {action}, recording as success")
            event_status = EventStatus.SUCCESS

        actor = await self._resolve_actor(actor or ActorInfo())
        tenant = await self._resolve_tenant(tenant or TenantInfo(), actor)
        context = context or EventContext()

        return AuditEvent(
            event_id=uuid4(),
            timestamp=utc_now(),
            user_id=actor.user_id,
            user_email=actor.email or SYSTEM_EMAIL,
            user_name=actor.name or SYSTEM_NAME,
            user_role=actor.role or SYSTEM_ROLE,
            company_id=tenant.company_id,
            company_name=tenant.name or "",
            action=action,
            category=rule.category,
            severity=rule.severity,
            description=description,
            status=event_status,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            device=context.device or device_from_user_agent(context.user_agent),
            location=context.location,
            session_id=context.session_id,
            request_id=context.request_id,
            metadata=self._prepare_metadata(action, metadata),
        )

    async def _resolve_actor(self, actor: ActorInfo) -> ActorInfo:
        if actor.is_complete() or not actor.user_id or self.directory is None:
            return actor

        found = await self._lookup("user", self.directory.get_user, actor.user_id)
        if found is None:
            return actor
        return ActorInfo(
            user_id=actor.user_id,
            email=actor.email or found.email,
            name=actor.name or found.name,
            role=actor.role or found.role,
            company_id=actor.company_id or found.company_id,
        )

    async def _resolve_tenant(self, tenant: TenantInfo, actor: ActorInfo) -> TenantInfo:
        company_id = tenant.company_id or actor.company_id
        if tenant.name or not company_id or self.directory is None:
            return TenantInfo(company_id=company_id, name=tenant.name)

        found = await self._lookup("tenant", self.directory.get_tenant, company_id)
        return TenantInfo(company_id=company_id, name=found.name if found else None)

    async def _lookup(self, kind: str, fetch: Callable[[str], Any], key: str) -> Any:
        # Enrichment is best effort; a broken directory must not block recording.
        try:
            return await fetch(key)
        except Exception as e:
            logger.warning(f"Directory {kind} lookup for {key} failed: {e}")
            return None

    def _prepare_metadata(self, action: str, metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
        # Round-trip through JSON so the stored bag only holds JSON values.
        prepared = json.loads(json.dumps(metadata or {}, default=str))
        if "resourceType" not in prepared:
            resource_type = resource_type_for(action)
            if resource_type is not None:
                prepared["resourceType"] = resource_type.value
        return prepared

    async def _persist(self, event: AuditEvent) -> Optional[AuditEvent]:
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.session_factory() as session:
                    stored = await AuditEventRepository(session).insert(event)
                    await session.commit()
                metrics.inc_counter("ingest.recorded")
                return stored
            except Exception as e:
                if attempt >= self.max_retries:
                    logger.error(
                        f"Dropping audit event {event.action} ({event.event_id}) "
                        f"after {attempt} attempts: {e}"
                    )
                    metrics.inc_counter("ingest.dropped")
                    return None
                delay = self.backoff_ms * (2 ** (attempt - 1)) / 1000
                logger.warning(
                    f"Persist attempt {attempt} for {event.action} failed: {e}; "
                    f"retrying in {delay:.3f}s"
                )
                metrics.inc_counter("ingest.retried")
                await asyncio.sleep(delay)
        return None


class EventDispatcher:
    """
    Bounded, lossy hand-off between producers and the ingestion service.

    ``submit`` never blocks and never raises. When the queue is full the
    oldest pending record is discarded to make room.
    """

    def __init__(
        self,
        service: IngestionService,
        maxsize: Optional[int] = None,
        workers: Optional[int] = None,
    ):
        self.service = service
        self.maxsize = maxsize or settings.ingest_queue_size
        self.worker_count = workers or settings.ingest_workers
        self._queue: asyncio.Queue[tuple[str, str, dict[str, Any]]] = asyncio.Queue(self.maxsize)
        self._workers: list[asyncio.Task] = []
        self._dropped = 0

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def submit(self, action: str, description: str, **kwargs: Any) -> None:
        """Queue a record for background persistence."""
        item = (action, description, kwargs)
        while True:
            try:
                self._queue.put_nowait(item)
                break
            except asyncio.QueueFull:
                self._drop_oldest()
        metrics.set_gauge("ingest.queue.depth", self._queue.qsize())

    def _drop_oldest(self) -> None:
        try:
            action, _, _ = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return
        self._queue.task_done()
        self._dropped += 1
        metrics.inc_counter("ingest.queue.dropped_oldest")
        logger.warning(
            f"Ingest queue full ({self.maxsize}), dropped oldest pending event {action}"
        )

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"auditgate-ingest-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Event dispatcher started ({self.worker_count} workers, queue {self.maxsize})")

    async def join(self) -> None:
        """Wait until every queued record has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True, timeout: float = 10.0) -> None:
        """Stop workers, optionally letting them finish what is queued first."""
        if drain and self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Event dispatcher drain timed out, {self._queue.qsize()} events abandoned"
                )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        if self._queue.qsize():
            logger.warning(f"Event dispatcher stopped with {self._queue.qsize()} pending events")
        logger.info("Event dispatcher stopped")

    async def _worker(self) -> None:
        while True:
            action, description, kwargs = await self._queue.get()
            try:
                await self.service.record_event(action, description, **kwargs)
            except Exception as e:
                logger.error(f"Ingest worker failed on {action}: {e}", exc_info=True)
            finally:
                self._queue.task_done()
                metrics.set_gauge("ingest.queue.depth", self._queue.qsize())


_dispatcher: Optional[EventDispatcher] = None


def get_dispatcher() -> Optional[EventDispatcher]:
    return _dispatcher


async def start_dispatcher(service: Optional[IngestionService] = None) -> EventDispatcher:
    """Create and start the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        if service is None:
            service = IngestionService(directory=get_directory_client())
        _dispatcher = EventDispatcher(service)
    _dispatcher.start()
    return _dispatcher


async def stop_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.stop(drain=True)
    _dispatcher = None
