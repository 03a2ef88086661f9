"""Retention - age-based pruning of low-value events and explicit purges."""

import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.db import base as db_base
from auditgate.db.repositories import AuditEventRepository, filter_conditions
from auditgate.errors import ValidationError
from auditgate.models import Severity
from auditgate.models.filter import AuditFilter
from auditgate.observability.metrics import metrics
from auditgate.utils.time import utc_now

logger = logging.getLogger("auditgate.retention")

SessionFactory = Callable[[], AsyncSession]


class RetentionSweeper:
    """
    Deletes events in bounded batches, one short transaction per batch.

    Age-based sweeps only ever remove low and medium severity events; high
    and critical events are kept regardless of age.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory or db_base.async_session_factory

    async def sweep(self, days_to_keep: Optional[int] = None, batch_size: Optional[int] = None) -> int:
        """Delete low/medium events older than ``days_to_keep`` days. Returns rows removed."""
        days = days_to_keep if days_to_keep is not None else settings.retention_days
        if days < 1:
            raise ValidationError(f"days_to_keep must be >= 1, got {days}")

        cutoff = utc_now() - timedelta(days=days)
        f = AuditFilter(severity=Severity.prunable(), before=cutoff)
        deleted = await self._delete_batched(f, batch_size)
        if deleted:
            logger.info(f"Retention sweep removed {deleted} events older than {cutoff.isoformat()}")
        return deleted

    async def purge(self, f: AuditFilter, batch_size: Optional[int] = None) -> int:
        """Delete every event matching ``f``. An empty filter is refused."""
        if f.is_empty():
            raise ValidationError("Refusing to purge with an empty filter")
        deleted = await self._delete_batched(f, batch_size)
        logger.warning(f"Purged {deleted} audit events")
        return deleted

    async def _delete_batched(self, f: AuditFilter, batch_size: Optional[int]) -> int:
        size = batch_size or settings.retention_batch_size
        conditions = filter_conditions(f)
        total = 0
        while True:
            async with self.session_factory() as session:
                repo = AuditEventRepository(session)
                ids = await repo.ids_matching(conditions, size)
                if not ids:
                    break
                removed = await repo.delete_ids(ids)
                await session.commit()
            total += removed
            metrics.inc_counter("retention.deleted", removed)
            if len(ids) < size:
                break
        return total
