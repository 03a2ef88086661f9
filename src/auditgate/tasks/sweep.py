"""Retention sweep background task."""

import asyncio
import logging
import random
from typing import Optional

from auditgate.config import settings
from auditgate.engine.retention import RetentionSweeper

logger = logging.getLogger("auditgate.sweep")

_sweep_task: Optional[asyncio.Task] = None
_shutdown_event: Optional[asyncio.Event] = None


async def retention_sweep_loop():
    """
    Background loop that prunes aged low/medium severity events.

    Each pass deletes in small batches with a commit per batch, so it never
    holds a long transaction against ingestion or reads. The interval is
    jittered by ±20% so several instances do not sweep in lockstep.
    """
    base_interval = settings.retention_sweep_interval_seconds
    logger.info(
        f"Retention sweep loop started (keep {settings.retention_days}d, "
        f"base interval: {base_interval}s with ±20% jitter)"
    )
    sweeper = RetentionSweeper()

    while not _shutdown_event.is_set():
        try:
            deleted = await sweeper.sweep(settings.retention_days, settings.retention_batch_size)
            if deleted > 0:
                logger.info(f"Retention sweep deleted {deleted} events")
        except Exception as e:
            logger.error(f"Retention sweep error: {e}", exc_info=True)

        jittered_interval = base_interval * random.uniform(0.8, 1.2)
        try:
            await asyncio.wait_for(_shutdown_event.wait(), timeout=jittered_interval)
        except asyncio.TimeoutError:
            pass

    logger.info("Retention sweep loop stopped")


async def start_retention_sweep():
    """Start the retention sweep background task."""
    global _sweep_task, _shutdown_event

    if not settings.retention_enabled:
        logger.info("Retention sweep disabled")
        return

    _shutdown_event = asyncio.Event()
    _sweep_task = asyncio.create_task(retention_sweep_loop())


async def stop_retention_sweep():
    """Stop the retention sweep background task."""
    global _sweep_task, _shutdown_event

    if _shutdown_event:
        _shutdown_event.set()

    if _sweep_task:
        try:
            await asyncio.wait_for(_sweep_task, timeout=10.0)
        except asyncio.TimeoutError:
            logger.warning("Retention sweep task did not stop gracefully, cancelling")
            _sweep_task.cancel()
            try:
                await _sweep_task
            except asyncio.CancelledError:
                pass

    _sweep_task = None
    _shutdown_event = None
