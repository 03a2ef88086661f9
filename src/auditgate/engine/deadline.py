"""Caller-supplied deadlines for long reads (analytics, export)."""

import asyncio
from time import monotonic
from typing import Awaitable, Optional, TypeVar

from auditgate.errors import DeadlineExceeded

T = TypeVar("T")


class Deadline:
    """Wall-clock budget checked between batches of a long operation."""

    def __init__(self, operation: str, seconds: Optional[float]):
        self.operation = operation
        self.seconds = seconds
        self._expires_at = monotonic() + seconds if seconds is not None else None

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - monotonic())

    def check(self) -> None:
        """Raise DeadlineExceeded once the budget is spent."""
        if self._expires_at is not None and monotonic() >= self._expires_at:
            raise DeadlineExceeded(self.operation, self.seconds)


async def run_with_deadline(operation: str, awaitable: Awaitable[T], seconds: Optional[float]) -> T:
    """Await ``awaitable``, converting a timeout into DeadlineExceeded."""
    if seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise DeadlineExceeded(operation, seconds)
