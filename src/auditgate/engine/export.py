"""Snapshot export of audit events as CSV, TSV or JSON.

An export pins ``before = now`` when it starts, so events ingested while the
stream is being consumed never appear in it. Rows are fetched in keyset
batches and encoded as they arrive. The stream never emits more rows than
were counted when the export was accepted.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.engine.deadline import Deadline
from auditgate.engine.query import QueryEngine
from auditgate.errors import ExportLimitExceeded, ValidationError
from auditgate.models import AuditEvent, ExportFormat
from auditgate.models.filter import AuditFilter, SortSpec
from auditgate.observability.metrics import metrics
from auditgate.utils.time import utc_now

logger = logging.getLogger("auditgate.export")

# Column order of tabular exports; keys match AuditEvent.to_dict().
EXPORT_COLUMNS = (
    "id",
    "timestamp",
    "userId",
    "userEmail",
    "userName",
    "userRole",
    "companyId",
    "companyName",
    "action",
    "category",
    "severity",
    "description",
    "status",
    "ipAddress",
    "userAgent",
    "device",
    "location",
    "sessionId",
    "requestId",
)

SessionFactory = Callable[[], AsyncSession]


def parse_format(value: ExportFormat | str) -> ExportFormat:
    try:
        return ExportFormat(value.lower() if isinstance(value, str) else value)
    except ValueError:
        supported = ", ".join(f.value for f in ExportFormat)
        raise ValidationError(f"Unsupported export format {value!r}; expected one of {supported}")


@dataclass
class ExportStream:
    """A ready-to-send export: headers plus an async byte iterator."""

    fmt: ExportFormat
    filename: str
    row_count: int
    chunks: AsyncIterator[bytes] = field(repr=False)

    @property
    def media_type(self) -> str:
        return self.fmt.media_type

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.chunks

    async def read_all(self) -> bytes:
        return b"".join([chunk async for chunk in self.chunks])


class Exporter:
    """Bounded, snapshot-consistent export over QueryEngine."""

    def __init__(
        self,
        query_engine: QueryEngine,
        max_rows: Optional[int] = None,
        batch_size: Optional[int] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.query = query_engine
        self.max_rows = max_rows if max_rows is not None else settings.export_max_rows
        self.batch_size = batch_size if batch_size is not None else settings.export_batch_size
        # When set, streaming reads use their own session so the stream can
        # outlive the request-scoped one.
        self.session_factory = session_factory

    async def export(
        self,
        f: Optional[AuditFilter] = None,
        fmt: ExportFormat | str = ExportFormat.CSV,
        include_metadata: bool = False,
        deadline: Optional[float] = None,
        sort: Optional[SortSpec] = None,
    ) -> ExportStream:
        """
        Prepare an export of every event matching ``f`` as of now.

        Raises:
            ValidationError: unsupported format
            ExportLimitExceeded: the snapshot holds more than ``max_rows`` events;
                raised before any bytes are produced
        """
        fmt = parse_format(fmt)
        started = utc_now()
        snapshot = (f or AuditFilter()).with_(before=started)

        matched = await self.query.count(snapshot)
        if matched > self.max_rows:
            logger.warning(f"Export refused: {matched} events match, limit {self.max_rows}")
            raise ExportLimitExceeded(self.max_rows, matched)

        budget = Deadline("export", deadline)
        chunks = self._encode(snapshot, fmt, include_metadata, sort or SortSpec(), budget, matched)
        filename = f"audit-events-{started:%Y%m%dT%H%M%SZ}.{fmt.value}"
        logger.info(f"Exporting {matched} audit events as {fmt.value}")
        return ExportStream(fmt=fmt, filename=filename, row_count=matched, chunks=chunks)

    async def _encode(
        self,
        snapshot: AuditFilter,
        fmt: ExportFormat,
        include_metadata: bool,
        sort: SortSpec,
        budget: Deadline,
        row_limit: int,
    ) -> AsyncIterator[bytes]:
        if self.session_factory is None:
            async for chunk in self._encode_with(
                self.query, snapshot, fmt, include_metadata, sort, budget, row_limit
            ):
                yield chunk
            return

        async with self.session_factory() as session:
            query = QueryEngine(session)
            async for chunk in self._encode_with(
                query, snapshot, fmt, include_metadata, sort, budget, row_limit
            ):
                yield chunk

    async def _capped(
        self,
        query: QueryEngine,
        snapshot: AuditFilter,
        sort: SortSpec,
        budget: Deadline,
        row_limit: int,
    ) -> AsyncIterator[list[AuditEvent]]:
        # A retried insert can commit after the count with a timestamp inside
        # the snapshot; stop at the counted rows.
        remaining = row_limit
        async for batch in query.iterate(snapshot, sort, self.batch_size, budget):
            batch = batch[:remaining]
            remaining -= len(batch)
            if batch:
                yield batch
            if remaining <= 0:
                return

    async def _encode_with(
        self,
        query: QueryEngine,
        snapshot: AuditFilter,
        fmt: ExportFormat,
        include_metadata: bool,
        sort: SortSpec,
        budget: Deadline,
        row_limit: int,
    ) -> AsyncIterator[bytes]:
        batches = self._capped(query, snapshot, sort, budget, row_limit)
        written = 0

        if fmt == ExportFormat.JSON:
            yield b"["
            async for batch in batches:
                parts = []
                for event in batch:
                    prefix = "," if written else ""
                    parts.append(prefix + json.dumps(event.to_dict(), default=str))
                    written += 1
                yield "".join(parts).encode("utf-8")
            yield b"]"
        else:
            columns = EXPORT_COLUMNS + (("metadata",) if include_metadata else ())
            delimiter = "\t" if fmt == ExportFormat.TSV else ","
            buffer = io.StringIO()
            writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
            writer.writerow(columns)
            async for batch in batches:
                for event in batch:
                    row = event.to_dict()
                    if include_metadata:
                        row["metadata"] = json.dumps(row["metadata"], default=str)
                    writer.writerow(["" if row[c] is None else row[c] for c in columns])
                    written += 1
                yield buffer.getvalue().encode("utf-8")
                buffer.seek(0)
                buffer.truncate()
            if buffer.tell():
                yield buffer.getvalue().encode("utf-8")

        metrics.inc_counter("export.rows", written)
        logger.info(f"Export finished: {written} rows as {fmt.value}")
