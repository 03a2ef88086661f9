"""Security alerts - recent high-severity events."""

import logging
from datetime import timedelta
from typing import Optional

from auditgate.config import settings
from auditgate.engine.query import QueryEngine
from auditgate.errors import ValidationError
from auditgate.models import AuditEvent, Severity
from auditgate.models.filter import AuditFilter, Pagination, SortSpec
from auditgate.utils.time import utc_now

logger = logging.getLogger(__name__)

# "all" asks for everything worth an operator's attention.
ALL_ALERTS = "all"


def parse_min_severity(value: Optional[Severity | str]) -> Severity:
    if value is None or value == ALL_ALERTS:
        return Severity.HIGH
    try:
        return Severity(value)
    except ValueError:
        raise ValidationError(f"Unknown severity {value!r}")


class AlertDetector:
    """Thin policy over QueryEngine: severity floor plus look-back window."""

    def __init__(self, query_engine: QueryEngine):
        self.query = query_engine

    async def get_alerts(
        self,
        min_severity: Optional[Severity | str] = None,
        lookback_hours: Optional[float] = None,
        tenant_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEvent]:
        """
        Events at or above ``min_severity`` from the last ``lookback_hours``,
        most recent first, at most ``limit`` of them.
        """
        floor = parse_min_severity(min_severity)
        hours = lookback_hours if lookback_hours is not None else settings.default_alert_lookback_hours
        limit = limit if limit is not None else settings.default_alert_limit
        if hours <= 0:
            raise ValidationError(f"lookback_hours must be > 0, got {hours}")
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")

        f = AuditFilter(
            severity=Severity.at_least(floor),
            start_date=utc_now() - timedelta(hours=hours),
            company_id=tenant_id,
        )
        page = await self.query.list_events(f, Pagination(page=1, limit=limit), SortSpec())
        return page.events
