"""Analytics engine - trends, top-N rankings and activity summaries.

Every aggregation runs over the same ``AuditFilter`` the list API uses.
Results tolerate eventual consistency: an event committed moments ago may
or may not be counted yet.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auditgate.config import settings
from auditgate.db.repositories import AuditEventRepository
from auditgate.engine.deadline import Deadline, run_with_deadline
from auditgate.engine.query import QueryEngine
from auditgate.errors import ValidationError
from auditgate.models import GroupBy, Severity
from auditgate.models.filter import AuditFilter, Pagination, SortSpec
from auditgate.utils.time import utc_now

logger = logging.getLogger(__name__)

# Rows pulled per keyset batch while bucketing.
SCAN_BATCH_SIZE = 5000

DASHBOARD_RANGES = {"1d": 1, "7d": 7, "30d": 30, "90d": 90}
DEFAULT_DASHBOARD_RANGE = "7d"


def bucket_label(ts: datetime, group_by: GroupBy) -> str:
    """UTC bucket label for a timestamp."""
    if group_by == GroupBy.HOUR:
        return ts.strftime("%Y-%m-%dT%H:00")
    if group_by == GroupBy.DAY:
        return ts.strftime("%Y-%m-%d")
    if group_by == GroupBy.WEEK:
        year, week, _ = ts.isocalendar()
        return f"{year:04d}-W{week:02d}"
    return ts.strftime("%Y-%m")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class AnalyticsEngine:
    """Read-only aggregations over the audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.events = AuditEventRepository(session)

    async def trends(
        self,
        f: AuditFilter,
        group_by: GroupBy = GroupBy.DAY,
        deadline: Optional[Deadline] = None,
    ) -> list[dict[str, Any]]:
        """Event counts per (time bucket, category), ordered by bucket."""
        group_by = GroupBy(group_by)
        counts: Counter[tuple[str, str]] = Counter()
        after = None
        while True:
            if deadline is not None:
                deadline.check()
            rows = await self.events.scan_activity(f, after, SCAN_BATCH_SIZE)
            for ts, _, category in rows:
                counts[(bucket_label(ts, group_by), category)] += 1
            if len(rows) < SCAN_BATCH_SIZE:
                break
            last_ts, last_id, _ = rows[-1]
            after = (last_ts, last_id)

        return [
            {"bucket": bucket, "category": category, "count": n}
            for (bucket, category), n in sorted(counts.items())
        ]

    async def top_actions(self, f: AuditFilter, limit: Optional[int] = None) -> list[dict[str, Any]]:
        rows = await self.events.group_counts(f, "action", self._limit(limit))
        return [
            {"action": action, "count": n, "lastActivity": _iso(last)}
            for action, n, last in rows
        ]

    async def top_actors(self, f: AuditFilter, limit: Optional[int] = None) -> list[dict[str, Any]]:
        rows = await self.events.top_actors(f, self._limit(limit))
        return [
            {
                "userId": row["user_id"],
                "userName": row["user_name"],
                "userEmail": row["user_email"],
                "count": row["count"],
                "firstActivity": _iso(row["first_activity"]),
                "lastActivity": _iso(row["last_activity"]),
            }
            for row in rows
        ]

    async def top_tenants(self, f: AuditFilter, limit: Optional[int] = None) -> list[dict[str, Any]]:
        rows = await self.events.top_tenants(f, self._limit(limit))
        return [
            {
                "companyId": row["company_id"],
                "companyName": row["company_name"],
                "count": row["count"],
                "uniqueUsers": row["unique_users"],
                "firstActivity": _iso(row["first_activity"]),
                "lastActivity": _iso(row["last_activity"]),
            }
            for row in rows
        ]

    async def severity_distribution(self, f: AuditFilter) -> dict[str, int]:
        """Counts per severity, every level present even when zero."""
        distribution = {s.value: 0 for s in Severity}
        for severity, n, _ in await self.events.group_counts(f, "severity"):
            distribution[severity] = n
        return distribution

    async def security_insights(self, f: AuditFilter) -> list[dict[str, Any]]:
        """Security-category counts per severity, most severe first."""
        rows = await self.events.security_breakdown(f)
        rows.sort(key=lambda row: Severity(row[0]).rank, reverse=True)
        return [
            {"severity": severity, "count": n, "failedAttempts": failed}
            for severity, n, failed in rows
        ]

    async def summary(
        self,
        f: Optional[AuditFilter] = None,
        group_by: GroupBy = GroupBy.DAY,
        limit: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Combined analytics view.

        Raises:
            DeadlineExceeded: ``deadline`` seconds passed before completion
        """
        f = f or AuditFilter()
        seconds = deadline if deadline is not None else settings.analytics_timeout_seconds
        budget = Deadline("analytics", seconds)

        async def _collect() -> dict[str, Any]:
            return {
                "activityTrends": await self.trends(f, group_by, budget),
                "topActions": await self.top_actions(f, limit),
                "securityInsights": await self.security_insights(f),
                "severityDistribution": await self.severity_distribution(f),
                "topActors": await self.top_actors(f, limit),
                "topTenants": await self.top_tenants(f, limit),
            }

        return await run_with_deadline("analytics", _collect(), seconds)

    async def actor_activity(self, user_id: str, f: Optional[AuditFilter] = None) -> dict[str, Any]:
        """Totals, distinct actions/categories and activity window for one actor."""
        f = (f or AuditFilter()).with_(user_id=user_id)
        return {"userId": user_id, **await self._activity(f)}

    async def tenant_activity(self, company_id: str, f: Optional[AuditFilter] = None) -> dict[str, Any]:
        """Same as actor_activity for a tenant, plus its most active users."""
        f = (f or AuditFilter()).with_(company_id=company_id)
        activity = await self._activity(f)
        users = await self.events.distinct_values(f, "user_id")
        return {
            "companyId": company_id,
            **activity,
            "uniqueUsers": len([u for u in users if u is not None]),
            "userActivity": await self.top_actors(f, settings.analytics_top_limit),
        }

    async def dashboard(
        self,
        company_id: Optional[str] = None,
        time_range: str = DEFAULT_DASHBOARD_RANGE,
    ) -> dict[str, Any]:
        """Operator dashboard over one of the fixed look-back ranges."""
        if time_range not in DASHBOARD_RANGES:
            raise ValidationError(
                f"Unknown time range {time_range!r}; expected one of {', '.join(DASHBOARD_RANGES)}"
            )
        now = utc_now()
        f = AuditFilter(
            company_id=company_id,
            start_date=now - timedelta(days=DASHBOARD_RANGES[time_range]),
        )
        query = QueryEngine(self.session)

        hourly: Counter[str] = Counter()
        for bucket in await self.trends(f.with_(start_date=now - timedelta(hours=24)), GroupBy.HOUR):
            hourly[bucket["bucket"]] += bucket["count"]

        critical = await query.list_events(
            f.with_(severity=Severity.CRITICAL),
            Pagination(page=1, limit=5),
            SortSpec(),
        )
        return {
            "timeRange": time_range,
            "realtimeMetrics": (await query.stats(f)).to_dict(),
            "hourlyActivity": [{"hour": hour, "count": n} for hour, n in sorted(hourly.items())],
            "topUsers": await self.top_actors(f, settings.analytics_top_limit),
            "recentCritical": [e.to_dict() for e in critical.events],
            "severityDistribution": await self.severity_distribution(f),
        }

    async def _activity(self, f: AuditFilter) -> dict[str, Any]:
        actions = await self.events.group_counts(f, "action")
        categories = await self.events.distinct_values(f, "category")
        first, last = await self.events.activity_window(f)
        return {
            "totalActions": sum(n for _, n, _ in actions),
            "actions": sorted(action for action, _, _ in actions),
            "categories": list(categories),
            "firstActivity": _iso(first),
            "lastActivity": _iso(last),
        }

    def _limit(self, limit: Optional[int]) -> int:
        limit = limit if limit is not None else settings.analytics_top_limit
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")
        return limit
