"""AuditGate enumerations."""

from enum import Enum


class Category(str, Enum):
    """Coarse bucket describing the nature of an action."""

    SECURITY = "security"
    ADMIN = "admin"
    SYSTEM = "system"
    USER = "user"


class Severity(str, Enum):
    """Escalation level, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def at_least(cls, minimum: "Severity") -> set["Severity"]:
        """Return every severity at or above ``minimum``."""
        return {s for s in _SEVERITY_ORDER if s.rank >= minimum.rank}

    @classmethod
    def prunable(cls) -> set["Severity"]:
        """Severities the retention sweep is allowed to delete."""
        return {cls.LOW, cls.MEDIUM}


_SEVERITY_ORDER = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)


class EventStatus(str, Enum):
    """Outcome of the recorded action."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    WARNING = "warning"


class ResourceType(str, Enum):
    """Kind of business resource an action touched."""

    USER = "user"
    COMPANY = "company"
    DEPARTMENT = "department"
    TASK = "task"
    MEETING = "meeting"
    LEAVE = "leave"
    SUBSCRIPTION = "subscription"
    PAYMENT = "payment"
    SYSTEM = "system"


class GroupBy(str, Enum):
    """Time bucket granularity for trend analytics."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ExportFormat(str, Enum):
    """Supported export encodings."""

    CSV = "csv"
    JSON = "json"
    TSV = "tsv"

    @property
    def media_type(self) -> str:
        return {
            ExportFormat.CSV: "text/csv",
            ExportFormat.JSON: "application/json",
            ExportFormat.TSV: "text/tab-separated-values",
        }[self]
