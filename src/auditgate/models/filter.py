"""Composable filter, sort and cursor values shared by every read path.

Listing, analytics, alerts and export all translate the same ``AuditFilter``
into store predicates, so a filter means the same thing everywhere.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from auditgate.errors import InvalidFilter
from auditgate.models.enums import Category, EventStatus, ResourceType, Severity, SortOrder
from auditgate.utils.time import ensure_utc

SORTABLE_FIELDS = frozenset(
    {
        "timestamp",
        "action",
        "category",
        "severity",
        "status",
        "user_name",
        "user_email",
        "company_name",
    }
)

# Client-facing spellings accepted for sort fields.
SORT_FIELD_ALIASES = {
    "userName": "user_name",
    "userEmail": "user_email",
    "companyName": "company_name",
    "createdAt": "timestamp",
}


class AuditFilter(BaseModel):
    """AND-combined filter over audit events. Every dimension is optional."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    company_id: Optional[str] = None
    action: Optional[str] = None
    category: Optional[Category] = None
    severity: Optional[frozenset[Severity]] = None
    status: Optional[EventStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search_term: Optional[str] = None

    ip_address: Optional[str] = None
    session_id: Optional[str] = None
    resource_type: Optional[ResourceType] = None
    resource_id: Optional[str] = None

    # Exclusive upper bound pinned by snapshot readers (export).
    before: Optional[datetime] = None

    @field_validator("severity", mode="before")
    @classmethod
    def coerce_severity(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, (str, Severity)):
            v = [v]
        try:
            return frozenset(Severity(s) for s in v)
        except ValueError:
            raise InvalidFilter(f"Unknown severity in {sorted(map(str, v))}", field="severity")

    @field_validator("start_date", "end_date", "before")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @field_validator("search_term")
    @classmethod
    def strip_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def check_range(self) -> "AuditFilter":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise InvalidFilter(
                f"start_date {self.start_date.isoformat()} is after end_date {self.end_date.isoformat()}",
                field="start_date",
            )
        return self

    @classmethod
    def parse(cls, **raw: Any) -> "AuditFilter":
        """Build a filter from loosely typed input, reporting problems as InvalidFilter."""
        unknown = set(raw) - set(cls.model_fields)
        if unknown:
            raise InvalidFilter(f"Unknown filter field(s): {', '.join(sorted(unknown))}")
        try:
            return cls(**raw)
        except InvalidFilter:
            raise
        except ValueError as e:
            raise InvalidFilter(str(e))

    def with_(self, **changes: Any) -> "AuditFilter":
        """Return a copy with ``changes`` applied and re-validated."""
        data = self.model_dump()
        data.update(changes)
        return type(self)(**data)

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in type(self).model_fields)


class SortSpec(BaseModel):
    """Sort field and direction. ``event_id`` is always the tiebreaker."""

    model_config = ConfigDict(frozen=True)

    field: str = "timestamp"
    order: SortOrder = SortOrder.DESC

    @field_validator("field", mode="before")
    @classmethod
    def check_field(cls, v: Any) -> str:
        v = SORT_FIELD_ALIASES.get(v, v)
        if v not in SORTABLE_FIELDS:
            raise InvalidFilter(f"Cannot sort by {v!r}", field="sortBy")
        return v

    @field_validator("order", mode="before")
    @classmethod
    def coerce_order(cls, v: Any) -> Any:
        # Accept the numeric 1/-1 convention as well as asc/desc.
        if v in (1, "1"):
            return SortOrder.ASC
        if v in (-1, "-1"):
            return SortOrder.DESC
        if isinstance(v, str):
            try:
                return SortOrder(v.lower())
            except ValueError:
                raise InvalidFilter(f"Unknown sort order {v!r}", field="sortOrder")
        return v

    @property
    def descending(self) -> bool:
        return self.order == SortOrder.DESC


@dataclass(frozen=True)
class Pagination:
    """1-based page number and page size."""

    page: int = 1
    limit: int = 50

    def __post_init__(self) -> None:
        if self.page < 1:
            raise InvalidFilter(f"page must be >= 1, got {self.page}", field="page")
        if self.limit < 1:
            raise InvalidFilter(f"limit must be >= 1, got {self.limit}", field="limit")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class Cursor:
    """Seek position: last seen sort value plus event id."""

    value: Any
    event_id: UUID

    def encode(self) -> str:
        if isinstance(self.value, datetime):
            payload = {"t": "dt", "v": self.value.isoformat()}
        else:
            payload = {"t": "s", "v": self.value}
        payload["id"] = str(self.event_id)
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        try:
            payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
            value = payload["v"]
            if payload["t"] == "dt":
                value = ensure_utc(datetime.fromisoformat(value))
            return cls(value=value, event_id=UUID(payload["id"]))
        except (ValueError, KeyError, TypeError, binascii.Error, UnicodeEncodeError):
            raise InvalidFilter("Malformed pagination cursor", field="cursor")
