"""Audit event model - one immutable record of a significant action."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from auditgate.models.enums import Category, EventStatus, Severity

SYSTEM_EMAIL = "system"
SYSTEM_NAME = "System"
SYSTEM_ROLE = "system"


class Annotation(BaseModel):
    """Post-hoc investigation note appended to an event."""

    text: str
    tags: list[str] = Field(default_factory=list)
    author_id: Optional[str] = None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "tags": list(self.tags),
            "authorId": self.author_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Annotation":
        return cls(
            text=data["text"],
            tags=data.get("tags") or [],
            author_id=data.get("authorId"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class ActorInfo(BaseModel):
    """Who performed the action. Any field may be missing."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None
    company_id: Optional[str] = None

    def is_complete(self) -> bool:
        """True when no directory lookup is needed."""
        return bool(self.email and self.name and self.role)


class TenantInfo(BaseModel):
    """Tenant (company) the action is scoped to."""

    company_id: Optional[str] = None
    name: Optional[str] = None


class EventContext(BaseModel):
    """Request context supplied by the producer."""

    ip_address: str = ""
    user_agent: str = ""
    device: str = ""
    location: str = ""
    session_id: Optional[str] = None
    request_id: Optional[str] = None


class AuditEvent(BaseModel):
    """Audit trail record.

    Identity, actor, tenant, classification and narrative never change after
    the event is stored. ``metadata["annotations"]`` is the only part that
    grows afterwards.
    """

    # Identity
    event_id: UUID
    timestamp: datetime

    # Actor
    user_id: Optional[str] = None
    user_email: str = SYSTEM_EMAIL
    user_name: str = SYSTEM_NAME
    user_role: str = SYSTEM_ROLE

    # Tenant
    company_id: Optional[str] = None
    company_name: str = ""

    # Classification
    action: str
    category: Category = Category.USER
    severity: Severity = Severity.LOW

    # Narrative
    description: str
    status: EventStatus = EventStatus.SUCCESS

    # Context
    ip_address: str = ""
    user_agent: str = ""
    device: str = ""
    location: str = ""
    session_id: Optional[str] = None
    request_id: Optional[str] = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def annotations(self) -> list[Annotation]:
        return [Annotation.from_dict(a) for a in self.metadata.get("annotations", [])]

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape returned by the query API and JSON export."""
        return {
            "id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
            "userRole": self.user_role,
            "companyId": self.company_id,
            "companyName": self.company_name,
            "action": self.action,
            "category": self.category.value,
            "severity": self.severity.value,
            "description": self.description,
            "status": self.status.value,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "device": self.device,
            "location": self.location,
            "sessionId": self.session_id,
            "requestId": self.request_id,
            "metadata": self.metadata,
        }
