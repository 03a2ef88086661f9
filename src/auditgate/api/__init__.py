"""AuditGate HTTP API."""

from auditgate.api.router import router

__all__ = ["router"]
