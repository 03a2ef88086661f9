"""Observability helpers for AuditGate."""

from auditgate.observability.metrics import metrics

__all__ = ["metrics"]
