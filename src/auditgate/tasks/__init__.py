"""AuditGate background tasks."""

from auditgate.tasks.sweep import start_retention_sweep, stop_retention_sweep

__all__ = ["start_retention_sweep", "stop_retention_sweep"]
