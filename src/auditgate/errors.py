"""AuditGate errors."""


class AuditGateError(Exception):
    """Base error for AuditGate operations."""

    def __init__(self, message: str, code: str = "AUDITGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(AuditGateError):
    """Bad input: malformed filter, unsupported format, bad date range."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code)


class InvalidFilter(ValidationError):
    """Filter, sort or cursor cannot be turned into a store query."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, "INVALID_FILTER")
        self.field = field


class EventNotFound(AuditGateError):
    """Audit event does not exist."""

    def __init__(self, event_id: str):
        super().__init__(f"Audit event not found: {event_id}", "EVENT_NOT_FOUND")
        self.event_id = event_id


class ExportLimitExceeded(AuditGateError):
    """Export matched more rows than the configured cap."""

    def __init__(self, limit: int, matched: int):
        super().__init__(
            f"Export matched {matched} events, limit is {limit}; narrow the filter",
            "EXPORT_LIMIT_EXCEEDED",
        )
        self.limit = limit
        self.matched = matched


class PersistenceError(AuditGateError):
    """Transient event store failure; the caller may retry."""

    def __init__(self, message: str = "Event store unavailable"):
        super().__init__(message, "PERSISTENCE_ERROR")


class DeadlineExceeded(AuditGateError):
    """Caller-supplied deadline passed before the operation finished."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} exceeded its deadline of {timeout:g}s",
            "DEADLINE_EXCEEDED",
        )
        self.operation = operation
        self.timeout = timeout
