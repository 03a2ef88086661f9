"""External service integrations and resilience patterns."""

from auditgate.integrations.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
)
from auditgate.integrations.directory_client import (
    DirectoryClient,
    HttpDirectoryClient,
    get_directory_client,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitState",
    "DirectoryClient",
    "HttpDirectoryClient",
    "get_directory_client",
]
