"""User/tenant directory client with circuit breaker protection.

Ingestion asks the directory for actor and tenant display fields when a
producer only supplies ids. Lookups are best effort: any failure, including
an open circuit, reads as "unknown" and the caller falls back to placeholders.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from auditgate.config import settings
from auditgate.integrations.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from auditgate.models import ActorInfo, TenantInfo

logger = logging.getLogger(__name__)


class DirectoryClient(Protocol):
    """Lookup interface used by ingestion enrichment."""

    async def get_user(self, user_id: str) -> Optional[ActorInfo]: ...

    async def get_tenant(self, company_id: str) -> Optional[TenantInfo]: ...


class HttpDirectoryClient:
    """
    Directory lookups over HTTP.

    Expects ``GET {base}/users/{id}`` returning ``{email, name, role, companyId}``
    and ``GET {base}/companies/{id}`` returning ``{name}``.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout_ms: int = 500,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout_ms / 1000
        self._circuit_breaker = circuit_breaker
        self._transport = transport

    async def get_user(self, user_id: str) -> Optional[ActorInfo]:
        data = await self._lookup(f"/users/{user_id}")
        if not data:
            return None
        return ActorInfo(
            user_id=user_id,
            email=data.get("email"),
            name=data.get("name"),
            role=data.get("role"),
            company_id=data.get("companyId"),
        )

    async def get_tenant(self, company_id: str) -> Optional[TenantInfo]:
        data = await self._lookup(f"/companies/{company_id}")
        if not data:
            return None
        return TenantInfo(company_id=company_id, name=data.get("name"))

    async def _lookup(self, path: str) -> Optional[dict[str, Any]]:
        try:
            if self._circuit_breaker:
                return await self._circuit_breaker.call(
                    self._fetch, path, fallback=self._fallback
                )
            return await self._fetch(path)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Directory lookup {path} failed: {e}")
            return None

    async def _fetch(self, path: str) -> Optional[dict[str, Any]]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(f"{self.base_url}{path}", headers=headers)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

    async def _fallback(self, path: str) -> None:
        logger.debug(f"Directory circuit open, skipping lookup {path}")
        return None


def _build_circuit_breaker() -> Optional[CircuitBreaker]:
    if not settings.directory_circuit_breaker_enabled:
        logger.info("Directory circuit breaker disabled")
        return None
    config = CircuitBreakerConfig(
        failure_threshold=settings.directory_circuit_breaker_failure_threshold,
        timeout_seconds=settings.directory_circuit_breaker_timeout_seconds,
        half_open_max_calls=settings.directory_circuit_breaker_half_open_max_calls,
        success_threshold=settings.directory_circuit_breaker_success_threshold,
    )
    return CircuitBreaker("directory", config)


# Singleton instance
_directory_client: Optional[HttpDirectoryClient] = None


def get_directory_client() -> Optional[HttpDirectoryClient]:
    """Get or create the directory client; None when no directory is configured."""
    global _directory_client
    if not settings.directory_url:
        return None
    if _directory_client is None:
        _directory_client = HttpDirectoryClient(
            settings.directory_url,
            auth_token=settings.directory_auth_token,
            timeout_ms=settings.directory_timeout_ms,
            circuit_breaker=_build_circuit_breaker(),
        )
    return _directory_client
