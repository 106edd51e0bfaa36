"""
SLA External Service Integrations
==================================

External services for the STS module:
- Case service status sync (HTTP, circuit breaker, retries)
- YAML SLA policy seed file
"""

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml

from fleetdesk.config import CaseStatus, settings
from fleetdesk.core import CaseServiceException, ConfigurationException
from fleetdesk.sla.application.services import ICaseGateway
from fleetdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock=time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class HttpCaseGateway(ICaseGateway):
    """
    Case service client with circuit breaker and retry logic.

    Pushes the case status mirrored from a ticket to
    ``POST {base_url}/cases/{case_id}/status``. Failures are logged and
    reported as ``False``; they never reach the ticket mutation.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport
            )
        return self._http_client

    async def notify_status(
        self,
        tenant_id: str,
        case_id: str,
        status: CaseStatus,
        ticket_id: str
    ) -> bool:
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping case status sync",
                extra={"case_id": case_id, "ticket_id": ticket_id}
            )
            return False

        payload = {
            "tenant_id": tenant_id,
            "status": CaseStatus(status).value,
            "source": "sts",
            "ticket_id": ticket_id
        }

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(f"/cases/{case_id}/status", json=payload)

                if response.status_code >= 300:
                    raise CaseServiceException(
                        f"unexpected status {response.status_code}",
                        {"status_code": response.status_code}
                    )

                self._circuit_breaker.record_success()
                logger.info(
                    "Case status synced",
                    extra={"case_id": case_id, "ticket_id": ticket_id, "status": payload["status"]}
                )
                return True

            except (httpx.HTTPError, CaseServiceException) as e:
                logger.error(
                    "Case status sync failed",
                    extra={"error": str(e), "attempt": attempt + 1, "case_id": case_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingCaseGateway(ICaseGateway):
    """Gateway used when no case service is configured: records the sync in the log only."""

    async def notify_status(
        self,
        tenant_id: str,
        case_id: str,
        status: CaseStatus,
        ticket_id: str
    ) -> bool:
        logger.info(
            "Case status sync skipped, no case service configured",
            extra={
                "tenant_id": tenant_id,
                "case_id": case_id,
                "status": CaseStatus(status).value,
                "ticket_id": ticket_id
            }
        )
        return True


_case_gateway: Optional[ICaseGateway] = None


def get_case_gateway() -> ICaseGateway:
    """Process-wide case gateway built from settings."""
    global _case_gateway
    if _case_gateway is None:
        if settings.case_service_url:
            _case_gateway = HttpCaseGateway(
                settings.case_service_url,
                timeout_seconds=settings.case_service_timeout_seconds
            )
        else:
            _case_gateway = LoggingCaseGateway()
    return _case_gateway


async def close_case_gateway() -> None:
    global _case_gateway
    if isinstance(_case_gateway, HttpCaseGateway):
        await _case_gateway.close()
    _case_gateway = None


class PolicySeedLoader:
    """
    Reads SLA policies from a YAML file.

    Expected layout::

        tenant_id: tenant-1
        policies:
          - component_id: cctv
            severity: HIGH
            response_minutes: 30
            resolution_minutes: 240
            pause_statuses: [WAITING_VENDOR]
    """

    REQUIRED_KEYS = ("component_id", "severity", "response_minutes", "resolution_minutes")

    def __init__(self, path: Path):
        self._path = Path(path)

    def load(self) -> Dict[str, List[Dict[str, Any]]]:
        """Return policy items grouped by tenant id."""
        if not self._path.exists():
            raise ConfigurationException(f"SLA policy seed file not found: {self._path}")

        with open(self._path, "r") as f:
            data = yaml.safe_load(f) or {}

        documents = data if isinstance(data, list) else [data]
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for document in documents:
            tenant_id = document.get("tenant_id")
            if not tenant_id:
                raise ConfigurationException(
                    "SLA policy seed entry without tenant_id",
                    {"path": str(self._path)}
                )

            for item in document.get("policies") or []:
                missing = [key for key in self.REQUIRED_KEYS if key not in item]
                if missing:
                    raise ConfigurationException(
                        f"SLA policy seed entry is missing {', '.join(missing)}",
                        {"path": str(self._path), "tenant_id": tenant_id}
                    )
                grouped.setdefault(tenant_id, []).append(dict(item))

        logger.info(
            "SLA policy seed loaded",
            extra={"path": str(self._path), "tenants": len(grouped)}
        )
        return grouped
