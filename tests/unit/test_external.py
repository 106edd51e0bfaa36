"""
Tests for the case service gateway and the policy seed loader.
"""

import json
from pathlib import Path

import httpx
import pytest

from fleetdesk.config import CaseStatus
from fleetdesk.core import ConfigurationException
from fleetdesk.sla.infrastructure.bootstrap import seed_policies_from_file
from fleetdesk.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    HttpCaseGateway,
    LoggingCaseGateway,
    PolicySeedLoader,
)
from fleetdesk.sla.infrastructure.repositories import SQLAlchemySlaPolicyRepository

EXAMPLE_SEED = Path(__file__).resolve().parents[2] / "config" / "sla_policies.example.yaml"


class ManualClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=ManualClock())

        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_half_open_after_recovery_timeout(self):
        clock = ManualClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()

        clock.value += 29
        assert breaker.state == CircuitState.OPEN
        clock.value += 1
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request() is True

    def test_success_closes_circuit(self):
        clock = ManualClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
        breaker.record_failure()
        clock.value += 30

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED


class TestHttpCaseGateway:

    async def test_posts_case_status(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        gateway = HttpCaseGateway(
            "http://cases.local/api/",
            transport=httpx.MockTransport(handler),
            backoff_base=0
        )
        try:
            ok = await gateway.notify_status("tenant-1", "case-9", CaseStatus.IN_EXECUTION, "t1")
        finally:
            await gateway.close()

        assert ok is True
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert requests[0].url == "http://cases.local/api/cases/case-9/status"
        assert json.loads(requests[0].content) == {
            "tenant_id": "tenant-1",
            "status": "IN_EXECUTION",
            "source": "sts",
            "ticket_id": "t1",
        }

    async def test_retries_then_reports_failure(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503)

        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=ManualClock())
        gateway = HttpCaseGateway(
            "http://cases.local",
            max_retries=3,
            backoff_base=0,
            circuit_breaker=breaker,
            transport=httpx.MockTransport(handler)
        )
        try:
            ok = await gateway.notify_status("tenant-1", "case-9", CaseStatus.CLOSED, "t1")
            skipped = await gateway.notify_status("tenant-1", "case-9", CaseStatus.CLOSED, "t1")
        finally:
            await gateway.close()

        assert ok is False
        assert len(attempts) == 3
        assert breaker.state == CircuitState.OPEN
        assert skipped is False
        assert len(attempts) == 3

    async def test_transport_error_is_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = HttpCaseGateway(
            "http://cases.local",
            max_retries=2,
            backoff_base=0,
            transport=httpx.MockTransport(handler)
        )
        try:
            assert await gateway.notify_status("tenant-1", "case-9", CaseStatus.NEW, "t1") is False
        finally:
            await gateway.close()

    async def test_retry_succeeds_on_second_attempt(self):
        responses = iter([httpx.Response(500), httpx.Response(204)])

        gateway = HttpCaseGateway(
            "http://cases.local",
            backoff_base=0,
            transport=httpx.MockTransport(lambda request: next(responses))
        )
        try:
            assert await gateway.notify_status("tenant-1", "case-9", CaseStatus.RESOLVED, "t1") is True
        finally:
            await gateway.close()


async def test_logging_gateway_always_succeeds():
    gateway = LoggingCaseGateway()

    assert await gateway.notify_status("tenant-1", "case-9", CaseStatus.CLOSED, "t1") is True


class TestPolicySeedLoader:

    def test_loads_example_file(self):
        grouped = PolicySeedLoader(EXAMPLE_SEED).load()

        assert list(grouped) == ["tenant-1"]
        assert len(grouped["tenant-1"]) == 5
        assert grouped["tenant-1"][0]["severity"] == "EMERGENCY"

    def test_single_document(self, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text(
            "tenant_id: tenant-9\n"
            "policies:\n"
            "  - component_id: gate\n"
            "    severity: LOW\n"
            "    response_minutes: 60\n"
            "    resolution_minutes: 600\n"
        )

        grouped = PolicySeedLoader(path).load()

        assert grouped == {"tenant-9": [{
            "component_id": "gate",
            "severity": "LOW",
            "response_minutes": 60,
            "resolution_minutes": 600,
        }]}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationException):
            PolicySeedLoader(tmp_path / "absent.yaml").load()

    def test_missing_tenant(self, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text("policies: []\n")

        with pytest.raises(ConfigurationException):
            PolicySeedLoader(path).load()

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text(
            "- tenant_id: tenant-9\n"
            "  policies:\n"
            "    - component_id: gate\n"
            "      severity: LOW\n"
            "      response_minutes: 60\n"
        )

        with pytest.raises(ConfigurationException) as exc_info:
            PolicySeedLoader(path).load()

        assert "resolution_minutes" in exc_info.value.message


async def test_seed_policies_from_file_is_repeatable(db_session):
    assert await seed_policies_from_file(db_session, EXAMPLE_SEED) == {"tenant-1": 5}
    assert await seed_policies_from_file(db_session, EXAMPLE_SEED) == {"tenant-1": 5}

    policies = await SQLAlchemySlaPolicyRepository(db_session).list("tenant-1")
    assert len(policies) == 5
    high = [p for p in policies if p.component_id == "cctv" and p.severity.value == "HIGH"]
    assert high[0].response_minutes == 30
