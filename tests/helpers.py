"""Test helpers shared by unit and integration tests."""

from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from fleetdesk.config import CaseStatus, TicketEventType, TicketStatus
from fleetdesk.sla.application.services import ICaseGateway
from fleetdesk.sla.domain import SlaPolicy, TicketEvent

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
COMPONENT = "cctv"


def at(hour: int, minute: int = 0, second: int = 0, day: int = 10) -> datetime:
    """UTC instant on 2026-01-<day>."""
    return datetime(2026, 1, day, hour, minute, second, tzinfo=timezone.utc)


def status_event(status: TicketStatus, created_at: datetime, ticket_id: str = "t1") -> TicketEvent:
    return TicketEvent(
        ticket_id=ticket_id,
        type=TicketEventType.STATUS_CHANGE,
        status=status,
        created_at=created_at,
    )


def make_policy(response_minutes: int = 15, resolution_minutes: int = 120, **kwargs) -> SlaPolicy:
    kwargs.setdefault("tenant_id", TENANT)
    kwargs.setdefault("component_id", COMPONENT)
    kwargs.setdefault("severity", "HIGH")
    return SlaPolicy(
        response_minutes=response_minutes,
        resolution_minutes=resolution_minutes,
        **kwargs
    )


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingCaseGateway(ICaseGateway):
    """Case gateway that records every status push."""

    def __init__(self):
        self.calls: List[Tuple[str, str, CaseStatus, str]] = []

    async def notify_status(self, tenant_id, case_id, status, ticket_id) -> bool:
        self.calls.append((tenant_id, case_id, CaseStatus(status), ticket_id))
        return True
