"""
Tests for TicketLifecycleService.

The service runs against the SQLAlchemy repositories on an in-memory
database and a fake clock, so every timestamp in a scenario is explicit.
"""

from uuid import UUID

import pytest
from sqlalchemy import select

from fleetdesk.config import TicketEventType, TicketStatus
from fleetdesk.core import InvalidStatusTransitionException, ResourceNotFoundException
from fleetdesk.sla.application.services import PolicyWindowResolver, TicketLifecycleService
from fleetdesk.sla.domain import MaintenanceWindow
from fleetdesk.sla.infrastructure.models import AuditLogModel, TicketEventModel
from tests.helpers import COMPONENT, OTHER_TENANT, TENANT, at, make_policy


async def open_ticket(service, case_id=None, component_id=COMPONENT, tenant_id=TENANT):
    change = await service.create_ticket(
        tenant_id=tenant_id,
        component_id=component_id,
        severity="HIGH",
        channel="EMAIL",
        description="Camera offline at gate 3",
        actor_id="user-1",
        case_id=case_id,
    )
    return change.ticket


@pytest.fixture
async def with_policy(policy_repo):
    await policy_repo.upsert_many([make_policy(response_minutes=15, resolution_minutes=120)])


class TestCreateTicket:

    async def test_creates_open_ticket_with_initial_event(self, lifecycle_service, event_repo):
        change = await lifecycle_service.create_ticket(
            tenant_id=TENANT,
            component_id=COMPONENT,
            severity="HIGH",
            channel="PHONE",
            description="Camera offline at gate 3",
        )

        assert change.ticket.id is not None
        assert change.ticket.status == TicketStatus.OPEN
        assert change.ticket.opened_at == at(8)
        assert change.status_changed is True

        events = await event_repo.list_for_ticket(change.ticket.id)
        assert len(events) == 1
        assert events[0].type == TicketEventType.STATUS_CHANGE
        assert events[0].status == TicketStatus.OPEN

    async def test_without_policy_nothing_is_evaluated(self, lifecycle_service):
        change = await lifecycle_service.create_ticket(
            tenant_id=TENANT,
            component_id="unknown-component",
            severity="LOW",
            channel="EMAIL",
            description="No policy for this one",
        )

        assert change.result.response_minutes is None
        assert change.result.resolution_minutes is None
        assert change.result.is_any_breached is False

    async def test_create_is_audited(self, lifecycle_service, db_session):
        ticket = await open_ticket(lifecycle_service)

        rows = (await db_session.execute(select(AuditLogModel))).scalars().all()
        assert [r.action for r in rows] == ["sts.ticket.create"]
        assert rows[0].entity_id == ticket.id
        assert rows[0].actor_id == "user-1"


class TestComments:

    async def test_first_response_stops_response_clock(self, lifecycle_service, ticket_repo, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=20)
        change = await lifecycle_service.add_comment(TENANT, ticket.id, "On it", is_response=True)

        assert change.ticket.first_response_at == at(8, 20)
        assert change.result.response_minutes == 20
        assert change.result.breach_response is True

        stored = await ticket_repo.get(TENANT, ticket.id)
        assert stored.breach_response is True
        assert stored.response_minutes == 20

    async def test_later_response_keeps_first_timestamp(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=10)
        await lifecycle_service.add_comment(TENANT, ticket.id, "Looking", is_response=True)
        clock.advance(minutes=30)
        change = await lifecycle_service.add_comment(TENANT, ticket.id, "Still looking", is_response=True)

        assert change.ticket.first_response_at == at(8, 10)
        assert change.result.response_minutes == 10
        assert change.result.breach_response is False

    async def test_internal_note_is_not_a_response(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=5)
        change = await lifecycle_service.add_comment(TENANT, ticket.id, "Internal note")

        assert change.ticket.first_response_at is None
        assert change.events[0].type == TicketEventType.COMMENT
        assert change.events[0].meta == {"is_response": False}


class TestUpdateTicket:

    async def test_vendor_wait_pauses_resolution_clock(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.set(at(9))
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.WAITING_VENDOR)
        clock.set(at(10))
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.IN_PROGRESS)
        clock.set(at(11))
        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)

        assert change.status_changed is True
        assert change.ticket.resolved_at == at(11)
        assert change.result.resolution_minutes == 120
        assert change.result.breach_resolution is False

    async def test_close_time_takes_precedence_over_resolve_time(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.set(at(9))
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.WAITING_VENDOR)
        clock.set(at(10))
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)
        clock.set(at(12))
        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.CLOSED)

        # OPEN 8-9 and RESOLVED 10-12 count, the vendor wait does not
        assert change.result.resolution_minutes == 180
        assert change.result.breach_resolution is True

    async def test_maintenance_window_is_excluded(self, lifecycle_service, window_repo, clock, with_policy):
        await window_repo.create(MaintenanceWindow(tenant_id=TENANT, start_at=at(9), end_at=at(10)))
        ticket = await open_ticket(lifecycle_service)

        clock.set(at(11))
        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)

        assert change.result.resolution_minutes == 120

    async def test_window_for_other_component_is_ignored(self, lifecycle_service, window_repo, clock, with_policy):
        await window_repo.create(MaintenanceWindow(
            tenant_id=TENANT, start_at=at(9), end_at=at(10), component_id="access-control"
        ))
        ticket = await open_ticket(lifecycle_service)

        clock.set(at(11))
        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)

        assert change.result.resolution_minutes == 180

    async def test_same_status_is_not_a_change(self, lifecycle_service, event_repo, clock):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=5)
        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.OPEN)

        assert change.status_changed is False
        assert change.events == []
        assert len(await event_repo.list_for_ticket(ticket.id)) == 1

    async def test_invalid_transition_is_rejected(self, lifecycle_service, event_repo, clock):
        ticket = await open_ticket(lifecycle_service)
        clock.advance(minutes=5)
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)

        clock.advance(minutes=5)
        with pytest.raises(InvalidStatusTransitionException):
            await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.IN_PROGRESS)

        assert len(await event_repo.list_for_ticket(ticket.id)) == 2

    async def test_transition_table_can_be_disabled(
        self, ticket_repo, event_repo, policy_repo, window_repo, clock
    ):
        service = TicketLifecycleService(
            ticket_repo,
            event_repo,
            PolicyWindowResolver(policy_repo, window_repo),
            enforce_transitions=False,
            clock=clock,
        )
        ticket = await open_ticket(service)
        clock.advance(minutes=5)
        await service.update_ticket(TENANT, ticket.id, status=TicketStatus.CLOSED)

        clock.advance(minutes=5)
        change = await service.update_ticket(TENANT, ticket.id, status=TicketStatus.IN_PROGRESS)

        assert change.status_changed is True
        assert change.ticket.status == TicketStatus.IN_PROGRESS

    async def test_assignment_appends_assign_event(self, lifecycle_service, clock):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=3)
        change = await lifecycle_service.update_ticket(
            TENANT, ticket.id, assigned_to_id="tech-7", change_assignment=True
        )

        assert change.ticket.assigned_to_id == "tech-7"
        assert change.status_changed is False
        assert [e.type for e in change.events] == [TicketEventType.ASSIGN]
        assert change.events[0].meta == {"assigned_to_id": "tech-7"}

    async def test_assignment_ignored_unless_requested(self, lifecycle_service):
        ticket = await open_ticket(lifecycle_service)

        change = await lifecycle_service.update_ticket(TENANT, ticket.id, assigned_to_id="tech-7")

        assert change.ticket.assigned_to_id is None
        assert change.events == []


class TestForceCloseForCase:

    async def test_closes_open_tickets_of_case(self, lifecycle_service, ticket_repo, event_repo, clock, with_policy):
        first = await open_ticket(lifecycle_service, case_id="case-9")
        second = await open_ticket(lifecycle_service, case_id="case-9")
        unrelated = await open_ticket(lifecycle_service, case_id="case-10")

        clock.set(at(8, 5))
        await lifecycle_service.update_ticket(TENANT, second.id, status=TicketStatus.CLOSED)

        clock.set(at(9))
        changes = await lifecycle_service.force_close_for_case(TENANT, "case-9", actor_id="case-service")

        assert [c.ticket.id for c in changes] == [first.id]
        closed = await ticket_repo.get(TENANT, first.id)
        assert closed.status == TicketStatus.CLOSED
        assert closed.first_response_at == at(9)
        assert closed.resolved_at == at(9)
        assert closed.closed_at == at(9)
        assert closed.response_minutes == 60
        assert closed.breach_response is True

        events = await event_repo.list_for_ticket(first.id)
        assert events[-1].status == TicketStatus.CLOSED
        assert events[-1].meta == {"forced": True, "case_id": "case-9"}

        assert (await ticket_repo.get(TENANT, unrelated.id)).status == TicketStatus.OPEN

    async def test_bypasses_transition_table(self, lifecycle_service, clock):
        ticket = await open_ticket(lifecycle_service, case_id="case-9")
        clock.advance(minutes=1)
        await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)

        clock.advance(minutes=1)
        changes = await lifecycle_service.force_close_for_case(TENANT, "case-9")

        assert len(changes) == 1
        assert changes[0].ticket.closed_at == at(8, 2)

    async def test_unknown_case_closes_nothing(self, lifecycle_service):
        await open_ticket(lifecycle_service, case_id="case-9")

        assert await lifecycle_service.force_close_for_case(TENANT, "case-404") == []

    async def test_case_of_other_tenant_is_untouched(self, lifecycle_service, ticket_repo):
        ticket = await open_ticket(lifecycle_service, case_id="case-9", tenant_id=OTHER_TENANT)

        assert await lifecycle_service.force_close_for_case(TENANT, "case-9") == []
        assert (await ticket_repo.get(OTHER_TENANT, ticket.id)).status == TicketStatus.OPEN


class TestRecompute:

    async def test_policy_change_is_picked_up(self, lifecycle_service, policy_repo, ticket_repo, clock):
        ticket = await open_ticket(lifecycle_service)
        clock.advance(minutes=20)
        change = await lifecycle_service.add_comment(TENANT, ticket.id, "Hello", is_response=True)
        assert change.result.breach_response is False

        await policy_repo.upsert_many([make_policy(response_minutes=15)])
        evaluated, changed = await lifecycle_service.recompute_tenant(TENANT)

        assert (evaluated, changed) == (1, 1)
        stored = await ticket_repo.get(TENANT, ticket.id)
        assert stored.breach_response is True
        assert stored.response_minutes == 20

    async def test_recompute_is_idempotent(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)
        clock.advance(minutes=20)
        await lifecycle_service.add_comment(TENANT, ticket.id, "Hello", is_response=True)

        assert await lifecycle_service.recompute_tenant(TENANT) == (1, 0)
        assert await lifecycle_service.recompute_tenant(TENANT) == (1, 0)


class TestGetTicketSla:

    async def test_reports_near_breach(self, lifecycle_service, clock, with_policy):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=13)
        view = await lifecycle_service.get_ticket_sla(TENANT, ticket.id)

        assert view.policy is not None
        assert view.result.breach_response is False
        assert view.progress.response_near_breach is True
        assert view.progress.response_progress == pytest.approx(13 / 15)
        assert view.progress.resolution_near_breach is False
        assert len(view.events) == 1

    async def test_without_policy_has_no_progress(self, lifecycle_service, clock):
        ticket = await open_ticket(lifecycle_service)

        clock.advance(minutes=13)
        view = await lifecycle_service.get_ticket_sla(TENANT, ticket.id)

        assert view.policy is None
        assert view.progress.response_progress is None
        assert view.progress.response_near_breach is False

    async def test_other_tenant_cannot_read_ticket(self, lifecycle_service):
        ticket = await open_ticket(lifecycle_service)

        with pytest.raises(ResourceNotFoundException):
            await lifecycle_service.get_ticket_sla(OTHER_TENANT, ticket.id)

    async def test_unknown_ticket(self, lifecycle_service):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle_service.get_ticket_sla(TENANT, "not-a-uuid")

    async def test_stored_status_change_without_status_is_tolerated(
        self, lifecycle_service, db_session, clock, with_policy
    ):
        ticket = await open_ticket(lifecycle_service)
        db_session.add(TicketEventModel(
            ticket_id=UUID(ticket.id),
            type=TicketEventType.STATUS_CHANGE.value,
            status=None,
            created_at=at(8, 30),
            meta={}
        ))
        await db_session.flush()

        clock.set(at(10))
        view = await lifecycle_service.get_ticket_sla(TENANT, ticket.id)
        assert [e.status for e in view.events] == [TicketStatus.OPEN, None]
        assert view.result.resolution_minutes is None

        change = await lifecycle_service.update_ticket(TENANT, ticket.id, status=TicketStatus.RESOLVED)
        assert change.result.resolution_minutes == 120
        assert change.result.breach_resolution is False

        assert await lifecycle_service.recompute_tenant(TENANT) == (1, 0)
