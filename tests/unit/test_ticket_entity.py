"""
Unit tests for the ticket state machine and case status mapping.
"""

import pytest

from fleetdesk.config import CaseStatus, TicketStatus
from fleetdesk.core import InvalidStatusTransitionException
from fleetdesk.sla.domain import (
    ALLOWED_TRANSITIONS,
    SLAResult,
    SlaPolicy,
    Ticket,
    can_transition,
    map_ticket_status_to_case_status,
)
from tests.helpers import COMPONENT, TENANT, at


@pytest.fixture
def ticket():
    return Ticket(
        id="t1",
        tenant_id=TENANT,
        component_id=COMPONENT,
        severity="HIGH",
        channel="EMAIL",
        description="Central device unreachable",
        status="OPEN",
        opened_at=at(8),
    )


class TestTransitionTable:

    @pytest.mark.parametrize("current, target", [
        (TicketStatus.OPEN, TicketStatus.IN_PROGRESS),
        (TicketStatus.OPEN, TicketStatus.CLOSED),
        (TicketStatus.IN_PROGRESS, TicketStatus.WAITING_VENDOR),
        (TicketStatus.WAITING_VENDOR, TicketStatus.IN_PROGRESS),
        (TicketStatus.WAITING_VENDOR, TicketStatus.RESOLVED),
        (TicketStatus.RESOLVED, TicketStatus.CLOSED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        (TicketStatus.IN_PROGRESS, TicketStatus.OPEN),
        (TicketStatus.RESOLVED, TicketStatus.IN_PROGRESS),
        (TicketStatus.CLOSED, TicketStatus.OPEN),
        (TicketStatus.CLOSED, TicketStatus.RESOLVED),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_closed_is_terminal(self):
        assert ALLOWED_TRANSITIONS[TicketStatus.CLOSED] == frozenset()


class TestTicket:

    def test_string_values_are_coerced(self, ticket):
        assert ticket.status is TicketStatus.OPEN
        assert ticket.severity.value == "HIGH"
        assert ticket.channel.value == "EMAIL"

    def test_resolve_sets_resolved_at_once(self, ticket):
        assert ticket.change_status(TicketStatus.WAITING_VENDOR, at(9))
        assert ticket.change_status(TicketStatus.RESOLVED, at(10))
        assert ticket.resolved_at == at(10)
        assert ticket.closed_at is None

        assert ticket.change_status(TicketStatus.CLOSED, at(11))
        assert ticket.resolved_at == at(10)
        assert ticket.closed_at == at(11)
        assert ticket.is_open is False

    def test_close_backfills_resolved_at(self, ticket):
        ticket.change_status(TicketStatus.CLOSED, at(9))

        assert ticket.resolved_at == at(9)
        assert ticket.closed_at == at(9)

    def test_same_status_is_a_no_op(self, ticket):
        assert ticket.change_status(TicketStatus.OPEN, at(9)) is False
        assert ticket.updated_at is None

    def test_invalid_transition_raises(self, ticket):
        ticket.change_status(TicketStatus.RESOLVED, at(9))

        with pytest.raises(InvalidStatusTransitionException) as exc_info:
            ticket.change_status(TicketStatus.OPEN, at(10))

        assert exc_info.value.from_status == "RESOLVED"
        assert exc_info.value.to_status == "OPEN"
        assert ticket.status == TicketStatus.RESOLVED

    def test_invalid_transition_allowed_when_not_enforced(self, ticket):
        ticket.change_status(TicketStatus.CLOSED, at(9))

        assert ticket.change_status(TicketStatus.IN_PROGRESS, at(10), enforce_transitions=False)
        assert ticket.status == TicketStatus.IN_PROGRESS

    def test_first_response_is_recorded_once(self, ticket):
        assert ticket.mark_first_response(at(8, 10))
        assert ticket.mark_first_response(at(8, 30)) is False
        assert ticket.first_response_at == at(8, 10)

    def test_force_close_fills_missing_timestamps(self, ticket):
        ticket.mark_first_response(at(8, 10))

        assert ticket.force_close(at(12))
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.first_response_at == at(8, 10)
        assert ticket.resolved_at == at(12)
        assert ticket.closed_at == at(12)

    def test_force_close_of_closed_ticket_is_a_no_op(self, ticket):
        ticket.change_status(TicketStatus.CLOSED, at(9))

        assert ticket.force_close(at(12)) is False
        assert ticket.closed_at == at(9)

    def test_assign(self, ticket):
        assert ticket.assign("tech-7", at(9))
        assert ticket.assign("tech-7", at(10)) is False
        assert ticket.assign(None, at(11))
        assert ticket.assigned_to_id is None

    def test_apply_sla_result(self, ticket):
        ticket.apply_sla_result(SLAResult(20, None, True, False))

        assert ticket.response_minutes == 20
        assert ticket.resolution_minutes is None
        assert ticket.breach_response is True
        assert ticket.breach_resolution is False


class TestSlaPolicy:

    def test_default_pause_statuses(self):
        policy = SlaPolicy(TENANT, COMPONENT, "LOW", 60, 480)

        assert policy.pause_statuses == frozenset({TicketStatus.WAITING_VENDOR})

    def test_pause_statuses_become_a_set(self):
        policy = SlaPolicy(TENANT, COMPONENT, "LOW", 60, 480, pause_statuses=["WAITING_VENDOR", "RESOLVED"])

        assert policy.pause_statuses == frozenset({TicketStatus.WAITING_VENDOR, TicketStatus.RESOLVED})


@pytest.mark.parametrize("status, expected", [
    (TicketStatus.OPEN, CaseStatus.NEW),
    (TicketStatus.IN_PROGRESS, CaseStatus.IN_EXECUTION),
    (TicketStatus.WAITING_VENDOR, CaseStatus.IN_EXECUTION),
    (TicketStatus.RESOLVED, CaseStatus.RESOLVED),
    (TicketStatus.CLOSED, CaseStatus.CLOSED),
])
def test_case_status_mapping(status, expected):
    assert map_ticket_status_to_case_status(status) == expected
