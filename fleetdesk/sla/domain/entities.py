"""
SLA Domain Entities
====================

Pure Python domain entities for STS tickets and their SLA configuration.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from fleetdesk.config import (
    CaseStatus, DEFAULT_PAUSE_STATUSES,
    TicketChannel, TicketEventType, TicketSeverity, TicketStatus
)
from fleetdesk.core import InvalidStatusTransitionException
from fleetdesk.sla.domain.value_objects import Interval


# Forward moves may skip intermediate states; the only way back is
# resuming work after a vendor wait.
ALLOWED_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({
        TicketStatus.IN_PROGRESS, TicketStatus.WAITING_VENDOR,
        TicketStatus.RESOLVED, TicketStatus.CLOSED,
    }),
    TicketStatus.IN_PROGRESS: frozenset({
        TicketStatus.WAITING_VENDOR, TicketStatus.RESOLVED, TicketStatus.CLOSED,
    }),
    TicketStatus.WAITING_VENDOR: frozenset({
        TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED,
    }),
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED}),
    TicketStatus.CLOSED: frozenset(),
}


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    """Check whether ``target`` is reachable from ``current`` in one step."""
    return target in ALLOWED_TRANSITIONS[TicketStatus(current)]


def map_ticket_status_to_case_status(status: TicketStatus) -> CaseStatus:
    """Case status mirrored from the status of its STS ticket."""
    if status == TicketStatus.OPEN:
        return CaseStatus.NEW
    if status in (TicketStatus.IN_PROGRESS, TicketStatus.WAITING_VENDOR):
        return CaseStatus.IN_EXECUTION
    if status == TicketStatus.RESOLVED:
        return CaseStatus.RESOLVED
    return CaseStatus.CLOSED


@dataclass
class Ticket:
    """
    STS ticket entity.

    Holds the lifecycle timestamps the SLA engine works from. ``opened_at``
    is fixed at creation and ``first_response_at`` is only ever set once.
    """

    id: Optional[str]
    tenant_id: str
    component_id: str
    severity: TicketSeverity
    channel: TicketChannel
    description: str
    status: TicketStatus
    opened_at: datetime

    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # Persisted evaluation, refreshed on every mutation
    breach_response: bool = False
    breach_resolution: bool = False
    response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None

    assigned_to_id: Optional[str] = None
    case_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = TicketStatus(self.status)
        self.severity = TicketSeverity(self.severity)
        self.channel = TicketChannel(self.channel)

    @property
    def is_open(self) -> bool:
        """Check if ticket is still open."""
        return self.status != TicketStatus.CLOSED

    def mark_first_response(self, timestamp: datetime) -> bool:
        """Record the first response. Returns False if one was already recorded."""
        if self.first_response_at is not None:
            return False
        self.first_response_at = timestamp
        self.updated_at = timestamp
        return True

    def change_status(
        self,
        new_status: TicketStatus,
        timestamp: datetime,
        enforce_transitions: bool = True
    ) -> bool:
        """
        Move the ticket to ``new_status``.

        Returns False when the ticket already is in that status (no-op).
        Raises InvalidStatusTransitionException for a move outside the
        transition table while transitions are enforced.
        """
        new_status = TicketStatus(new_status)
        if new_status == self.status:
            return False

        if enforce_transitions and not can_transition(self.status, new_status):
            raise InvalidStatusTransitionException(
                str(self.id), self.status.value, new_status.value
            )

        self.status = new_status
        if new_status == TicketStatus.RESOLVED and self.resolved_at is None:
            self.resolved_at = timestamp
        if new_status == TicketStatus.CLOSED:
            self.closed_at = timestamp
            if self.resolved_at is None:
                self.resolved_at = timestamp
        self.updated_at = timestamp
        return True

    def force_close(self, timestamp: datetime) -> bool:
        """
        Administrative close, bypassing the transition table.

        Fills any missing lifecycle timestamp with ``timestamp``. Returns
        False if the ticket was already closed.
        """
        if self.status == TicketStatus.CLOSED:
            return False
        self.status = TicketStatus.CLOSED
        if self.first_response_at is None:
            self.first_response_at = timestamp
        if self.resolved_at is None:
            self.resolved_at = timestamp
        if self.closed_at is None:
            self.closed_at = timestamp
        self.updated_at = timestamp
        return True

    def assign(self, assigned_to_id: Optional[str], timestamp: datetime) -> bool:
        """Change the assignee. Returns False when unchanged."""
        if assigned_to_id == self.assigned_to_id:
            return False
        self.assigned_to_id = assigned_to_id
        self.updated_at = timestamp
        return True

    def apply_sla_result(self, result) -> None:
        """Store the latest evaluation on the ticket."""
        self.breach_response = result.breach_response
        self.breach_resolution = result.breach_resolution
        self.response_minutes = result.response_minutes
        self.resolution_minutes = result.resolution_minutes


@dataclass
class TicketEvent:
    """
    Append-only timeline record of a ticket.

    A stored STATUS_CHANGE without a status is kept as-is; the timeline
    simply skips it.
    """

    ticket_id: str
    type: TicketEventType
    created_at: datetime
    status: Optional[TicketStatus] = None
    message: Optional[str] = None
    created_by_id: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def __post_init__(self):
        self.type = TicketEventType(self.type)
        if self.status is not None:
            self.status = TicketStatus(self.status)


@dataclass
class SlaPolicy:
    """SLA limits for one (tenant, component, severity) combination."""

    tenant_id: str
    component_id: str
    severity: TicketSeverity
    response_minutes: int
    resolution_minutes: int
    pause_statuses: FrozenSet[TicketStatus] = DEFAULT_PAUSE_STATUSES
    id: Optional[str] = None

    def __post_init__(self):
        self.severity = TicketSeverity(self.severity)
        self.pause_statuses = frozenset(TicketStatus(s) for s in self.pause_statuses)


@dataclass
class MaintenanceWindow:
    """Declared outage excluded from SLA clocks; ``component_id=None`` is tenant-wide."""

    tenant_id: str
    start_at: datetime
    end_at: datetime
    component_id: Optional[str] = None
    reason: Optional[str] = None
    id: Optional[str] = None

    def applies_to(self, component_id: str) -> bool:
        return self.component_id is None or self.component_id == component_id

    def to_interval(self) -> Interval:
        return Interval(start_at=self.start_at, end_at=self.end_at)
