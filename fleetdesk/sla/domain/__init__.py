"""
SLA Domain Layer
================

Domain layer for the STS SLA engine.

Contains:
- Entities: Core business objects with identity (Ticket, TicketEvent, SlaPolicy, MaintenanceWindow)
- Value Objects: Immutable objects defined by attributes (Interval, TimelineCheckpoint, SLAResult)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from fleetdesk.sla.domain.entities import (
    ALLOWED_TRANSITIONS,
    MaintenanceWindow,
    SlaPolicy,
    Ticket,
    TicketEvent,
    can_transition,
    map_ticket_status_to_case_status,
)
from fleetdesk.sla.domain.value_objects import (
    NOT_EVALUATED,
    Interval,
    SLACalculator,
    SLAProgress,
    SLAResult,
    TimelineCheckpoint,
    ensure_utc,
    utc_now,
)

__all__ = [
    # Entities
    "Ticket",
    "TicketEvent",
    "SlaPolicy",
    "MaintenanceWindow",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "map_ticket_status_to_case_status",
    # Value Objects & Services
    "Interval",
    "TimelineCheckpoint",
    "SLAResult",
    "SLAProgress",
    "NOT_EVALUATED",
    "SLACalculator",
    "ensure_utc",
    "utc_now",
]
