"""
SLA Application Services
=========================

Application services orchestrate the SLA engine and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Every ticket mutation runs inside the caller's unit of work: the change is
applied, the event appended, the full event list re-read together with
the policy and maintenance windows, and the resulting breach flags written
back before the transaction commits.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from fleetdesk.config import (
    CaseStatus, DEFAULT_PAUSE_STATUSES,
    TicketChannel, TicketEventType, TicketSeverity, TicketStatus
)
from fleetdesk.core import ResourceNotFoundException
from fleetdesk.sla.domain import (
    Interval, MaintenanceWindow, SLACalculator, SLAProgress, SLAResult,
    SlaPolicy, Ticket, TicketEvent, utc_now
)
from fleetdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access. Every lookup is tenant scoped."""

    @abstractmethod
    async def get(self, tenant_id: str, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID within a tenant."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket and assign its ID."""

    @abstractmethod
    async def update(self, ticket: Ticket) -> Ticket:
        """Persist the mutable fields of an existing ticket."""

    @abstractmethod
    async def list(
        self,
        tenant_id: str,
        filters: dict,
        limit: int = 200,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters, newest first."""

    @abstractmethod
    async def list_open_for_case(self, tenant_id: str, case_id: str) -> List[Ticket]:
        """Tickets linked to a case that are not closed yet."""

    @abstractmethod
    async def list_all(self, tenant_id: str) -> List[Ticket]:
        """Every ticket of a tenant."""

    @abstractmethod
    async def list_for_period(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime
    ) -> List[Ticket]:
        """Tickets opened or closed in ``[start, end)``, plus those still open."""


class ITicketEventRepository(ABC):
    """Interface for the append-only ticket event log."""

    @abstractmethod
    async def append(self, event: TicketEvent) -> TicketEvent:
        """Append an event."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[TicketEvent]:
        """All events of a ticket ordered by creation time, then insertion."""


class ISlaPolicyRepository(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    async def get(
        self,
        tenant_id: str,
        component_id: str,
        severity: TicketSeverity
    ) -> Optional[SlaPolicy]:
        """Get the policy for an exact (tenant, component, severity) key."""

    @abstractmethod
    async def list(self, tenant_id: str) -> List[SlaPolicy]:
        """All policies of a tenant."""

    @abstractmethod
    async def upsert_many(self, policies: List[SlaPolicy]) -> List[SlaPolicy]:
        """Create or update policies by key."""


class IMaintenanceWindowRepository(ABC):
    """Interface for maintenance window access."""

    @abstractmethod
    async def list_applicable(
        self,
        tenant_id: str,
        component_id: str,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None
    ) -> List[MaintenanceWindow]:
        """Windows for the component or tenant-wide, overlapping the range when given."""

    @abstractmethod
    async def list(self, tenant_id: str, limit: int = 100) -> List[MaintenanceWindow]:
        """Most recent windows of a tenant."""

    @abstractmethod
    async def create(self, window: MaintenanceWindow) -> MaintenanceWindow:
        """Create a window."""


class IAuditLogRepository(ABC):
    """Interface for the audit trail."""

    @abstractmethod
    async def record(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        meta: Optional[dict] = None
    ) -> None:
        """Append an audit entry."""


class ICaseGateway(ABC):
    """Interface to the case/work-order service."""

    @abstractmethod
    async def notify_status(
        self,
        tenant_id: str,
        case_id: str,
        status: CaseStatus,
        ticket_id: str
    ) -> bool:
        """Push the case status mirrored from a ticket. Returns False on failure."""


# ========== Results ==========

@dataclass
class TicketChange:
    """Outcome of a ticket mutation."""
    ticket: Ticket
    result: SLAResult
    status_changed: bool = False
    events: List[TicketEvent] = field(default_factory=list)


@dataclass
class TicketSLAView:
    """Read model: a ticket with its events, evaluation and live progress."""
    ticket: Ticket
    events: List[TicketEvent]
    policy: Optional[SlaPolicy]
    result: SLAResult
    progress: SLAProgress


# ========== Application Services ==========

class PolicyWindowResolver:
    """
    Finds the SLA policy and maintenance intervals that apply to a ticket.

    Reads the store on every call: a policy edit must change the outcome of
    the very next evaluation.
    """

    def __init__(
        self,
        policy_repository: ISlaPolicyRepository,
        window_repository: IMaintenanceWindowRepository
    ):
        self._policy_repo = policy_repository
        self._window_repo = window_repository

    async def resolve(
        self,
        tenant_id: str,
        component_id: str,
        severity: TicketSeverity,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None
    ) -> Tuple[Optional[SlaPolicy], List[Interval]]:
        policy = await self._policy_repo.get(tenant_id, component_id, severity)
        if policy is None:
            return None, []

        windows = await self._window_repo.list_applicable(
            tenant_id, component_id, range_start, range_end
        )
        return policy, [w.to_interval() for w in windows if w.applies_to(component_id)]


class TicketLifecycleService:
    """
    Ticket state machine.

    Applies lifecycle changes, appends the matching events and keeps the
    persisted breach flags in step with every mutation.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        event_repository: ITicketEventRepository,
        resolver: PolicyWindowResolver,
        audit_repository: Optional[IAuditLogRepository] = None,
        enforce_transitions: bool = True,
        warning_ratio: float = 0.8,
        clock: Callable[[], datetime] = utc_now
    ):
        self._ticket_repo = ticket_repository
        self._event_repo = event_repository
        self._resolver = resolver
        self._audit_repo = audit_repository
        self._enforce_transitions = enforce_transitions
        self._warning_ratio = warning_ratio
        self._clock = clock

    async def create_ticket(
        self,
        tenant_id: str,
        component_id: str,
        severity: TicketSeverity,
        channel: TicketChannel,
        description: str,
        actor_id: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
        case_id: Optional[str] = None
    ) -> TicketChange:
        """Open a ticket in OPEN and log its initial STATUS_CHANGE."""
        now = self._clock()
        ticket = await self._ticket_repo.create(Ticket(
            id=None,
            tenant_id=tenant_id,
            component_id=component_id,
            severity=severity,
            channel=channel,
            description=description,
            status=TicketStatus.OPEN,
            opened_at=now,
            assigned_to_id=assigned_to_id,
            case_id=case_id,
            updated_at=now
        ))

        event = await self._event_repo.append(TicketEvent(
            ticket_id=ticket.id,
            type=TicketEventType.STATUS_CHANGE,
            status=TicketStatus.OPEN,
            message="Ticket created",
            created_at=now,
            created_by_id=actor_id
        ))

        result = await self._refresh_sla(ticket)
        await self._audit(tenant_id, actor_id, "sts.ticket.create", ticket.id, {
            "severity": ticket.severity.value,
            "component_id": ticket.component_id
        })

        logger.info(
            "Ticket created",
            extra={"ticket_id": ticket.id, "tenant_id": tenant_id, "severity": ticket.severity.value}
        )
        return TicketChange(ticket=ticket, result=result, status_changed=True, events=[event])

    async def add_comment(
        self,
        tenant_id: str,
        ticket_id: str,
        message: str,
        is_response: bool = False,
        actor_id: Optional[str] = None
    ) -> TicketChange:
        """Append a comment; the first one flagged as response stops the response clock."""
        ticket = await self._get_ticket(tenant_id, ticket_id)
        now = self._clock()

        if is_response:
            ticket.mark_first_response(now)

        event = await self._event_repo.append(TicketEvent(
            ticket_id=ticket.id,
            type=TicketEventType.COMMENT,
            message=message,
            created_at=now,
            created_by_id=actor_id,
            meta={"is_response": is_response}
        ))

        result = await self._refresh_sla(ticket)
        await self._audit(tenant_id, actor_id, "sts.ticket.comment", ticket.id, {
            "is_response": is_response
        })
        return TicketChange(ticket=ticket, result=result, events=[event])

    async def update_ticket(
        self,
        tenant_id: str,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        assigned_to_id: Optional[str] = None,
        change_assignment: bool = False,
        actor_id: Optional[str] = None
    ) -> TicketChange:
        """
        Apply a status change and/or an assignment change.

        Raises InvalidStatusTransitionException for a status that is not
        reachable from the current one while transitions are enforced.
        """
        ticket = await self._get_ticket(tenant_id, ticket_id)
        now = self._clock()
        events: List[TicketEvent] = []
        audit_meta: Dict[str, object] = {}

        status_changed = False
        if status is not None:
            status_changed = ticket.change_status(status, now, self._enforce_transitions)

        if status_changed:
            events.append(await self._event_repo.append(TicketEvent(
                ticket_id=ticket.id,
                type=TicketEventType.STATUS_CHANGE,
                status=ticket.status,
                message=f"Status changed to {ticket.status.value}",
                created_at=now,
                created_by_id=actor_id
            )))
            audit_meta["status"] = ticket.status.value

        if change_assignment and ticket.assign(assigned_to_id, now):
            events.append(await self._event_repo.append(TicketEvent(
                ticket_id=ticket.id,
                type=TicketEventType.ASSIGN,
                message="Ticket assigned" if assigned_to_id else "Assignment removed",
                created_at=now,
                created_by_id=actor_id,
                meta={"assigned_to_id": assigned_to_id}
            )))
            audit_meta["assigned_to_id"] = assigned_to_id

        result = await self._refresh_sla(ticket)
        audit_meta.update(result.to_dict())
        await self._audit(tenant_id, actor_id, "sts.ticket.update", ticket.id, audit_meta)

        if status_changed:
            logger.info(
                "Ticket status changed",
                extra={
                    "ticket_id": ticket.id,
                    "tenant_id": tenant_id,
                    "status": ticket.status.value,
                    "breach_response": result.breach_response,
                    "breach_resolution": result.breach_resolution
                }
            )
        return TicketChange(ticket=ticket, result=result, status_changed=status_changed, events=events)

    async def force_close_for_case(
        self,
        tenant_id: str,
        case_id: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> List[TicketChange]:
        """
        Close every open ticket of a case that was closed externally.

        Administrative override: the transition table is not consulted and
        missing lifecycle timestamps are filled with the current time.
        """
        now = self._clock()
        changes = []

        for ticket in await self._ticket_repo.list_open_for_case(tenant_id, case_id):
            if not ticket.force_close(now):
                continue

            event = await self._event_repo.append(TicketEvent(
                ticket_id=ticket.id,
                type=TicketEventType.STATUS_CHANGE,
                status=TicketStatus.CLOSED,
                message=reason or "Ticket closed automatically with its case",
                created_at=now,
                created_by_id=actor_id,
                meta={"forced": True, "case_id": case_id}
            ))

            result = await self._refresh_sla(ticket)
            await self._audit(tenant_id, actor_id, "sts.ticket.force_close", ticket.id, {
                "case_id": case_id,
                **result.to_dict()
            })
            changes.append(TicketChange(ticket=ticket, result=result, status_changed=True, events=[event]))

        if changes:
            logger.info(
                "Tickets force-closed with case",
                extra={"tenant_id": tenant_id, "case_id": case_id, "tickets_closed": len(changes)}
            )
        return changes

    async def recompute_tenant(self, tenant_id: str) -> Tuple[int, int]:
        """
        Re-evaluate and persist SLA figures for every ticket of a tenant.

        Returns (tickets evaluated, tickets whose breach flags changed).
        """
        evaluated = 0
        changed = 0
        for ticket in await self._ticket_repo.list_all(tenant_id):
            before = (ticket.breach_response, ticket.breach_resolution)
            result = await self._refresh_sla(ticket)
            evaluated += 1
            if (result.breach_response, result.breach_resolution) != before:
                changed += 1

        logger.info(
            "SLA recompute complete",
            extra={"tenant_id": tenant_id, "tickets_evaluated": evaluated, "flags_changed": changed}
        )
        return evaluated, changed

    async def get_ticket_sla(self, tenant_id: str, ticket_id: str) -> TicketSLAView:
        """Evaluate a ticket on read, including the live progress of its running clocks."""
        ticket = await self._get_ticket(tenant_id, ticket_id)
        now = self._clock()
        events = await self._event_repo.list_for_ticket(ticket.id)
        policy, windows = await self._resolve(ticket, now)

        result = SLACalculator.evaluate(
            ticket.opened_at, ticket.first_response_at, ticket.resolved_at,
            ticket.closed_at, events, policy, windows
        )
        progress = SLACalculator.live_progress(now, ticket, policy, result, self._warning_ratio)
        return TicketSLAView(ticket=ticket, events=events, policy=policy, result=result, progress=progress)

    # ========== Internals ==========

    async def _get_ticket(self, tenant_id: str, ticket_id: str) -> Ticket:
        ticket = await self._ticket_repo.get(tenant_id, ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def _resolve(self, ticket: Ticket, now: datetime) -> Tuple[Optional[SlaPolicy], List[Interval]]:
        range_end = ticket.closed_at or ticket.resolved_at or now
        return await self._resolver.resolve(
            ticket.tenant_id, ticket.component_id, ticket.severity,
            ticket.opened_at, max(range_end, ticket.opened_at)
        )

    async def _refresh_sla(self, ticket: Ticket) -> SLAResult:
        """Recompute the evaluation from stored events and write it onto the ticket."""
        events = await self._event_repo.list_for_ticket(ticket.id)
        policy, windows = await self._resolve(ticket, self._clock())

        result = SLACalculator.evaluate(
            ticket.opened_at, ticket.first_response_at, ticket.resolved_at,
            ticket.closed_at, events, policy, windows
        )
        ticket.apply_sla_result(result)
        await self._ticket_repo.update(ticket)
        return result

    async def _audit(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action: str,
        ticket_id: str,
        meta: dict
    ) -> None:
        if self._audit_repo is None:
            return
        await self._audit_repo.record(tenant_id, actor_id, action, "StsTicket", ticket_id, meta)


class SlaConfigurationService:
    """Administrative management of SLA policies and maintenance windows."""

    def __init__(
        self,
        policy_repository: ISlaPolicyRepository,
        window_repository: IMaintenanceWindowRepository,
        audit_repository: Optional[IAuditLogRepository] = None
    ):
        self._policy_repo = policy_repository
        self._window_repo = window_repository
        self._audit_repo = audit_repository

    async def upsert_policies(
        self,
        tenant_id: str,
        items: List[dict],
        actor_id: Optional[str] = None
    ) -> List[SlaPolicy]:
        """Create or update policies; omitted pause statuses fall back to WAITING_VENDOR."""
        policies = [
            SlaPolicy(
                tenant_id=tenant_id,
                component_id=item["component_id"],
                severity=item["severity"],
                response_minutes=item["response_minutes"],
                resolution_minutes=item["resolution_minutes"],
                pause_statuses=(
                    DEFAULT_PAUSE_STATUSES
                    if item.get("pause_statuses") is None
                    else item["pause_statuses"]
                )
            )
            for item in items
        ]
        saved = await self._policy_repo.upsert_many(policies)

        if self._audit_repo is not None:
            await self._audit_repo.record(
                tenant_id, actor_id, "sts.sla_policy.upsert", "StsSlaPolicy", tenant_id,
                {"count": len(saved)}
            )
        logger.info("SLA policies upserted", extra={"tenant_id": tenant_id, "count": len(saved)})
        return saved

    async def list_policies(self, tenant_id: str) -> List[SlaPolicy]:
        return await self._policy_repo.list(tenant_id)

    async def create_window(
        self,
        tenant_id: str,
        start_at: datetime,
        end_at: datetime,
        component_id: Optional[str] = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> MaintenanceWindow:
        window = await self._window_repo.create(MaintenanceWindow(
            tenant_id=tenant_id,
            start_at=start_at,
            end_at=end_at,
            component_id=component_id,
            reason=reason
        ))
        if self._audit_repo is not None:
            await self._audit_repo.record(
                tenant_id, actor_id, "sts.maintenance_window.create", "StsMaintenanceWindow",
                window.id, {"component_id": component_id}
            )
        return window

    async def list_windows(self, tenant_id: str, limit: int = 100) -> List[MaintenanceWindow]:
        return await self._window_repo.list(tenant_id, limit)


def _percentage(part: int, total: int) -> int:
    """Whole percentage, rounded half-up; 0 for an empty population."""
    if total <= 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))


def _average(values: List[Optional[int]]) -> int:
    present = [v for v in values if v is not None]
    if not present:
        return 0
    return int(math.floor(sum(present) / len(present) + 0.5))


class SLAReportService:
    """
    Compliance figures read from the persisted ticket evaluation.

    Reporting never re-runs the accumulator; it trusts the flags and
    minutes written by the lifecycle service.
    """

    def __init__(self, ticket_repository: ITicketRepository):
        self._ticket_repo = ticket_repository

    async def compliance_summary(self, tenant_id: str, start: datetime, end: datetime) -> dict:
        tickets = await self._ticket_repo.list_for_period(tenant_id, start, end)
        closed = [t for t in tickets if t.closed_at is not None and start <= t.closed_at < end]

        response_breaches = sum(1 for t in closed if t.breach_response)
        resolution_breaches = sum(1 for t in closed if t.breach_resolution)

        groups: Dict[Tuple[str, TicketSeverity], List[Ticket]] = {}
        for ticket in closed:
            groups.setdefault((ticket.component_id, ticket.severity), []).append(ticket)

        rows = []
        for (component_id, severity), members in sorted(groups.items(), key=lambda kv: (kv[0][0], kv[0][1].value)):
            rows.append({
                "component_id": component_id,
                "severity": severity,
                "total": len(members),
                "response_compliance": _percentage(
                    len(members) - sum(1 for t in members if t.breach_response), len(members)
                ),
                "resolution_compliance": _percentage(
                    len(members) - sum(1 for t in members if t.breach_resolution), len(members)
                ),
            })

        return {
            "start": start,
            "end": end,
            "summary": {
                "total_tickets": len(tickets),
                "open_tickets": sum(1 for t in tickets if t.status != TicketStatus.CLOSED),
                "closed_tickets": sum(1 for t in tickets if t.status == TicketStatus.CLOSED),
                "response_breaches": response_breaches,
                "resolution_breaches": resolution_breaches,
                "response_compliance": _percentage(len(closed) - response_breaches, len(closed)),
                "resolution_compliance": _percentage(len(closed) - resolution_breaches, len(closed)),
                "avg_response_minutes": _average([t.response_minutes for t in closed]),
                "avg_resolution_minutes": _average([t.resolution_minutes for t in closed]),
            },
            "by_component_severity": rows,
        }
