"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Enum values are stored as plain strings and
timestamps read back are normalised to aware UTC.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fleetdesk.config import TicketSeverity, TicketStatus
from fleetdesk.core import RepositoryException
from fleetdesk.sla.application.services import (
    IAuditLogRepository,
    IMaintenanceWindowRepository,
    ISlaPolicyRepository,
    ITicketEventRepository,
    ITicketRepository,
)
from fleetdesk.sla.domain import MaintenanceWindow, SlaPolicy, Ticket, TicketEvent, ensure_utc
from fleetdesk.sla.infrastructure.models import (
    AuditLogModel,
    MaintenanceWindowModel,
    SlaPolicyModel,
    TicketEventModel,
    TicketModel,
)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _ticket_from_model(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        tenant_id=model.tenant_id,
        component_id=model.component_id,
        severity=model.severity,
        channel=model.channel,
        description=model.description,
        status=model.status,
        opened_at=ensure_utc(model.opened_at),
        first_response_at=ensure_utc(model.first_response_at),
        resolved_at=ensure_utc(model.resolved_at),
        closed_at=ensure_utc(model.closed_at),
        breach_response=model.breach_response,
        breach_resolution=model.breach_resolution,
        response_minutes=model.response_minutes,
        resolution_minutes=model.resolution_minutes,
        assigned_to_id=model.assigned_to_id,
        case_id=model.case_id,
        updated_at=ensure_utc(model.updated_at)
    )


def _event_from_model(model: TicketEventModel) -> TicketEvent:
    return TicketEvent(
        id=model.id,
        ticket_id=str(model.ticket_id),
        type=model.type,
        status=model.status,
        message=model.message,
        created_at=ensure_utc(model.created_at),
        created_by_id=model.created_by_id,
        meta=dict(model.meta or {})
    )


def _policy_from_model(model: SlaPolicyModel) -> SlaPolicy:
    return SlaPolicy(
        id=str(model.id),
        tenant_id=model.tenant_id,
        component_id=model.component_id,
        severity=model.severity,
        response_minutes=model.response_minutes,
        resolution_minutes=model.resolution_minutes,
        pause_statuses=frozenset(model.pause_statuses or [])
    )


def _window_from_model(model: MaintenanceWindowModel) -> MaintenanceWindow:
    return MaintenanceWindow(
        id=str(model.id),
        tenant_id=model.tenant_id,
        component_id=model.component_id,
        start_at=ensure_utc(model.start_at),
        end_at=ensure_utc(model.end_at),
        reason=model.reason
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, tenant_id: str, ticket_id: str) -> Optional[TicketModel]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = select(TicketModel).where(
            TicketModel.id == ticket_uuid,
            TicketModel.tenant_id == tenant_id
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, tenant_id: str, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID within a tenant."""
        model = await self._get_model(tenant_id, ticket_id)
        return _ticket_from_model(model) if model else None

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            tenant_id=ticket.tenant_id,
            component_id=ticket.component_id,
            severity=ticket.severity.value,
            channel=ticket.channel.value,
            description=ticket.description,
            status=ticket.status.value,
            opened_at=ticket.opened_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            updated_at=ticket.updated_at or ticket.opened_at,
            breach_response=ticket.breach_response,
            breach_resolution=ticket.breach_resolution,
            response_minutes=ticket.response_minutes,
            resolution_minutes=ticket.resolution_minutes,
            assigned_to_id=ticket.assigned_to_id,
            case_id=ticket.case_id
        )

        self._session.add(model)
        await self._session.flush()

        ticket.id = str(model.id)
        return ticket

    async def update(self, ticket: Ticket) -> Ticket:
        """Update existing ticket. ``opened_at`` is never rewritten."""
        model = await self._get_model(ticket.tenant_id, ticket.id)
        if not model:
            raise RepositoryException(f"Ticket {ticket.id} not found")

        model.status = ticket.status.value
        model.first_response_at = ticket.first_response_at
        model.resolved_at = ticket.resolved_at
        model.closed_at = ticket.closed_at
        model.breach_response = ticket.breach_response
        model.breach_resolution = ticket.breach_resolution
        model.response_minutes = ticket.response_minutes
        model.resolution_minutes = ticket.resolution_minutes
        model.assigned_to_id = ticket.assigned_to_id
        model.case_id = ticket.case_id
        if ticket.updated_at is not None:
            model.updated_at = ticket.updated_at

        await self._session.flush()
        return ticket

    async def list(
        self,
        tenant_id: str,
        filters: dict,
        limit: int = 200,
        offset: int = 0
    ) -> List[Ticket]:
        """List tickets with filters."""
        stmt = select(TicketModel)

        conditions = [TicketModel.tenant_id == tenant_id]
        if filters.get("severity"):
            conditions.append(TicketModel.severity == TicketSeverity(filters["severity"]).value)

        if filters.get("status"):
            status_list = filters["status"]
            if isinstance(status_list, list):
                conditions.append(TicketModel.status.in_([TicketStatus(s).value for s in status_list]))
            else:
                conditions.append(TicketModel.status == TicketStatus(status_list).value)

        if filters.get("component_id"):
            conditions.append(TicketModel.component_id == filters["component_id"])

        if filters.get("breach") == "response":
            conditions.append(TicketModel.breach_response.is_(True))
        elif filters.get("breach") == "resolution":
            conditions.append(TicketModel.breach_resolution.is_(True))

        stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(TicketModel.opened_at.desc())
        stmt = stmt.limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]

    async def list_open_for_case(self, tenant_id: str, case_id: str) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.tenant_id == tenant_id,
            TicketModel.case_id == case_id,
            TicketModel.status != TicketStatus.CLOSED.value
        ).order_by(TicketModel.opened_at.asc())
        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]

    async def list_all(self, tenant_id: str) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.tenant_id == tenant_id
        ).order_by(TicketModel.opened_at.asc())
        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]

    async def list_tenant_ids(self) -> List[str]:
        """Tenants that have at least one ticket."""
        stmt = select(TicketModel.tenant_id).distinct().order_by(TicketModel.tenant_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_period(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime
    ) -> List[Ticket]:
        stmt = select(TicketModel).where(
            TicketModel.tenant_id == tenant_id,
            or_(
                and_(TicketModel.opened_at >= start, TicketModel.opened_at < end),
                and_(TicketModel.closed_at >= start, TicketModel.closed_at < end),
                TicketModel.closed_at.is_(None)
            )
        )
        result = await self._session.execute(stmt)
        return [_ticket_from_model(m) for m in result.scalars().all()]


class SQLAlchemyTicketEventRepository(ITicketEventRepository):
    """Append-only event log backed by SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, event: TicketEvent) -> TicketEvent:
        """Append an event."""
        ticket_uuid = _parse_uuid(event.ticket_id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {event.ticket_id}")

        model = TicketEventModel(
            ticket_id=ticket_uuid,
            type=event.type.value,
            status=event.status.value if event.status is not None else None,
            message=event.message,
            created_at=event.created_at,
            created_by_id=event.created_by_id,
            meta=dict(event.meta)
        )

        self._session.add(model)
        await self._session.flush()

        event.id = model.id
        return event

    async def list_for_ticket(self, ticket_id: str) -> List[TicketEvent]:
        """Events ordered by creation time; ties keep insertion order."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []

        stmt = select(TicketEventModel).where(
            TicketEventModel.ticket_id == ticket_uuid
        ).order_by(TicketEventModel.created_at.asc(), TicketEventModel.id.asc())
        result = await self._session.execute(stmt)
        return [_event_from_model(m) for m in result.scalars().all()]


class SQLAlchemySlaPolicyRepository(ISlaPolicyRepository):
    """SQLAlchemy implementation of SLA policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(
        self,
        tenant_id: str,
        component_id: str,
        severity: TicketSeverity
    ) -> Optional[SlaPolicyModel]:
        stmt = select(SlaPolicyModel).where(
            SlaPolicyModel.tenant_id == tenant_id,
            SlaPolicyModel.component_id == component_id,
            SlaPolicyModel.severity == TicketSeverity(severity).value
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(
        self,
        tenant_id: str,
        component_id: str,
        severity: TicketSeverity
    ) -> Optional[SlaPolicy]:
        """Get policy by exact key; there is no fallback across severities."""
        model = await self._get_model(tenant_id, component_id, severity)
        return _policy_from_model(model) if model else None

    async def list(self, tenant_id: str) -> List[SlaPolicy]:
        stmt = select(SlaPolicyModel).where(
            SlaPolicyModel.tenant_id == tenant_id
        ).order_by(SlaPolicyModel.component_id.asc(), SlaPolicyModel.severity.asc())
        result = await self._session.execute(stmt)
        return [_policy_from_model(m) for m in result.scalars().all()]

    async def upsert_many(self, policies: List[SlaPolicy]) -> List[SlaPolicy]:
        """Create or update policies by (tenant, component, severity)."""
        saved = []
        for policy in policies:
            pause_statuses = sorted(s.value for s in policy.pause_statuses)
            model = await self._get_model(policy.tenant_id, policy.component_id, policy.severity)

            if model is None:
                model = SlaPolicyModel(
                    tenant_id=policy.tenant_id,
                    component_id=policy.component_id,
                    severity=policy.severity.value,
                    response_minutes=policy.response_minutes,
                    resolution_minutes=policy.resolution_minutes,
                    pause_statuses=pause_statuses
                )
                self._session.add(model)
            else:
                model.response_minutes = policy.response_minutes
                model.resolution_minutes = policy.resolution_minutes
                model.pause_statuses = pause_statuses
                model.updated_at = datetime.now(timezone.utc)

            await self._session.flush()
            saved.append(_policy_from_model(model))

        return saved


class SQLAlchemyMaintenanceWindowRepository(IMaintenanceWindowRepository):
    """SQLAlchemy implementation of maintenance window repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_applicable(
        self,
        tenant_id: str,
        component_id: str,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None
    ) -> List[MaintenanceWindow]:
        """Windows of the component or tenant-wide that overlap the range."""
        conditions = [
            MaintenanceWindowModel.tenant_id == tenant_id,
            or_(
                MaintenanceWindowModel.component_id == component_id,
                MaintenanceWindowModel.component_id.is_(None)
            )
        ]
        if range_end is not None:
            conditions.append(MaintenanceWindowModel.start_at < range_end)
        if range_start is not None:
            conditions.append(MaintenanceWindowModel.end_at > range_start)

        stmt = select(MaintenanceWindowModel).where(
            and_(*conditions)
        ).order_by(MaintenanceWindowModel.start_at.asc())
        result = await self._session.execute(stmt)
        return [_window_from_model(m) for m in result.scalars().all()]

    async def list(self, tenant_id: str, limit: int = 100) -> List[MaintenanceWindow]:
        stmt = select(MaintenanceWindowModel).where(
            MaintenanceWindowModel.tenant_id == tenant_id
        ).order_by(MaintenanceWindowModel.start_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return [_window_from_model(m) for m in result.scalars().all()]

    async def create(self, window: MaintenanceWindow) -> MaintenanceWindow:
        model = MaintenanceWindowModel(
            tenant_id=window.tenant_id,
            component_id=window.component_id,
            start_at=window.start_at,
            end_at=window.end_at,
            reason=window.reason
        )
        self._session.add(model)
        await self._session.flush()

        window.id = str(model.id)
        return window


class SQLAlchemyAuditLogRepository(IAuditLogRepository):
    """Audit trail written in the same transaction as the audited change."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        meta: Optional[dict] = None
    ) -> None:
        self._session.add(AuditLogModel(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            meta=meta or {}
        ))
        await self._session.flush()
