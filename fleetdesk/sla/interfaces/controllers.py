"""
STS Controllers (API Routes)
=============================

FastAPI routes for STS tickets and SLA administration.

Controllers are thin - they delegate to application services. The tenant
is taken from the ``X-Tenant-ID`` header, the acting user from
``X-Actor-ID``. Application exceptions raised by the services are mapped
to HTTP responses by the handlers registered in ``fleetdesk.main``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleetdesk.config import TicketSeverity, TicketStatus
from fleetdesk.infrastructure.database import get_session
from fleetdesk.sla.application import (
    CommentCreateRequest,
    DashboardResponse,
    ForceCloseResponse,
    ICaseGateway,
    MaintenanceWindowCreateRequest,
    MaintenanceWindowListResponse,
    MaintenanceWindowResponse,
    RecomputeResponse,
    SLAEvaluationResponse,
    SLAReportService,
    SlaConfigurationService,
    SlaPolicyListResponse,
    SlaPolicyResponse,
    SlaPolicyUpsertRequest,
    TicketCreateRequest,
    TicketDetailResponse,
    TicketEventResponse,
    TicketLifecycleService,
    TicketListResponse,
    TicketResponse,
    TicketUpdateRequest,
)
from fleetdesk.sla.domain import Ticket, ensure_utc, map_ticket_status_to_case_status
from fleetdesk.sla.infrastructure import get_case_gateway
from fleetdesk.sla.infrastructure.bootstrap import (
    build_configuration_service,
    build_lifecycle_service,
    build_report_service,
)
from fleetdesk.sla.infrastructure.repositories import SQLAlchemyTicketRepository
from fleetdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sts", tags=["STS Tickets & SLA"])


# ========== Example payloads for Swagger ==========

TICKET_DETAIL_RESPONSE_EXAMPLE = {
    "ticket": {
        "id": "123e4567-e89b-12d3-a456-426614174000",
        "tenant_id": "tenant-1",
        "component_id": "cctv-depot-3",
        "severity": "HIGH",
        "channel": "PHONE",
        "description": "Camera 4 at depot 3 shows no image since this morning",
        "status": "IN_PROGRESS",
        "opened_at": "2024-01-15T08:00:00Z",
        "first_response_at": "2024-01-15T08:20:00Z",
        "breach_response": True,
        "breach_resolution": False,
        "response_minutes": 20,
        "resolution_minutes": None
    },
    "events": [],
    "sla": {
        "policy_applies": True,
        "response_minutes": 20,
        "resolution_minutes": None,
        "breach_response": True,
        "breach_resolution": False,
        "response_progress": None,
        "resolution_progress": 0.42,
        "response_near_breach": False,
        "resolution_near_breach": False
    }
}

DASHBOARD_RESPONSE_EXAMPLE = {
    "start": "2024-01-01T00:00:00Z",
    "end": "2024-02-01T00:00:00Z",
    "summary": {
        "total_tickets": 12,
        "open_tickets": 3,
        "closed_tickets": 9,
        "response_breaches": 1,
        "resolution_breaches": 2,
        "response_compliance": 89,
        "resolution_compliance": 78,
        "avg_response_minutes": 14,
        "avg_resolution_minutes": 187
    },
    "by_component_severity": [
        {
            "component_id": "cctv-depot-3",
            "severity": "HIGH",
            "total": 4,
            "response_compliance": 75,
            "resolution_compliance": 100
        }
    ]
}


# ========== Dependencies ==========

@dataclass
class RequestContext:
    """Tenant and actor of the current request."""
    tenant_id: str
    actor_id: Optional[str] = None


async def get_request_context(
    x_tenant_id: Optional[str] = Header(None, description="Tenant the request acts on"),
    x_actor_id: Optional[str] = Header(None, description="User performing the request")
) -> RequestContext:
    """Resolve the tenant scope; every STS route requires one."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Tenant-ID header is required"
        )
    return RequestContext(tenant_id=x_tenant_id, actor_id=x_actor_id)


async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session)
) -> TicketLifecycleService:
    """Get ticket lifecycle service instance."""
    return build_lifecycle_service(session)


async def get_configuration_service(
    session: AsyncSession = Depends(get_session)
) -> SlaConfigurationService:
    """Get SLA configuration service instance."""
    return build_configuration_service(session)


async def get_report_service(
    session: AsyncSession = Depends(get_session)
) -> SLAReportService:
    """Get SLA report service instance."""
    return build_report_service(session)


def get_case_gateway_dependency() -> ICaseGateway:
    return get_case_gateway()


async def sync_case_status(gateway: ICaseGateway, tenant_id: str, ticket: Ticket) -> None:
    """Mirror the ticket status onto its linked case; runs after the commit."""
    await gateway.notify_status(
        tenant_id,
        ticket.case_id,
        map_ticket_status_to_case_status(ticket.status),
        ticket.id
    )


def _month_bounds(now: datetime) -> tuple:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


# ========== Tickets ==========

@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open an STS ticket",
    description="""
    Open a ticket against a fleet component. The ticket starts in `OPEN`,
    its SLA clocks start at creation time and the breach flags are
    evaluated immediately.

    **Severities**: `EMERGENCY`, `HIGH`, `MEDIUM`, `LOW`

    **Channels**: `PHONE`, `EMAIL`, `PORTAL`, `WHATSAPP`, `OTHER`

    **Example Request**:
    ```json
    {
        "component_id": "cctv-depot-3",
        "severity": "HIGH",
        "channel": "PHONE",
        "description": "Camera 4 at depot 3 shows no image since this morning",
        "case_id": "WO-2024-0113"
    }
    ```
    """,
    responses={
        201: {"description": "Ticket opened"},
        401: {"description": "Missing X-Tenant-ID header"}
    }
)
async def create_ticket(
    request: TicketCreateRequest,
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service)
):
    change = await service.create_ticket(
        context.tenant_id,
        request.component_id,
        request.severity,
        request.channel,
        request.description,
        actor_id=context.actor_id,
        assigned_to_id=request.assigned_to_id,
        case_id=request.case_id
    )
    return TicketResponse.model_validate(change.ticket)


@router.get(
    "/tickets",
    response_model=TicketListResponse,
    summary="List STS tickets",
    description="""
    List tickets of the tenant, newest first.

    **Query Parameters:**
    - `severity`: Filter by severity
    - `status`: Filter by status (repeatable)
    - `component_id`: Filter by component
    - `breach`: `response` or `resolution` to list breached tickets only
    - `limit` / `offset`: Pagination
    """
)
async def list_tickets(
    severity: Optional[TicketSeverity] = Query(None, description="Filter by severity"),
    ticket_status: Optional[List[TicketStatus]] = Query(None, alias="status", description="Filter by status"),
    component_id: Optional[str] = Query(None, description="Filter by component"),
    breach: Optional[Literal["response", "resolution"]] = Query(None, description="Only breached tickets"),
    limit: int = Query(200, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    context: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session)
):
    filters = {}
    if severity:
        filters["severity"] = severity
    if ticket_status:
        filters["status"] = ticket_status
    if component_id:
        filters["component_id"] = component_id
    if breach:
        filters["breach"] = breach

    tickets = await SQLAlchemyTicketRepository(session).list(
        context.tenant_id, filters, limit=limit, offset=offset
    )
    return TicketListResponse(items=[TicketResponse.model_validate(t) for t in tickets])


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketDetailResponse,
    summary="Get ticket with SLA evaluation",
    description="""
    Get a ticket with its event timeline and an SLA evaluation computed on
    read, including the live progress (0-1) of clocks that are still
    running and their near-breach warnings.
    """,
    responses={
        200: {
            "description": "Ticket detail",
            "content": {"application/json": {"example": TICKET_DETAIL_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket(
    ticket_id: str,
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service)
):
    view = await service.get_ticket_sla(context.tenant_id, ticket_id)

    return TicketDetailResponse(
        ticket=TicketResponse.model_validate(view.ticket),
        events=[TicketEventResponse.model_validate(e) for e in view.events],
        sla=SLAEvaluationResponse(
            policy_applies=view.policy is not None,
            response_minutes=view.result.response_minutes,
            resolution_minutes=view.result.resolution_minutes,
            breach_response=view.result.breach_response,
            breach_resolution=view.result.breach_resolution,
            response_progress=view.progress.response_progress,
            resolution_progress=view.progress.resolution_progress,
            response_near_breach=view.progress.response_near_breach,
            resolution_near_breach=view.progress.resolution_near_breach
        )
    )


@router.patch(
    "/tickets/{ticket_id}",
    response_model=TicketResponse,
    summary="Change ticket status or assignee",
    description="""
    Move the ticket through its lifecycle and/or change its assignee.

    **Transitions**: `OPEN -> IN_PROGRESS -> WAITING_VENDOR -> RESOLVED -> CLOSED`,
    forward skips allowed, plus `WAITING_VENDOR -> IN_PROGRESS`. Any other
    move is rejected with 409.

    When the ticket is linked to a case, the mapped case status is pushed
    to the case service after the change is committed.
    """,
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Status transition not allowed"}
    }
)
async def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    background_tasks: BackgroundTasks,
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service),
    session: AsyncSession = Depends(get_session),
    gateway: ICaseGateway = Depends(get_case_gateway_dependency)
):
    change = await service.update_ticket(
        context.tenant_id,
        ticket_id,
        status=request.status,
        assigned_to_id=request.assigned_to_id,
        change_assignment=request.has_assignment,
        actor_id=context.actor_id
    )
    await session.commit()

    if change.status_changed and change.ticket.case_id:
        logger.debug(
            "Case status sync scheduled",
            extra={"ticket_id": change.ticket.id, "case_id": change.ticket.case_id}
        )
        background_tasks.add_task(sync_case_status, gateway, context.tenant_id, change.ticket)

    return TicketResponse.model_validate(change.ticket)


@router.post(
    "/tickets/{ticket_id}/events",
    response_model=TicketEventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a ticket",
    description="""
    Append a comment. With `is_response: true` the first such comment
    stops the response clock.
    """,
    responses={404: {"description": "Ticket not found"}}
)
async def add_comment(
    ticket_id: str,
    request: CommentCreateRequest,
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service)
):
    change = await service.add_comment(
        context.tenant_id,
        ticket_id,
        request.message,
        is_response=request.is_response,
        actor_id=context.actor_id
    )
    return TicketEventResponse.model_validate(change.events[0])


# ========== Case integration ==========

@router.post(
    "/cases/{case_id}/close-tickets",
    response_model=ForceCloseResponse,
    summary="Close the tickets of a closed case",
    description="""
    Called when a case / work order is validated and closed outside the
    STS. Every ticket of the case that is still open is closed, missing
    lifecycle timestamps are filled with the current time and the SLA
    flags are recomputed.
    """
)
async def close_case_tickets(
    case_id: str,
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service)
):
    changes = await service.force_close_for_case(context.tenant_id, case_id, actor_id=context.actor_id)
    return ForceCloseResponse(closed=len(changes), ticket_ids=[c.ticket.id for c in changes])


# ========== SLA administration ==========

@router.get(
    "/sla-policies",
    response_model=SlaPolicyListResponse,
    summary="List SLA policies"
)
async def list_policies(
    context: RequestContext = Depends(get_request_context),
    service: SlaConfigurationService = Depends(get_configuration_service)
):
    policies = await service.list_policies(context.tenant_id)
    return SlaPolicyListResponse(items=[SlaPolicyResponse.model_validate(p) for p in policies])


@router.put(
    "/sla-policies",
    response_model=SlaPolicyListResponse,
    summary="Create or update SLA policies",
    description="""
    Bulk upsert of policies keyed by `(component_id, severity)`. Omitted
    `pause_statuses` default to `["WAITING_VENDOR"]`. Existing ticket flags
    are not touched; call `POST /sts/sla/recompute` to re-evaluate them.
    """
)
async def upsert_policies(
    request: SlaPolicyUpsertRequest,
    context: RequestContext = Depends(get_request_context),
    service: SlaConfigurationService = Depends(get_configuration_service)
):
    saved = await service.upsert_policies(
        context.tenant_id,
        [item.model_dump() for item in request.items],
        actor_id=context.actor_id
    )
    return SlaPolicyListResponse(items=[SlaPolicyResponse.model_validate(p) for p in saved])


@router.get(
    "/maintenance-windows",
    response_model=MaintenanceWindowListResponse,
    summary="List maintenance windows"
)
async def list_maintenance_windows(
    limit: int = Query(100, ge=1, le=1000),
    context: RequestContext = Depends(get_request_context),
    service: SlaConfigurationService = Depends(get_configuration_service)
):
    windows = await service.list_windows(context.tenant_id, limit)
    return MaintenanceWindowListResponse(items=[MaintenanceWindowResponse.model_validate(w) for w in windows])


@router.post(
    "/maintenance-windows",
    response_model=MaintenanceWindowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Declare a maintenance window",
    description="""
    Time inside a window does not count toward the resolution SLA of the
    component's tickets. A window without `component_id` covers every
    component of the tenant.
    """
)
async def create_maintenance_window(
    request: MaintenanceWindowCreateRequest,
    context: RequestContext = Depends(get_request_context),
    service: SlaConfigurationService = Depends(get_configuration_service)
):
    window = await service.create_window(
        context.tenant_id,
        ensure_utc(request.start_at),
        ensure_utc(request.end_at),
        component_id=request.component_id,
        reason=request.reason,
        actor_id=context.actor_id
    )
    return MaintenanceWindowResponse.model_validate(window)


@router.post(
    "/sla/recompute",
    response_model=RecomputeResponse,
    summary="Recompute SLA flags of the tenant",
    description="Re-evaluate every ticket of the tenant against the current policies and windows."
)
async def recompute_sla(
    context: RequestContext = Depends(get_request_context),
    service: TicketLifecycleService = Depends(get_lifecycle_service)
):
    evaluated, changed = await service.recompute_tenant(context.tenant_id)
    return RecomputeResponse(tickets_evaluated=evaluated, flags_changed=changed)


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="SLA compliance dashboard",
    description="""
    Compliance over the tickets closed in `[start, end)` (default: the
    current calendar month, UTC), read from the persisted breach flags.
    """,
    responses={
        200: {
            "description": "Dashboard data",
            "content": {"application/json": {"example": DASHBOARD_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_dashboard(
    start: Optional[datetime] = Query(None, description="Period start (inclusive)"),
    end: Optional[datetime] = Query(None, description="Period end (exclusive)"),
    context: RequestContext = Depends(get_request_context),
    service: SLAReportService = Depends(get_report_service)
):
    default_start, default_end = _month_bounds(datetime.now(timezone.utc))
    period_start = ensure_utc(start) or default_start
    period_end = ensure_utc(end) or default_end
    if period_end <= period_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must be after start"
        )

    summary = await service.compliance_summary(context.tenant_id, period_start, period_end)
    return DashboardResponse(**summary)


# Export router for inclusion in main app
sts_router = router
