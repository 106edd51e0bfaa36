"""
SLA Application Layer
======================

Application layer for the STS SLA engine.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from fleetdesk.sla.application.dto import (
    TicketCreateRequest,
    TicketUpdateRequest,
    CommentCreateRequest,
    SlaPolicyItem,
    SlaPolicyUpsertRequest,
    MaintenanceWindowCreateRequest,
    TicketResponse,
    TicketEventResponse,
    SLAEvaluationResponse,
    TicketDetailResponse,
    TicketListResponse,
    SlaPolicyResponse,
    SlaPolicyListResponse,
    MaintenanceWindowResponse,
    MaintenanceWindowListResponse,
    ForceCloseResponse,
    RecomputeResponse,
    ComponentSeverityCompliance,
    DashboardSummary,
    DashboardResponse,
)
from fleetdesk.sla.application.services import (
    PolicyWindowResolver,
    TicketLifecycleService,
    SlaConfigurationService,
    SLAReportService,
    TicketChange,
    TicketSLAView,
    ITicketRepository,
    ITicketEventRepository,
    ISlaPolicyRepository,
    IMaintenanceWindowRepository,
    IAuditLogRepository,
    ICaseGateway,
)

__all__ = [
    # DTOs
    "TicketCreateRequest",
    "TicketUpdateRequest",
    "CommentCreateRequest",
    "SlaPolicyItem",
    "SlaPolicyUpsertRequest",
    "MaintenanceWindowCreateRequest",
    "TicketResponse",
    "TicketEventResponse",
    "SLAEvaluationResponse",
    "TicketDetailResponse",
    "TicketListResponse",
    "SlaPolicyResponse",
    "SlaPolicyListResponse",
    "MaintenanceWindowResponse",
    "MaintenanceWindowListResponse",
    "ForceCloseResponse",
    "RecomputeResponse",
    "ComponentSeverityCompliance",
    "DashboardSummary",
    "DashboardResponse",
    # Services
    "PolicyWindowResolver",
    "TicketLifecycleService",
    "SlaConfigurationService",
    "SLAReportService",
    "TicketChange",
    "TicketSLAView",
    # Repository Interfaces
    "ITicketRepository",
    "ITicketEventRepository",
    "ISlaPolicyRepository",
    "IMaintenanceWindowRepository",
    "IAuditLogRepository",
    "ICaseGateway",
]
