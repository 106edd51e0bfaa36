"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the STS module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: External service integrations (case service, policy seed file)
"""

from fleetdesk.sla.infrastructure.models import (
    TicketModel,
    TicketEventModel,
    SlaPolicyModel,
    MaintenanceWindowModel,
    AuditLogModel,
)
from fleetdesk.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyTicketEventRepository,
    SQLAlchemySlaPolicyRepository,
    SQLAlchemyMaintenanceWindowRepository,
    SQLAlchemyAuditLogRepository,
)
from fleetdesk.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    HttpCaseGateway,
    LoggingCaseGateway,
    PolicySeedLoader,
    get_case_gateway,
    close_case_gateway,
)

__all__ = [
    "TicketModel",
    "TicketEventModel",
    "SlaPolicyModel",
    "MaintenanceWindowModel",
    "AuditLogModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyTicketEventRepository",
    "SQLAlchemySlaPolicyRepository",
    "SQLAlchemyMaintenanceWindowRepository",
    "SQLAlchemyAuditLogRepository",
    "CircuitBreaker",
    "CircuitState",
    "HttpCaseGateway",
    "LoggingCaseGateway",
    "PolicySeedLoader",
    "get_case_gateway",
    "close_case_gateway",
]
