"""
Service wiring for a database session.

Used by the HTTP dependencies, the application startup and the
operational scripts so that all of them build services the same way.
"""

from pathlib import Path
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from fleetdesk.config import get_settings
from fleetdesk.sla.application.services import (
    PolicyWindowResolver,
    SLAReportService,
    SlaConfigurationService,
    TicketLifecycleService,
)
from fleetdesk.sla.infrastructure.external import PolicySeedLoader
from fleetdesk.sla.infrastructure.repositories import (
    SQLAlchemyAuditLogRepository,
    SQLAlchemyMaintenanceWindowRepository,
    SQLAlchemySlaPolicyRepository,
    SQLAlchemyTicketEventRepository,
    SQLAlchemyTicketRepository,
)


def build_lifecycle_service(session: AsyncSession) -> TicketLifecycleService:
    settings = get_settings()
    resolver = PolicyWindowResolver(
        SQLAlchemySlaPolicyRepository(session),
        SQLAlchemyMaintenanceWindowRepository(session)
    )
    return TicketLifecycleService(
        SQLAlchemyTicketRepository(session),
        SQLAlchemyTicketEventRepository(session),
        resolver,
        audit_repository=SQLAlchemyAuditLogRepository(session),
        enforce_transitions=settings.sts_enforce_transitions,
        warning_ratio=settings.sla_warning_ratio
    )


def build_configuration_service(session: AsyncSession) -> SlaConfigurationService:
    return SlaConfigurationService(
        SQLAlchemySlaPolicyRepository(session),
        SQLAlchemyMaintenanceWindowRepository(session),
        SQLAlchemyAuditLogRepository(session)
    )


def build_report_service(session: AsyncSession) -> SLAReportService:
    return SLAReportService(SQLAlchemyTicketRepository(session))


async def seed_policies_from_file(
    session: AsyncSession,
    path: Path,
    actor_id: str = "system:seed"
) -> Dict[str, int]:
    """
    Upsert the policies of a YAML seed file.

    Returns the number of policies written per tenant.
    """
    service = build_configuration_service(session)
    written = {}
    for tenant_id, items in PolicySeedLoader(path).load().items():
        saved = await service.upsert_policies(tenant_id, items, actor_id=actor_id)
        written[tenant_id] = len(saved)
    return written
