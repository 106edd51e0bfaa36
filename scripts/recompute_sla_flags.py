#!/usr/bin/env python3
"""
Recompute SLA Flags
===================

Re-evaluates the persisted SLA figures of every ticket, for one tenant or
for all of them. Run it after editing policies or maintenance windows.

Usage:
    python scripts/recompute_sla_flags.py --tenant tenant-1
    python scripts/recompute_sla_flags.py --all
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from fleetdesk.config import settings
from fleetdesk.infrastructure.database import close_database, get_session_context, init_database
from fleetdesk.sla.infrastructure.bootstrap import build_lifecycle_service
from fleetdesk.sla.infrastructure.repositories import SQLAlchemyTicketRepository
from fleetdesk.shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger("recompute_sla_flags")


async def main(tenant_ids: Optional[List[str]]) -> None:
    setup_logging(settings.log_level, settings.environment)
    init_database()
    try:
        if not tenant_ids:
            async with get_session_context() as session:
                tenant_ids = await SQLAlchemyTicketRepository(session).list_tenant_ids()

        for tenant_id in tenant_ids:
            # One transaction per tenant
            with log_latency(logger, "sla_recompute", tenant_id=tenant_id):
                async with get_session_context() as session:
                    evaluated, changed = await build_lifecycle_service(session).recompute_tenant(tenant_id)
            print(f"{tenant_id}: {evaluated} tickets evaluated, {changed} with changed flags")
    finally:
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recompute persisted SLA flags")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--tenant", action="append", dest="tenants", help="Tenant ID (repeatable)")
    group.add_argument("--all", action="store_true", help="Every tenant with tickets")
    args = parser.parse_args()

    asyncio.run(main(None if args.all else args.tenants))
