#!/usr/bin/env python3
"""
Seed SLA Policies
=================

Upserts the SLA policies of a YAML file into the database.

Usage:
    python scripts/seed_sla_policies.py config/sla_policies.example.yaml
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fleetdesk.config import settings
from fleetdesk.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database
)
from fleetdesk.sla.infrastructure.bootstrap import seed_policies_from_file
from fleetdesk.shared.infrastructure.logging import setup_logging


async def main(path: Path, create: bool) -> None:
    setup_logging(settings.log_level, settings.environment)
    init_database()
    try:
        if create:
            await create_tables()

        async with get_session_context() as session:
            written = await seed_policies_from_file(session, path)
    finally:
        await close_database()

    for tenant_id, count in sorted(written.items()):
        print(f"{tenant_id}: {count} policies upserted")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Upsert SLA policies from a YAML file")
    parser.add_argument("path", type=Path, help="YAML seed file")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    asyncio.run(main(args.path, args.create_tables))
