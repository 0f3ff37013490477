#!/usr/bin/env python
"""Create the contacts schema and optionally seed development contacts."""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from identity_service.domain.services.reconciliation_service import ReconciliationService
from identity_service.persistence.database import AsyncSessionLocal, engine, init_db
from identity_service.settings import settings

SAMPLE_CONTACTS = [
    ("doc.brown@zamazon.com", "5550100101"),
    ("emmett@zamazon.com", "5550100102"),
    ("marty@zamazon.com", "5550100103"),
]


async def setup_database(seed: bool) -> None:
    """Create tables and insert sample contacts."""
    await init_db()
    print("Database schema created")

    if seed:
        async with AsyncSessionLocal() as session:
            service = ReconciliationService(session)
            for email, phone in SAMPLE_CONTACTS:
                view = await service.identify(email, phone)
                print(f"Seeded contact {email} / {phone} (primary ID: {view.primary_contact_id})")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--seed",
        action="store_true",
        default=settings.environment == "development",
        help="insert sample contacts (default in development)",
    )
    parser.add_argument("--no-seed", dest="seed", action="store_false")
    args = parser.parse_args()
    asyncio.run(setup_database(args.seed))
