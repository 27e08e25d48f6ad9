"""
Create tables and seed the default subscription plans.

Development helper; production schemas are managed outside this service.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from tenancy.core.database import Base, db_manager
from tenancy.features.subscriptions.plans import PlanCatalog
from tenancy.models import SubscriptionPlan  # noqa: F401  (registers every model)


async def seed_data(create_tables: bool = True) -> None:
    print("Seeding database...")

    db_manager.init()

    if create_tables:
        async with db_manager.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print("Tables created")

    async with db_manager.session() as db:
        seeded = await PlanCatalog.seed_plans(db)

    if seeded:
        print(f"Created {seeded} subscription plans")
    else:
        print("Subscription plans already present. Skipping seed.")

    await db_manager.close()
    print("Seeding complete")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Seed the tenancy database")
    parser.add_argument("--no-create", action="store_true", help="Do not create tables")
    args = parser.parse_args()

    asyncio.run(seed_data(create_tables=not args.no_create))
