"""Install the default feature cost catalog (existing entries are left untouched)."""

import asyncio
import os
import sys

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, async_session_maker, engine
import models  # noqa: F401
from services.feature_costs import FeatureCostRegistry


async def seed_feature_costs() -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        registry = FeatureCostRegistry(session)
        added = await registry.seed_defaults()
        for feature_id in added:
            print(f"➕ Added cost configuration for {feature_id}")
        rows = await registry.list()

    print(f"✅ {len(rows)} feature cost configurations present ({len(added)} added).")
    await engine.dispose()
    return len(added)


if __name__ == "__main__":
    asyncio.run(seed_feature_costs())
