"""
BaiTech Pricing Seed Script
===========================

Loads the default pricing configuration from ``seeds/pricing_config.json``
and installs it as version 1.

Usage:
    python scripts/seed_pricing.py            # skip if a config exists
    python scripts/seed_pricing.py --force    # publish the seed as a new version

Environment variables:
    DATABASE_URL  -- async PostgreSQL connection string

``--force`` never deletes history: the seed document replaces the active
ruleset as the next version and earlier versions stay queryable.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
SEEDS_DIR = ROOT_DIR / "seeds"

sys.path.insert(0, str(ROOT_DIR))

from baitech.core.config import settings  # noqa: E402
from baitech.models import Base, PricingConfig  # noqa: E402
from baitech.services.pricingConfigService import (  # noqa: E402
    bootstrap_config,
    publish_new_version,
)
from baitech.services.pricingRules import PricingRules  # noqa: E402


def _load_seed() -> dict[str, Any]:
    with open(SEEDS_DIR / "pricing_config.json", encoding="utf-8") as fh:
        return json.load(fh)


async def seed_pricing(session: AsyncSession, *, force: bool = False) -> PricingConfig | None:
    """Install the seed config. Returns the created row, or None when skipped."""
    seed = _load_seed()
    rules = PricingRules.model_validate(seed["rules"])

    existing = (await session.execute(select(func.count(PricingConfig.id)))).scalar_one()
    if not existing:
        return await bootstrap_config(session, rules, name=seed["name"], notes=seed.get("notes"))
    if not force:
        return None
    return await publish_new_version(
        session,
        rules.to_document(),
        name=seed["name"],
        notes="Re-seeded from seeds/pricing_config.json",
    )


async def run_seed(force: bool) -> None:
    url = settings.database_url
    print(f"Database: {url.split('@')[-1] if '@' in url else url}")

    engine = create_async_engine(url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        async with session.begin():
            await session.execute(text("SELECT 1"))
            row = await seed_pricing(session, force=force)

    await engine.dispose()

    if row is None:
        print("Pricing configuration already exists. Skipping seed.")
        print("Run with --force to publish the seed as a new version.")
        return

    rules = PricingRules.model_validate(row.rules)
    print(f"Pricing configuration seeded: version {row.version}")
    print(f"  Services:         {len(rules.service_prices)}")
    print(f"  Distance tiers:   {len(rules.distance_pricing.tiers)}")
    print(f"  Technician tiers: {len(rules.technician_tiers.tiers)}")


def main() -> None:
    try:
        asyncio.run(run_seed(force="--force" in sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nSeed interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        print(f"\n[ERROR] Seed failed: {exc}")
        raise


if __name__ == "__main__":
    main()
