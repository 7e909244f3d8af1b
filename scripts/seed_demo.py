#!/usr/bin/env python
"""
Demo Data Seeder

Creates the popularity schema, loads a synthetic camera/lens catalog, pushes
generated traffic through the event recorder (so dedup and bot filtering
apply) and rolls up every day of the generated range.

Usage:
    python scripts/seed_demo.py --items 200 --events 20000 --days 30
    python scripts/seed_demo.py --database-url sqlite+aiosqlite:///./demo.db
"""

import argparse
import asyncio
from collections import Counter
from datetime import timedelta

import polars as pl
import structlog

from gear_popularity.aggregation.rollup import PopularityRollup
from gear_popularity.clock import utc_now
from gear_popularity.config.logging import configure_logging
from gear_popularity.data.generators import GearCatalogGenerator, PopularityEventGenerator
from gear_popularity.database.connection import (
    close_database,
    dialect_insert,
    get_db,
    get_engine,
    init_database,
)
from gear_popularity.database.models import Base, GearItem
from gear_popularity.ingestion.event_recorder import EventRecorder
from gear_popularity.ingestion.events import parse_event

logger = structlog.get_logger(__name__)


async def load_catalog(catalog_df: pl.DataFrame) -> int:
    """Insert catalog rows, leaving existing ids untouched"""
    async with get_db() as db:
        stmt = dialect_insert(db, GearItem).values(catalog_df.to_dicts())
        await db.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
    return len(catalog_df)


async def replay_events(events_df: pl.DataFrame) -> Counter:
    """Record generated events at their original timestamps"""
    recorder = EventRecorder()
    outcomes: Counter = Counter()

    for row in events_df.iter_rows(named=True):
        payload = {k: v for k, v in row.items() if k not in ("user_agent", "created_at") and v is not None}
        result = await recorder.record(
            parse_event(payload),
            user_agent=row["user_agent"],
            now=row["created_at"],
        )
        outcomes["recorded" if result.recorded else result.reason.value] += 1

    return outcomes


async def seed(n_items: int, n_events: int, days: int, database_url: str = None) -> None:
    await init_database(database_url)
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        catalog_df = GearCatalogGenerator().generate(n_items)
        print(f"Loaded {await load_catalog(catalog_df)} catalog items")

        end = utc_now()
        start = end - timedelta(days=days)
        events_df = PopularityEventGenerator(catalog_df).generate(n_events, start=start, end=end)
        outcomes = await replay_events(events_df)
        print(f"Replayed {len(events_df)} events: {dict(outcomes)}")

        # Base date D rolls up D-1, so start one day after the first event day
        rollup = PopularityRollup()
        base_date = start.date() + timedelta(days=1)
        while base_date <= end.date():
            result = await rollup.run(base_date)
            print(f"  Rolled up {result.as_of_date}: {result.summary()['daily_rows']} items")
            base_date += timedelta(days=1)
    finally:
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the popularity engine with demo data")
    parser.add_argument("--items", type=int, default=200, help="Catalog size (default: 200)")
    parser.add_argument("--events", type=int, default=20000, help="Events to generate (default: 20000)")
    parser.add_argument("--days", type=int, default=30, help="Days of history (default: 30)")
    parser.add_argument("--database-url", default=None, help="Override the configured database URL")

    args = parser.parse_args()
    configure_logging("WARNING")

    asyncio.run(seed(args.items, args.events, args.days, args.database_url))
