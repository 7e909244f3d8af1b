#!/usr/bin/env python
"""
Popularity Rollup CLI

Runs the daily rollup once, outside of Prefect. Useful for cron and for
re-running a single date after a failure.

Usage:
    python scripts/run_rollup.py                      # base date = today (UTC)
    python scripts/run_rollup.py --base-date 2025-01-15
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Optional

from gear_popularity.aggregation.rollup import run_daily_rollup
from gear_popularity.config.logging import configure_logging
from gear_popularity.database.connection import close_database, init_database


async def main(base_date: Optional[date]) -> int:
    await init_database()
    try:
        result = await run_daily_rollup(base_date)
    finally:
        await close_database()

    print(json.dumps(result.summary(), indent=2))
    return 0 if result.failure_count == 0 else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the daily popularity rollup")
    parser.add_argument(
        "--base-date",
        type=date.fromisoformat,
        default=None,
        help="Base date D (YYYY-MM-DD); D-1 is aggregated (default: today UTC)",
    )

    args = parser.parse_args()
    configure_logging()

    sys.exit(asyncio.run(main(args.base_date)))
