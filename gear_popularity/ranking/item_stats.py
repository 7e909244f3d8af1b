"""
Item popularity stats for detail pages
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import func, select

from gear_popularity.aggregation.windows import window_range
from gear_popularity.clock import utc_today
from gear_popularity.database.connection import SessionContextFactory, get_db
from gear_popularity.database.models import (
    DailyAggregate,
    GearItem,
    LifetimeAggregate,
    Timeframe,
    WindowAggregate,
)

logger = structlog.get_logger(__name__)


@dataclass
class ItemStats:
    item_id: str
    slug: str
    lifetime_views: int
    views_30d: int
    as_of_date: Optional[date]
    from_snapshot: bool


class ItemStatsService:
    """Lifetime and 30 day views for one item"""

    def __init__(self, db: SessionContextFactory = get_db):
        self._db = db

    async def get_item_stats(self, slug: str, now: Optional[datetime] = None) -> Optional[ItemStats]:
        """
        Stats for the item with ``slug``, or None if it is not in the catalog.

        ``views_30d`` is read at the newest 30d snapshot date for the whole
        timeframe, so an item that went quiet reads as zero rather than its
        last non-zero window. Without any snapshot, or when the item has no
        row at that date, the daily rows of the window are summed.
        """
        async with self._db() as db:
            item_id = await db.scalar(select(GearItem.id).where(GearItem.slug == slug))
            if item_id is None:
                return None

            lifetime = await db.scalar(
                select(LifetimeAggregate.views_lifetime).where(LifetimeAggregate.item_id == item_id)
            )

            latest = await db.scalar(
                select(func.max(WindowAggregate.as_of_date)).where(
                    WindowAggregate.timeframe == Timeframe.THIRTY_DAYS
                )
            )
            as_of = latest or utc_today(now) - timedelta(days=1)

            views_30d = None
            if latest is not None:
                views_30d = await db.scalar(
                    select(WindowAggregate.views_sum).where(
                        WindowAggregate.item_id == item_id,
                        WindowAggregate.timeframe == Timeframe.THIRTY_DAYS,
                        WindowAggregate.as_of_date == latest,
                    )
                )
            from_snapshot = views_30d is not None

            if views_30d is None:
                start, end = window_range(Timeframe.THIRTY_DAYS, as_of)
                views_30d = await db.scalar(
                    select(func.coalesce(func.sum(DailyAggregate.views), 0)).where(
                        DailyAggregate.item_id == item_id,
                        DailyAggregate.day >= start,
                        DailyAggregate.day <= end,
                    )
                )

        return ItemStats(
            item_id=item_id,
            slug=slug,
            lifetime_views=int(lifetime or 0),
            views_30d=int(views_30d or 0),
            as_of_date=as_of,
            from_snapshot=from_snapshot,
        )
