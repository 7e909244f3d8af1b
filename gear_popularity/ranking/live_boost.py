"""
Live Boost Calculator

Activity that happened after the newest materialized window, read straight
from the event log. Without it, today's traffic would only show up in
trending lists after the next rollup.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, Optional, Union

import structlog
from sqlalchemy import func, select

from gear_popularity.aggregation.weights import WeightTable, resolve_weights
from gear_popularity.aggregation.windows import WindowMaterializer, parse_timeframe
from gear_popularity.clock import utc_today
from gear_popularity.database.connection import SessionContextFactory, get_db
from gear_popularity.database.filters import CatalogFilter
from gear_popularity.database.models import EventType, PopularityEvent, Timeframe

logger = structlog.get_logger(__name__)


class BoostMetric(str, Enum):
    """What a boost (and a trending score) measures"""
    VIEWS = "views"
    SCORE = "score"


@dataclass(frozen=True)
class LiveGap:
    """Inclusive range of days not yet covered by a window snapshot"""
    start: date
    end: date
    covered_through: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def live_gap(
    timeframe: Timeframe,
    today: date,
    covered_through: Optional[date],
) -> Optional[LiveGap]:
    """
    Days after ``covered_through`` up to and including ``today``.

    With no snapshot at all, yesterday counts as covered. The gap never
    reaches further back than the window itself. Returns None when the
    snapshot already covers today.
    """
    if covered_through is None:
        covered_through = today - timedelta(days=1)
    if covered_through >= today:
        return None
    start = max(covered_through + timedelta(days=1), today - timedelta(days=timeframe.days - 1))
    return LiveGap(start=start, end=today, covered_through=covered_through)


class LiveBoostCalculator:
    """
    Uncovered-gap activity per item.

    Example:
        live = LiveBoostCalculator()
        boost = await live.live_boost("sony-a7iv", "7d")
    """

    def __init__(
        self,
        db: SessionContextFactory = get_db,
        weights: Optional[WeightTable] = None,
        windows: Optional[WindowMaterializer] = None,
    ):
        self._db = db
        self.weights = resolve_weights(weights)
        self.windows = windows or WindowMaterializer(db)

    async def current_gap(
        self,
        timeframe: Union[Timeframe, str],
        now: Optional[datetime] = None,
    ) -> Optional[LiveGap]:
        timeframe = parse_timeframe(timeframe)
        covered_through = await self.windows.latest_as_of(timeframe)
        return live_gap(timeframe, utc_today(now), covered_through)

    async def live_boost(
        self,
        item_id: str,
        timeframe: Union[Timeframe, str] = Timeframe.SEVEN_DAYS,
        metric: Union[BoostMetric, str] = BoostMetric.VIEWS,
        now: Optional[datetime] = None,
    ) -> float:
        """
        Boost for one item; zero once a rollup has covered today.

        Args:
            item_id: Catalog item id
            timeframe: Window whose snapshot defines the covered range
            metric: ``views`` counts view events, ``score`` weights every type
            now: Clock override
        """
        boosts = await self.boosts(timeframe, metric, now=now, item_ids=[item_id])
        return boosts.get(item_id, 0.0)

    async def boosts(
        self,
        timeframe: Union[Timeframe, str] = Timeframe.SEVEN_DAYS,
        metric: Union[BoostMetric, str] = BoostMetric.VIEWS,
        now: Optional[datetime] = None,
        catalog_filter: Optional[CatalogFilter] = None,
        item_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, float]:
        """Boost per item with activity in the current gap."""
        gap = await self.current_gap(timeframe, now)
        if gap is None:
            return {}
        return await self.boosts_for_gap(gap, metric, catalog_filter, item_ids)

    async def boosts_for_gap(
        self,
        gap: LiveGap,
        metric: Union[BoostMetric, str] = BoostMetric.VIEWS,
        catalog_filter: Optional[CatalogFilter] = None,
        item_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, float]:
        metric = BoostMetric(metric)
        catalog_filter = catalog_filter or CatalogFilter()

        query = (
            select(
                PopularityEvent.item_id,
                PopularityEvent.event_type,
                func.count().label("n"),
            )
            .where(
                PopularityEvent.event_day >= gap.start,
                PopularityEvent.event_day <= gap.end,
            )
            .group_by(PopularityEvent.item_id, PopularityEvent.event_type)
        )
        if metric is BoostMetric.VIEWS:
            query = query.where(PopularityEvent.event_type == EventType.VIEW)
        if item_ids is not None:
            query = query.where(PopularityEvent.item_id.in_(list(item_ids)))
        query = catalog_filter.apply(query, PopularityEvent.item_id)

        async with self._db() as db:
            rows = (await db.execute(query)).all()

        boosts: Dict[str, float] = defaultdict(float)
        for item_id, event_type, n in rows:
            if metric is BoostMetric.VIEWS:
                boosts[item_id] += float(n)
            else:
                boosts[item_id] += self.weights.weight(EventType(event_type)) * n

        logger.debug(
            "Live boosts computed",
            gap_start=gap.start.isoformat(),
            gap_end=gap.end.isoformat(),
            metric=metric.value,
            items=len(boosts),
        )
        return dict(boosts)
