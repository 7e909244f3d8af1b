"""
Trending Ranker

Merges the latest window snapshot with the live boost, filters by catalog
attributes, ranks and paginates. Ordering is fully deterministic so that
consecutive page requests never skip or repeat items.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy import select

from gear_popularity.aggregation.weights import WeightTable, resolve_weights
from gear_popularity.aggregation.windows import WindowMaterializer, parse_timeframe
from gear_popularity.clock import utc_now, utc_today
from gear_popularity.config import get_settings
from gear_popularity.database.connection import SessionContextFactory, get_db
from gear_popularity.database.filters import CatalogFilter
from gear_popularity.database.models import GearItem, ItemType, LifetimeAggregate, Timeframe
from gear_popularity.ranking.live_boost import BoostMetric, LiveBoostCalculator, live_gap

logger = structlog.get_logger(__name__)
settings = get_settings()


@dataclass
class TrendingQuery:
    """Trending request parameters"""
    timeframe: Union[Timeframe, str] = Timeframe.SEVEN_DAYS
    page: int = 1
    per_page: int = 20
    item_type: Optional[Union[ItemType, str]] = None
    brand_id: Optional[str] = None
    metric: Union[BoostMetric, str] = BoostMetric.VIEWS

    def __post_init__(self):
        self.timeframe = parse_timeframe(self.timeframe)
        self.metric = BoostMetric(self.metric)
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        max_per_page = settings.popularity.max_per_page
        if not 1 <= self.per_page <= max_per_page:
            raise ValueError(f"per_page must be between 1 and {max_per_page}, got {self.per_page}")

    @property
    def catalog_filter(self) -> CatalogFilter:
        return CatalogFilter.of(self.item_type, self.brand_id)

    def cache_key(self) -> str:
        """Key of the full ranking; every page of one ranking shares it."""
        return ":".join([
            self.timeframe.value,
            self.metric.value,
            self.catalog_filter.cache_key(),
        ])


@dataclass
class RankedItem:
    """One trending entry"""
    item_id: str
    slug: str
    name: str
    item_type: str
    brand_id: Optional[str]
    brand_name: Optional[str]
    score: float
    views: float  # window value for the requested metric
    lifetime_views: int
    live_boost: float
    is_live: bool


@dataclass
class TrendingPage:
    """A page of ranked items"""
    items: List[RankedItem]
    total: int
    page: int
    per_page: int
    has_more: bool
    timeframe: str
    metric: str
    as_of_date: Optional[date] = None
    generated_at: Optional[datetime] = None
    live_through: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrendingRanking:
    """Every ranked item for one ``(timeframe, metric, filter)``, best first"""
    items: List[RankedItem]
    timeframe: str
    metric: str
    as_of_date: Optional[date] = None
    generated_at: Optional[datetime] = None
    live_through: Optional[date] = None

    def page(self, page: int, per_page: int) -> TrendingPage:
        offset = (page - 1) * per_page
        window = self.items[offset:offset + per_page]
        return TrendingPage(
            items=window,
            total=len(self.items),
            page=page,
            per_page=per_page,
            has_more=offset + len(window) < len(self.items),
            timeframe=self.timeframe,
            metric=self.metric,
            as_of_date=self.as_of_date,
            generated_at=self.generated_at,
            live_through=self.live_through,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrendingRanking":
        return cls(**{**data, "items": [RankedItem(**item) for item in data["items"]]})


@dataclass
class _Candidate:
    item: Any
    base: float = 0.0
    live: float = 0.0
    lifetime_views: int = 0

    @property
    def score(self) -> float:
        return self.base + self.live

    def sort_key(self):
        return (-self.score, -self.lifetime_views, self.item.id)


class TrendingRanker:
    """
    Window score plus live boost, ranked and paginated.

    Example:
        ranker = TrendingRanker()
        page = await ranker.rank_trending(TrendingQuery(timeframe="7d", page=2))
    """

    def __init__(
        self,
        db: SessionContextFactory = get_db,
        weights: Optional[WeightTable] = None,
        windows: Optional[WindowMaterializer] = None,
        live: Optional[LiveBoostCalculator] = None,
    ):
        self._db = db
        self.weights = resolve_weights(weights)
        self.windows = windows or WindowMaterializer(db)
        self.live = live or LiveBoostCalculator(db, weights=self.weights, windows=self.windows)

    async def rank_trending(
        self,
        query: TrendingQuery,
        now: Optional[datetime] = None,
    ) -> TrendingPage:
        """Rank the filtered population and return the requested page."""
        ranking = await self.rank_all(query, now)
        return ranking.page(query.page, query.per_page)

    async def rank_all(
        self,
        query: TrendingQuery,
        now: Optional[datetime] = None,
    ) -> TrendingRanking:
        """
        Rank the whole filtered population.

        Items with a non-positive combined score are left out, so the page
        ``total`` counts only items that actually trended in the window.
        Paging is applied afterwards, so pages cut from one ranking never
        skip or repeat items.
        """
        timeframe = query.timeframe
        today = utc_today(now)
        catalog_filter = query.catalog_filter

        latest = await self.windows.latest_as_of(timeframe)
        base_as_of = latest or today - timedelta(days=1)
        snapshot = await self.windows.read_window(timeframe, base_as_of, catalog_filter)

        gap = live_gap(timeframe, today, latest)
        boosts = (
            await self.live.boosts_for_gap(gap, query.metric, catalog_filter)
            if gap is not None else {}
        )

        candidate_ids = set(snapshot.rows) | set(boosts)
        candidates = await self._load_candidates(candidate_ids, catalog_filter)

        for item_id, candidate in candidates.items():
            row = snapshot.rows.get(item_id)
            if row is not None:
                candidate.base = float(row.views if query.metric is BoostMetric.VIEWS else row.score)
            candidate.live = boosts.get(item_id, 0.0)

        ranked = sorted(
            (c for c in candidates.values() if c.score > 0),
            key=_Candidate.sort_key,
        )

        ranking = TrendingRanking(
            items=[
                RankedItem(
                    item_id=c.item.id,
                    slug=c.item.slug,
                    name=c.item.name,
                    item_type=ItemType(c.item.item_type).value,
                    brand_id=c.item.brand_id,
                    brand_name=c.item.brand_name,
                    score=c.score,
                    views=c.base,
                    lifetime_views=c.lifetime_views,
                    live_boost=c.live,
                    is_live=c.live > 0,
                )
                for c in ranked
            ],
            timeframe=timeframe.value,
            metric=query.metric.value,
            as_of_date=base_as_of,
            generated_at=utc_now(now),
            live_through=gap.end if gap is not None else None,
        )

        logger.info(
            "Trending ranked",
            timeframe=timeframe.value,
            metric=query.metric.value,
            total=len(ranked),
            as_of=base_as_of.isoformat(),
            snapshot=snapshot.materialized,
            live_items=len(boosts),
        )
        return ranking

    async def _load_candidates(
        self,
        item_ids: set,
        catalog_filter: CatalogFilter,
    ) -> Dict[str, _Candidate]:
        if not item_ids:
            return {}

        query = (
            select(GearItem, LifetimeAggregate.views_lifetime)
            .outerjoin(LifetimeAggregate, LifetimeAggregate.item_id == GearItem.id)
            .where(GearItem.id.in_(sorted(item_ids)))
        )
        if catalog_filter.item_type is not None:
            query = query.where(GearItem.item_type == catalog_filter.item_type)
        if catalog_filter.brand_id is not None:
            query = query.where(GearItem.brand_id == catalog_filter.brand_id)

        async with self._db() as db:
            rows = (await db.execute(query)).all()

        return {
            item.id: _Candidate(item=item, lifetime_views=int(views_lifetime or 0))
            for item, views_lifetime in rows
        }
