"""
Trending API Endpoints

Ranked trending pages, item stats and most compared pairs.
"""

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
import structlog

from gear_popularity.config import get_settings
from gear_popularity.database.models import ItemType, Timeframe
from gear_popularity.ingestion.compare_pairs import ComparePairCounter
from gear_popularity.ranking.item_stats import ItemStatsService
from gear_popularity.ranking.live_boost import BoostMetric
from gear_popularity.ranking.trending import TrendingQuery, TrendingRanker, TrendingRanking
from gear_popularity.serving.api.dependencies import (
    get_compare_pairs,
    get_item_stats_service,
    get_trending_ranker,
)
from gear_popularity.serving.cache import item_stats_cache, trending_cache

settings = get_settings()
router = APIRouter()
logger = structlog.get_logger(__name__)

TRENDING_UNAVAILABLE = "unable to load trending data right now"


class RankedItemResponse(BaseModel):
    """Trending entry"""
    item_id: str
    slug: str
    name: str
    item_type: str
    brand_id: Optional[str]
    brand_name: Optional[str]
    score: float
    views: float
    lifetime_views: int
    live_boost: float
    is_live: bool


class TrendingResponse(BaseModel):
    """Trending page"""
    items: List[RankedItemResponse]
    total: int
    page: int
    per_page: int
    has_more: bool
    timeframe: str
    metric: str
    as_of_date: Optional[date]
    generated_at: Optional[datetime]
    live_through: Optional[date]


class ItemStatsResponse(BaseModel):
    """Popularity stats for one item"""
    item_id: str
    slug: str
    lifetime_views: int
    views_30d: int
    as_of_date: Optional[date]
    from_snapshot: bool


class ComparePairResponse(BaseModel):
    """A frequently compared pair"""
    item_a_id: str
    item_a_slug: str
    item_a_name: str
    item_b_id: str
    item_b_slug: str
    item_b_name: str
    count: int


@router.get("/trending", response_model=TrendingResponse)
async def get_trending(
    timeframe: Timeframe = Query(Timeframe(settings.popularity.default_timeframe)),
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.popularity.default_per_page, ge=1, le=settings.popularity.max_per_page),
    item_type: Optional[ItemType] = None,
    brand_id: Optional[str] = None,
    metric: BoostMetric = BoostMetric.VIEWS,
    ranker: TrendingRanker = Depends(get_trending_ranker),
) -> TrendingResponse:
    """
    Ranked trending items.

    Score is the window value as of the latest rollup plus activity since.
    The full ranking is cached once per timeframe, metric and filter, and
    every page is cut from it.
    """
    query = TrendingQuery(
        timeframe=timeframe,
        page=page,
        per_page=per_page,
        item_type=item_type,
        brand_id=brand_id,
        metric=metric,
    )

    async def compute() -> dict:
        return (await ranker.rank_all(query)).to_dict()

    try:
        data = await trending_cache.get_or_set(query.cache_key(), compute)
        page_data = TrendingRanking.from_dict(data).page(query.page, query.per_page)
    except Exception as e:
        logger.error("Trending query failed", cache_key=query.cache_key(), error=str(e), exc_info=True)
        raise HTTPException(status_code=503, detail=TRENDING_UNAVAILABLE)

    return TrendingResponse(**page_data.to_dict())


@router.get("/items/{slug}/stats", response_model=ItemStatsResponse)
async def get_item_stats(
    slug: str,
    service: ItemStatsService = Depends(get_item_stats_service),
) -> ItemStatsResponse:
    """Lifetime and 30 day views for a catalog item."""

    async def compute() -> Optional[dict]:
        stats = await service.get_item_stats(slug)
        return stats.__dict__ if stats else None

    data = await item_stats_cache.get_or_set(slug, compute)
    if data is None:
        raise HTTPException(status_code=404, detail=f"Item {slug} not found")

    return ItemStatsResponse(**data)


@router.get("/compare-pairs/top", response_model=List[ComparePairResponse])
async def get_top_compare_pairs(
    limit: int = Query(20, ge=1, le=100),
    counter: ComparePairCounter = Depends(get_compare_pairs),
) -> List[ComparePairResponse]:
    """Most frequently compared item pairs."""
    pairs = await counter.top_pairs(limit)
    return [ComparePairResponse(**pair.__dict__) for pair in pairs]
