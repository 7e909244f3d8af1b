"""
FastAPI dependencies wiring services to the session factory
"""

from fastapi import Depends

from gear_popularity.aggregation.rollup import PopularityRollup
from gear_popularity.database.connection import SessionContextFactory, get_db_factory
from gear_popularity.ingestion.compare_pairs import ComparePairCounter
from gear_popularity.ingestion.event_recorder import EventRecorder
from gear_popularity.ranking.item_stats import ItemStatsService
from gear_popularity.ranking.trending import TrendingRanker


def get_event_recorder(db: SessionContextFactory = Depends(get_db_factory)) -> EventRecorder:
    return EventRecorder(db)


def get_trending_ranker(db: SessionContextFactory = Depends(get_db_factory)) -> TrendingRanker:
    return TrendingRanker(db)


def get_item_stats_service(db: SessionContextFactory = Depends(get_db_factory)) -> ItemStatsService:
    return ItemStatsService(db)


def get_compare_pairs(db: SessionContextFactory = Depends(get_db_factory)) -> ComparePairCounter:
    return ComparePairCounter(db)


def get_rollup(db: SessionContextFactory = Depends(get_db_factory)) -> PopularityRollup:
    return PopularityRollup(db)
