"""
Ranking Module - read path
"""
from .live_boost import BoostMetric, LiveBoostCalculator, live_gap
from .trending import RankedItem, TrendingPage, TrendingQuery, TrendingRanker, TrendingRanking
from .item_stats import ItemStats, ItemStatsService

__all__ = [
    "BoostMetric",
    "LiveBoostCalculator",
    "live_gap",
    "RankedItem",
    "TrendingPage",
    "TrendingQuery",
    "TrendingRanker",
    "TrendingRanking",
    "ItemStats",
    "ItemStatsService",
]
