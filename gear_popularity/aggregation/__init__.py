"""
Aggregation Module - batch side of the popularity engine
"""
from .weights import WeightTable, default_weights
from .daily import AggregationResult, DailyAggregator
from .lifetime import LifetimeAggregator, LifetimeRefreshResult
from .windows import WindowMaterializer, WindowSnapshot, parse_timeframe
from .rollup import PopularityRollup, RollupResult, run_daily_rollup

__all__ = [
    "WeightTable",
    "default_weights",
    "AggregationResult",
    "DailyAggregator",
    "LifetimeAggregator",
    "LifetimeRefreshResult",
    "WindowMaterializer",
    "WindowSnapshot",
    "parse_timeframe",
    "PopularityRollup",
    "RollupResult",
    "run_daily_rollup",
]
