"""
Daily Popularity Rollup

Runs the batch side of the engine for one base date:

1. Correction pass over D-2 for events that arrived late
2. Main pass over D-1
3. 7d and 30d windows as of D-1
4. Lifetime totals for every item touched by either pass
5. View spike check over recent site-wide daily totals
6. Cache invalidation and a ``rollup_runs`` history row

Everything is derived from the base date, so re-running a date (or
backfilling an old one) is safe.
"""

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

import polars as pl
import structlog
from prometheus_client import Histogram
from sqlalchemy import func, select

from gear_popularity.aggregation.daily import AggregationResult, DailyAggregator
from gear_popularity.aggregation.lifetime import LifetimeAggregator, LifetimeRefreshResult
from gear_popularity.aggregation.weights import WeightTable, resolve_weights
from gear_popularity.aggregation.windows import MaterializeResult, WindowMaterializer
from gear_popularity.clock import utc_today
from gear_popularity.config import get_settings
from gear_popularity.database.connection import SessionContextFactory, get_db
from gear_popularity.database.models import DailyAggregate, RollupRun, Timeframe
from gear_popularity.quality.anomaly_detector import AnomalyReport, detect_view_anomalies
from gear_popularity.serving.cache import invalidate_popularity_caches

logger = structlog.get_logger(__name__)
settings = get_settings()

ROLLUP_DURATION = Histogram(
    "gear_popularity_rollup_seconds",
    "Time spent in the daily popularity rollup",
    ["status"],
)


@dataclass
class RollupResult:
    """Everything one rollup did"""
    base_date: date
    as_of_date: date
    corrected_date: Optional[date] = None
    correction: Optional[AggregationResult] = None
    daily: Optional[AggregationResult] = None
    windows: Dict[str, MaterializeResult] = field(default_factory=dict)
    lifetime: Optional[LifetimeRefreshResult] = None
    anomaly_report: Optional[AnomalyReport] = None
    duration_ms: int = 0
    success: bool = False
    error: Optional[str] = None

    @property
    def failure_count(self) -> int:
        count = sum(len(r.failures) for r in (self.correction, self.daily, self.lifetime) if r)
        return count + sum(len(w.failures) for w in self.windows.values())

    @property
    def anomaly_count(self) -> int:
        count = len(self.lifetime.anomalies) if self.lifetime else 0
        if self.anomaly_report:
            count += self.anomaly_report.anomalies_found
        return count

    def summary(self) -> dict:
        return {
            "base_date": self.base_date.isoformat(),
            "as_of_date": self.as_of_date.isoformat(),
            "corrected_date": self.corrected_date.isoformat() if self.corrected_date else None,
            "daily_rows": self.daily.items if self.daily else 0,
            "corrected_rows": self.correction.items if self.correction else 0,
            "windows_rows": sum(w.rows for w in self.windows.values()),
            "lifetime_rows": self.lifetime.updated if self.lifetime else 0,
            "anomalies": self.anomaly_count,
            "failures": self.failure_count,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
        }


class PopularityRollup:
    """
    Orchestrates the daily, window and lifetime aggregators.

    Example:
        rollup = PopularityRollup()
        result = await rollup.run(date(2025, 1, 15))  # aggregates 2025-01-14
    """

    def __init__(
        self,
        db: SessionContextFactory = get_db,
        weights: Optional[WeightTable] = None,
        correction_lag_days: Optional[int] = None,
        detect_anomalies: Optional[bool] = None,
    ):
        self._db = db
        self.weights = resolve_weights(weights)
        self.daily = DailyAggregator(db, weights=self.weights)
        self.windows = WindowMaterializer(db)
        self.lifetime = LifetimeAggregator(db)
        self.correction_lag_days = (
            settings.popularity.correction_lag_days if correction_lag_days is None else correction_lag_days
        )
        self.detect_anomalies = (
            settings.monitoring.anomaly_detection_enabled if detect_anomalies is None else detect_anomalies
        )

    async def run(self, base_date: Optional[date] = None) -> RollupResult:
        """
        Roll up the day before ``base_date`` (default: today in UTC).

        A history row is written whether the run succeeds or not; errors
        that abort the run are re-raised after it is recorded.
        """
        base_date = base_date or utc_today()
        as_of = base_date - timedelta(days=1)
        corrected = (
            base_date - timedelta(days=self.correction_lag_days)
            if self.correction_lag_days > 1 else None
        )
        result = RollupResult(base_date=base_date, as_of_date=as_of, corrected_date=corrected)

        logger.info(
            "Starting popularity rollup",
            as_of=as_of.isoformat(),
            corrected=corrected.isoformat() if corrected else None,
            weights_version=self.weights.version,
        )
        started = time.perf_counter()

        try:
            if corrected is not None:
                result.correction = await self.daily.aggregate_day(corrected)
            result.daily = await self.daily.aggregate_day(as_of)

            for timeframe in Timeframe:
                result.windows[timeframe.value] = await self.windows.materialize_all(timeframe, as_of)

            touched = set(result.daily.affected_item_ids)
            if result.correction is not None:
                touched.update(result.correction.affected_item_ids)
            result.lifetime = await self.lifetime.refresh_lifetime(touched)

            if self.detect_anomalies:
                result.anomaly_report = detect_view_anomalies(await self.daily_totals(as_of))

            await invalidate_popularity_caches()
            result.success = True
        except Exception as e:
            result.error = str(e)
            logger.error("Popularity rollup failed", as_of=as_of.isoformat(), error=str(e), exc_info=True)
            raise
        finally:
            elapsed = time.perf_counter() - started
            result.duration_ms = int(elapsed * 1000)
            ROLLUP_DURATION.labels(status="success" if result.success else "failed").observe(elapsed)
            await self._record_run(result)

        logger.info("Popularity rollup complete", **result.summary())
        return result

    async def daily_totals(self, as_of: date, days: Optional[int] = None) -> pl.DataFrame:
        """Site-wide views and score per day, zero-filled, ending at ``as_of``."""
        days = days or settings.popularity.anomaly_lookback_days
        start = as_of - timedelta(days=days - 1)

        async with self._db() as db:
            rows = (
                await db.execute(
                    select(
                        DailyAggregate.day,
                        func.coalesce(func.sum(DailyAggregate.views), 0),
                        func.coalesce(func.sum(DailyAggregate.score), 0.0),
                    )
                    .where(DailyAggregate.day >= start, DailyAggregate.day <= as_of)
                    .group_by(DailyAggregate.day)
                )
            ).all()

        totals = {day: (int(views), float(score)) for day, views, score in rows}
        calendar = [start + timedelta(days=i) for i in range(days)]

        return pl.DataFrame({
            "day": calendar,
            "views": [totals.get(d, (0, 0.0))[0] for d in calendar],
            "score": [totals.get(d, (0, 0.0))[1] for d in calendar],
        })

    async def recent_runs(self, limit: int = 20) -> List[RollupRun]:
        async with self._db() as db:
            result = await db.execute(
                select(RollupRun).order_by(RollupRun.created_at.desc(), RollupRun.as_of_date.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def _record_run(self, result: RollupResult) -> None:
        summary = result.summary()
        try:
            async with self._db() as db:
                db.add(RollupRun(
                    as_of_date=result.as_of_date,
                    corrected_date=result.corrected_date,
                    daily_rows=summary["daily_rows"],
                    corrected_rows=summary["corrected_rows"],
                    windows_rows=summary["windows_rows"],
                    lifetime_rows=summary["lifetime_rows"],
                    anomalies=summary["anomalies"],
                    failures=summary["failures"],
                    duration_ms=result.duration_ms,
                    success=result.success,
                    error=result.error,
                ))
        except Exception as e:
            # The rollup outcome takes precedence over its history row
            logger.error("Failed to record rollup run", as_of=result.as_of_date.isoformat(), error=str(e))


async def run_daily_rollup(
    base_date: Optional[date] = None,
    db: SessionContextFactory = get_db,
) -> RollupResult:
    """Run the rollup for ``base_date`` with configured defaults."""
    return await PopularityRollup(db).run(base_date)
