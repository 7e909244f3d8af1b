"""
Lifetime Popularity Aggregator

Recomputes running totals per item from the daily table. A recomputed
total lower than the stored one means daily rows were lost or rewritten
downwards; it is reported as an anomaly and never applied.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func, select

from gear_popularity.aggregation.daily import ItemFailure
from gear_popularity.clock import utc_now
from gear_popularity.database.connection import SessionContextFactory, dialect_insert, get_db
from gear_popularity.database.models import DailyAggregate, LifetimeAggregate
from gear_popularity.quality.anomaly_detector import AnomalyResult, AnomalySeverity, AnomalyType

logger = structlog.get_logger(__name__)


@dataclass
class LifetimeRefreshResult:
    """Outcome of a lifetime refresh"""
    updated: int = 0
    anomalies: List[AnomalyResult] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)


class LifetimeAggregator:
    """Keeps ``gear_popularity_lifetime`` equal to the sum of daily rows"""

    def __init__(self, db: SessionContextFactory = get_db):
        self._db = db

    async def refresh_lifetime(self, item_ids: Optional[Iterable[str]] = None) -> LifetimeRefreshResult:
        """
        Recompute lifetime totals for ``item_ids`` (all items when None).

        Args:
            item_ids: Items touched by the latest daily aggregation

        Returns:
            LifetimeRefreshResult with flagged decreases and per-item failures
        """
        result = LifetimeRefreshResult()
        ids = None if item_ids is None else sorted(set(item_ids))
        if ids is not None and not ids:
            return result

        async with self._db() as db:
            query = (
                select(
                    DailyAggregate.item_id,
                    func.coalesce(func.sum(DailyAggregate.views), 0),
                    func.coalesce(func.sum(DailyAggregate.score), 0.0),
                )
                .group_by(DailyAggregate.item_id)
            )
            if ids is not None:
                query = query.where(DailyAggregate.item_id.in_(ids))
            totals: Dict[str, Tuple[int, float]] = {
                item_id: (int(views), float(score))
                for item_id, views, score in (await db.execute(query)).all()
            }

            stored_query = select(LifetimeAggregate)
            if ids is not None:
                stored_query = stored_query.where(LifetimeAggregate.item_id.in_(ids))
            stored = {row.item_id: row.views_lifetime for row in (await db.execute(stored_query)).scalars()}

        for item_id in ids if ids is not None else sorted(totals):
            views, score = totals.get(item_id, (0, 0.0))
            previous = stored.get(item_id)

            if previous is not None and views < previous:
                anomaly = self._decrease_anomaly(item_id, previous, views)
                result.anomalies.append(anomaly)
                logger.warning(
                    "Lifetime views would decrease, keeping stored value",
                    item_id=item_id,
                    stored=previous,
                    recomputed=views,
                )
                continue

            try:
                await self._write_item(item_id, views, score)
            except Exception as e:
                logger.error("Lifetime refresh failed for item", item_id=item_id, error=str(e))
                result.failures.append(ItemFailure(item_id=item_id, error=str(e)))
                continue
            result.updated += 1

        logger.info(
            "Lifetime refresh complete",
            updated=result.updated,
            anomalies=len(result.anomalies),
            failures=len(result.failures),
        )
        return result

    async def _write_item(self, item_id: str, views: int, score: float) -> None:
        async with self._db() as db:
            stmt = dialect_insert(db, LifetimeAggregate).values(
                item_id=item_id,
                views_lifetime=views,
                score_lifetime=score,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["item_id"],
                set_={
                    "views_lifetime": stmt.excluded.views_lifetime,
                    "score_lifetime": stmt.excluded.score_lifetime,
                    "updated_at": func.now(),
                },
            )
            await db.execute(stmt)

    @staticmethod
    def _decrease_anomaly(item_id: str, stored: int, recomputed: int) -> AnomalyResult:
        return AnomalyResult(
            metric_name="views_lifetime",
            anomaly_type=AnomalyType.DROP,
            severity=AnomalySeverity.HIGH,
            detected_at=utc_now(),
            value=float(recomputed),
            expected_value=float(stored),
            deviation=float(recomputed - stored),
            threshold=0.0,
            message=f"Lifetime views for {item_id} would drop from {stored} to {recomputed}",
            details={"item_id": item_id, "method": "monotonic"},
        )
