"""
Daily Popularity Aggregator

Rebuilds ``gear_popularity_daily`` for one UTC day from the event log.
Rows are written with absolute values, so a re-run after late arrivals
converges on the same result as a first run over the complete log.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, select

from gear_popularity.aggregation.weights import WeightTable, resolve_weights
from gear_popularity.database.connection import SessionContextFactory, dialect_insert, get_db
from gear_popularity.database.models import (
    DailyAggregate,
    EVENT_COUNT_COLUMNS,
    EventType,
    PopularityEvent,
)

logger = structlog.get_logger(__name__)


@dataclass
class ItemFailure:
    """A single item that could not be processed"""
    item_id: str
    error: str


@dataclass
class AggregationResult:
    """Outcome of one daily aggregation run"""
    day: date
    items: int = 0
    failures: List[ItemFailure] = field(default_factory=list)
    affected_item_ids: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures


class DailyAggregator:
    """
    Per item, per day counter and scorer.

    Example:
        aggregator = DailyAggregator()
        result = await aggregator.aggregate_day(date(2025, 1, 14))
    """

    def __init__(
        self,
        db: SessionContextFactory = get_db,
        weights: Optional[WeightTable] = None,
    ):
        self._db = db
        self.weights = resolve_weights(weights)

    async def aggregate_day(self, day: date) -> AggregationResult:
        """
        Count deduplicated events for ``day`` and replace its daily rows.

        Items that already have a row for the day but no longer have any
        events are reset to zero. Each item is written in its own
        transaction; failures are collected rather than raised.
        """
        started = time.perf_counter()
        result = AggregationResult(day=day)

        async with self._db() as db:
            grouped = await db.execute(
                select(
                    PopularityEvent.item_id,
                    PopularityEvent.event_type,
                    func.count().label("n"),
                )
                .where(PopularityEvent.event_day == day)
                .group_by(PopularityEvent.item_id, PopularityEvent.event_type)
            )
            rows = grouped.all()

            existing = await db.execute(
                select(DailyAggregate.item_id).where(DailyAggregate.day == day)
            )
            existing_ids = set(existing.scalars().all())

        counts: Dict[str, Dict[EventType, int]] = defaultdict(dict)
        for item_id, event_type, n in rows:
            counts[item_id][EventType(event_type)] = int(n)
        for item_id in existing_ids:
            counts.setdefault(item_id, {})

        for item_id in sorted(counts):
            try:
                await self._write_item(day, item_id, counts[item_id])
            except Exception as e:
                logger.error(
                    "Daily aggregation failed for item",
                    day=day.isoformat(),
                    item_id=item_id,
                    error=str(e),
                )
                result.failures.append(ItemFailure(item_id=item_id, error=str(e)))
                continue
            result.items += 1
            result.affected_item_ids.append(item_id)

        result.duration_seconds = time.perf_counter() - started
        logger.info(
            "Daily aggregation complete",
            day=day.isoformat(),
            items=result.items,
            failures=len(result.failures),
            weights_version=self.weights.version,
        )
        return result

    def build_row(self, day: date, item_id: str, counts: Dict[EventType, int]) -> dict:
        """Absolute column values for one daily row."""
        row = {
            "day": day,
            "item_id": item_id,
            "score": self.weights.score(counts),
            "weights_version": self.weights.version,
        }
        for event_type, column in EVENT_COUNT_COLUMNS.items():
            row[column] = counts.get(event_type, 0)
        return row

    async def _write_item(self, day: date, item_id: str, counts: Dict[EventType, int]) -> None:
        row = self.build_row(day, item_id, counts)

        async with self._db() as db:
            stmt = dialect_insert(db, DailyAggregate).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=["day", "item_id"],
                set_={
                    **{column: stmt.excluded[column] for column in EVENT_COUNT_COLUMNS.values()},
                    "score": stmt.excluded.score,
                    "weights_version": stmt.excluded.weights_version,
                    "updated_at": func.now(),
                },
            )
            await db.execute(stmt)
