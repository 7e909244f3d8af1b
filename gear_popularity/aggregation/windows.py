"""
Window Materializer

Trailing 7d/30d sums of daily aggregates, stored per ``as_of_date`` in
``gear_popularity_windows``. Readers sum daily rows on the fly for any item
without a materialized row for the requested key.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple, Union

import structlog
from sqlalchemy import func, select

from gear_popularity.aggregation.daily import ItemFailure
from gear_popularity.database.connection import SessionContextFactory, dialect_insert, get_db
from gear_popularity.database.filters import CatalogFilter
from gear_popularity.database.models import DailyAggregate, Timeframe, WindowAggregate
from gear_popularity.exceptions import InvalidTimeframeError

logger = structlog.get_logger(__name__)

# Daily column -> window column
SUM_COLUMNS = {
    "views": "views_sum",
    "wishlist_adds": "wishlist_adds_sum",
    "owner_adds": "owner_adds_sum",
    "compare_adds": "compare_adds_sum",
    "review_submits": "review_submits_sum",
    "score": "score_sum",
}


def parse_timeframe(value: Union[Timeframe, str]) -> Timeframe:
    """Validate a timeframe value."""
    try:
        return Timeframe(value)
    except ValueError:
        raise InvalidTimeframeError(str(value)) from None


def window_range(timeframe: Timeframe, as_of: date) -> Tuple[date, date]:
    """Inclusive ``(start, end)`` days covered by a window ending at ``as_of``."""
    return as_of - timedelta(days=timeframe.days - 1), as_of


@dataclass
class WindowRow:
    """Trailing sums for one item"""
    item_id: str
    views: int = 0
    wishlist_adds: int = 0
    owner_adds: int = 0
    compare_adds: int = 0
    review_submits: int = 0
    score: float = 0.0

    def to_record(self) -> dict:
        return {SUM_COLUMNS[name]: getattr(self, name) for name in SUM_COLUMNS}


@dataclass
class WindowSnapshot:
    """Window rows for one ``(timeframe, as_of)`` key"""
    timeframe: Timeframe
    as_of: date
    rows: Dict[str, WindowRow] = field(default_factory=dict)
    materialized: bool = True


@dataclass
class MaterializeResult:
    """Outcome of a batch window materialization"""
    timeframe: Timeframe
    as_of: date
    rows: int = 0
    failures: List[ItemFailure] = field(default_factory=list)


def _daily_sum_columns():
    return [
        func.coalesce(func.sum(getattr(DailyAggregate, name)), 0).label(name)
        for name in SUM_COLUMNS
    ]


def _row_from(item_id: str, values) -> WindowRow:
    return WindowRow(
        item_id=item_id,
        views=int(values.views or 0),
        wishlist_adds=int(values.wishlist_adds or 0),
        owner_adds=int(values.owner_adds or 0),
        compare_adds=int(values.compare_adds or 0),
        review_submits=int(values.review_submits or 0),
        score=float(values.score or 0.0),
    )


class WindowMaterializer:
    """
    Builds and reads trailing window snapshots.

    Example:
        windows = WindowMaterializer()
        await windows.materialize_all("7d", date(2025, 1, 14))
        snapshot = await windows.read_window("7d", date(2025, 1, 14))
    """

    def __init__(self, db: SessionContextFactory = get_db):
        self._db = db

    async def materialize_window(
        self,
        item_id: str,
        timeframe: Union[Timeframe, str],
        as_of: date,
    ) -> WindowRow:
        """Compute and store the window sum for one item."""
        timeframe = parse_timeframe(timeframe)
        start, end = window_range(timeframe, as_of)

        async with self._db() as db:
            values = (
                await db.execute(
                    select(*_daily_sum_columns()).where(
                        DailyAggregate.item_id == item_id,
                        DailyAggregate.day >= start,
                        DailyAggregate.day <= end,
                    )
                )
            ).one()
        row = _row_from(item_id, values)

        await self._write_row(row, timeframe, as_of)
        return row

    async def materialize_all(
        self,
        timeframe: Union[Timeframe, str],
        as_of: date,
    ) -> MaterializeResult:
        """
        Materialize the window for every item with activity in range.

        Items with an existing snapshot row for the key but no activity
        left in range are rewritten as zero.
        """
        timeframe = parse_timeframe(timeframe)
        start, end = window_range(timeframe, as_of)
        result = MaterializeResult(timeframe=timeframe, as_of=as_of)

        async with self._db() as db:
            grouped = await db.execute(
                select(DailyAggregate.item_id, *_daily_sum_columns())
                .where(DailyAggregate.day >= start, DailyAggregate.day <= end)
                .group_by(DailyAggregate.item_id)
            )
            rows = {values.item_id: _row_from(values.item_id, values) for values in grouped.all()}

            existing = await db.execute(
                select(WindowAggregate.item_id).where(
                    WindowAggregate.timeframe == timeframe,
                    WindowAggregate.as_of_date == as_of,
                )
            )
            for item_id in existing.scalars().all():
                rows.setdefault(item_id, WindowRow(item_id=item_id))

        for item_id in sorted(rows):
            try:
                await self._write_row(rows[item_id], timeframe, as_of)
            except Exception as e:
                logger.error(
                    "Window materialization failed for item",
                    item_id=item_id,
                    timeframe=timeframe.value,
                    as_of=as_of.isoformat(),
                    error=str(e),
                )
                result.failures.append(ItemFailure(item_id=item_id, error=str(e)))
                continue
            result.rows += 1

        logger.info(
            "Window materialization complete",
            timeframe=timeframe.value,
            as_of=as_of.isoformat(),
            rows=result.rows,
            failures=len(result.failures),
        )
        return result

    async def latest_as_of(self, timeframe: Union[Timeframe, str]) -> Optional[date]:
        """Most recent materialized ``as_of_date`` for the timeframe."""
        timeframe = parse_timeframe(timeframe)
        async with self._db() as db:
            return await db.scalar(
                select(func.max(WindowAggregate.as_of_date)).where(WindowAggregate.timeframe == timeframe)
            )

    async def read_window(
        self,
        timeframe: Union[Timeframe, str],
        as_of: date,
        catalog_filter: Optional[CatalogFilter] = None,
    ) -> WindowSnapshot:
        """
        Window rows for ``(timeframe, as_of)``.

        Materialized rows are used where they exist. Items with daily rows in
        range but no materialized row (no snapshot yet, a per-item write that
        failed, or an interrupted batch) are summed from the daily table, so
        a partial snapshot never hides an item. Never errors on a missing
        snapshot.
        """
        timeframe = parse_timeframe(timeframe)
        catalog_filter = catalog_filter or CatalogFilter()
        snapshot = WindowSnapshot(timeframe=timeframe, as_of=as_of)
        start, end = window_range(timeframe, as_of)

        async with self._db() as db:
            stored = select(
                WindowAggregate.item_id,
                *[getattr(WindowAggregate, column).label(name) for name, column in SUM_COLUMNS.items()],
            ).where(
                WindowAggregate.timeframe == timeframe,
                WindowAggregate.as_of_date == as_of,
            )
            for values in (await db.execute(catalog_filter.apply(stored, WindowAggregate.item_id))).all():
                snapshot.rows[values.item_id] = _row_from(values.item_id, values)

            summed = (
                select(DailyAggregate.item_id, *_daily_sum_columns())
                .where(DailyAggregate.day >= start, DailyAggregate.day <= end)
                .group_by(DailyAggregate.item_id)
            )
            filled = 0
            for values in (await db.execute(catalog_filter.apply(summed, DailyAggregate.item_id))).all():
                if values.item_id not in snapshot.rows:
                    snapshot.rows[values.item_id] = _row_from(values.item_id, values)
                    filled += 1

        snapshot.materialized = len(snapshot.rows) > filled
        if filled:
            logger.debug(
                "Window rows summed from daily table",
                timeframe=timeframe.value,
                as_of=as_of.isoformat(),
                items=filled,
                materialized=snapshot.materialized,
            )

        return snapshot

    async def _write_row(self, row: WindowRow, timeframe: Timeframe, as_of: date) -> None:
        async with self._db() as db:
            stmt = dialect_insert(db, WindowAggregate).values(
                item_id=row.item_id,
                timeframe=timeframe,
                as_of_date=as_of,
                **row.to_record(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["item_id", "timeframe", "as_of_date"],
                set_={
                    **{column: stmt.excluded[column] for column in SUM_COLUMNS.values()},
                    "updated_at": func.now(),
                },
            )
            await db.execute(stmt)
