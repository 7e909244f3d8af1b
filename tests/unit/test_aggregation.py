"""
Unit Tests - Daily, Window and Lifetime Aggregation
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from gear_popularity.aggregation.daily import DailyAggregator
from gear_popularity.aggregation.lifetime import LifetimeAggregator
from gear_popularity.aggregation.weights import WeightTable, default_weights
from gear_popularity.aggregation.windows import WindowMaterializer, parse_timeframe, window_range
from gear_popularity.database.filters import CatalogFilter
from gear_popularity.database.models import (
    DailyAggregate,
    EventType,
    LifetimeAggregate,
    Timeframe,
    WindowAggregate,
)
from gear_popularity.exceptions import InvalidTimeframeError, UnknownEventTypeError
from gear_popularity.ingestion.event_recorder import EventRecorder
from gear_popularity.quality.anomaly_detector import AnomalyType

from tests.factories import YESTERDAY, at, days_back, put_daily_views


async def daily_row(db, day, item_id):
    async with db() as session:
        return await session.get(DailyAggregate, {"day": day, "item_id": item_id})


class TestWeightTable:
    """Tests for the versioned weight table"""

    def test_score_is_weighted_sum(self, weights):
        """Each type contributes count times weight"""
        counts = {EventType.VIEW: 10, EventType.WISHLIST_ADD: 2, EventType.REVIEW_SUBMIT: 1}

        assert weights.score(counts) == 10 * 1.0 + 2 * 3.0 + 1 * 5.0

    def test_missing_type_rejected(self):
        """Every event type needs a weight"""
        with pytest.raises(ValueError):
            WeightTable(version="bad", weights={EventType.VIEW: 1.0})

    def test_unknown_type_rejected(self):
        """Unknown names in a mapping are refused"""
        mapping = {t.value: 1.0 for t in EventType}
        mapping["share"] = 2.0

        with pytest.raises(UnknownEventTypeError):
            WeightTable.from_mapping("v9", mapping)

    def test_default_weights_from_settings(self, test_settings):
        """Configured table covers the closed set"""
        table = default_weights(test_settings)

        assert table.version == test_settings.popularity.weights_version
        assert set(table.weights) == set(EventType)
        assert table.weight(EventType.VIEW) == 1.0


class TestDailyAggregator:
    """Tests for DailyAggregator"""

    async def test_deduplicated_views_count_once(self, db, catalog, weights):
        """Three views from one user on one day aggregate to one"""
        recorder = EventRecorder(db)
        for hour in (9, 12, 18):
            await recorder.record_event("cam-a7iv", "view", user_id="u1", now=at(YESTERDAY, hour))

        result = await DailyAggregator(db, weights).aggregate_day(YESTERDAY)

        row = await daily_row(db, YESTERDAY, "cam-a7iv")
        assert result.success
        assert row.views == 1

    async def test_counts_score_and_version(self, db, catalog, weights):
        """Per-type counts, weighted score and weights version are stored"""
        recorder = EventRecorder(db)
        for user in ("u1", "u2", "u3"):
            await recorder.record_event("cam-a7iv", "view", user_id=user, now=at(YESTERDAY))
        await recorder.record_event("cam-a7iv", "wishlist_add", user_id="u1", now=at(YESTERDAY))
        await recorder.record_event("cam-a7iv", "owner_add", user_id="u2", now=at(YESTERDAY))

        await DailyAggregator(db, weights).aggregate_day(YESTERDAY)

        row = await daily_row(db, YESTERDAY, "cam-a7iv")
        assert (row.views, row.wishlist_adds, row.owner_adds, row.compare_adds) == (3, 1, 1, 0)
        assert row.score == pytest.approx(3 * 1.0 + 3.0 + 4.0)
        assert row.weights_version == "test-v1"

    async def test_rerun_is_idempotent(self, db, catalog, weights):
        """Running the same day twice gives the same rows"""
        recorder = EventRecorder(db)
        await recorder.record_event("cam-a7iv", "view", user_id="u1", now=at(YESTERDAY))
        await recorder.record_event("cam-r6ii", "view", user_id="u1", now=at(YESTERDAY))
        aggregator = DailyAggregator(db, weights)

        first = await aggregator.aggregate_day(YESTERDAY)
        second = await aggregator.aggregate_day(YESTERDAY)

        assert first.items == second.items == 2
        assert (await daily_row(db, YESTERDAY, "cam-a7iv")).views == 1

    async def test_late_events_picked_up_on_rerun(self, db, catalog, weights):
        """A correction pass reflects events that arrived after the first run"""
        recorder = EventRecorder(db)
        aggregator = DailyAggregator(db, weights)
        await recorder.record_event("cam-a7iv", "view", user_id="u1", now=at(YESTERDAY))
        await aggregator.aggregate_day(YESTERDAY)

        await recorder.record_event("cam-a7iv", "view", user_id="u2", now=at(YESTERDAY, 23))
        await aggregator.aggregate_day(YESTERDAY)

        assert (await daily_row(db, YESTERDAY, "cam-a7iv")).views == 2

    async def test_stale_row_reset_to_zero(self, db, catalog, weights):
        """An existing row with no events left is rewritten as zero"""
        await put_daily_views(db, "cam-z6iii", [(YESTERDAY, 7)])

        result = await DailyAggregator(db, weights).aggregate_day(YESTERDAY)

        row = await daily_row(db, YESTERDAY, "cam-z6iii")
        assert row.views == 0
        assert row.score == 0.0
        assert "cam-z6iii" in result.affected_item_ids

    async def test_other_days_untouched(self, db, catalog, weights):
        """Only the requested day is aggregated"""
        recorder = EventRecorder(db)
        await recorder.record_event("cam-a7iv", "view", user_id="u1", now=at(YESTERDAY - timedelta(days=1)))

        result = await DailyAggregator(db, weights).aggregate_day(YESTERDAY)

        assert result.items == 0
        assert await daily_row(db, YESTERDAY, "cam-a7iv") is None


class TestWindowMaterializer:
    """Tests for WindowMaterializer"""

    def test_window_range_is_inclusive(self):
        """A 7d window ending on the 14th starts on the 8th"""
        start, end = window_range(Timeframe.SEVEN_DAYS, YESTERDAY)

        assert (end - start).days == 6
        assert end == YESTERDAY

    def test_invalid_timeframe(self):
        """Only 7d and 30d exist"""
        with pytest.raises(InvalidTimeframeError):
            parse_timeframe("90d")

    async def test_seven_day_sum(self, db, catalog):
        """Daily views [5,3,2,0,1,4,2] sum to 17"""
        days = days_back(YESTERDAY, 7)
        await put_daily_views(db, "cam-a7iv", zip(days, [5, 3, 2, 0, 1, 4, 2]))

        row = await WindowMaterializer(db).materialize_window("cam-a7iv", "7d", YESTERDAY)

        assert row.views == 17
        async with db() as session:
            stored = await session.get(
                WindowAggregate,
                {"item_id": "cam-a7iv", "timeframe": Timeframe.SEVEN_DAYS, "as_of_date": YESTERDAY},
            )
        assert stored.views_sum == 17

    async def test_window_excludes_days_outside_range(self, db, catalog):
        """The eighth day back is outside a 7d window"""
        days = days_back(YESTERDAY, 8)
        await put_daily_views(db, "cam-a7iv", zip(days, [100, 1, 1, 1, 1, 1, 1, 1]))

        row = await WindowMaterializer(db).materialize_window("cam-a7iv", Timeframe.SEVEN_DAYS, YESTERDAY)

        assert row.views == 7

    async def test_materialize_all_and_read(self, db, catalog):
        """Snapshot rows are read back as materialized"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 4)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 2)])
        windows = WindowMaterializer(db)

        result = await windows.materialize_all("7d", YESTERDAY)
        snapshot = await windows.read_window("7d", YESTERDAY)

        assert result.rows == 2
        assert snapshot.materialized
        assert {k: v.views for k, v in snapshot.rows.items()} == {"cam-a7iv": 4, "cam-r6ii": 2}
        assert await windows.latest_as_of("7d") == YESTERDAY
        assert await windows.latest_as_of("30d") is None

    async def test_read_falls_back_to_daily_sums(self, db, catalog):
        """Missing snapshot is computed from daily rows"""
        days = days_back(YESTERDAY, 7)
        await put_daily_views(db, "cam-a7iv", zip(days, [5, 3, 2, 0, 1, 4, 2]))

        snapshot = await WindowMaterializer(db).read_window("7d", YESTERDAY)

        assert not snapshot.materialized
        assert snapshot.rows["cam-a7iv"].views == 17

    async def test_read_applies_catalog_filter(self, db, catalog):
        """Filters are applied through the catalog join"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 4)])
        await put_daily_views(db, "lens-2470gm", [(YESTERDAY, 3)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 2)])

        snapshot = await WindowMaterializer(db).read_window(
            "7d", YESTERDAY, CatalogFilter.of(item_type="camera", brand_id="sony")
        )

        assert set(snapshot.rows) == {"cam-a7iv"}

    async def test_rematerialize_zeroes_vanished_items(self, db, catalog, weights):
        """An item whose activity disappeared is rewritten as zero"""
        await put_daily_views(db, "cam-z6iii", [(YESTERDAY, 6)])
        windows = WindowMaterializer(db)
        await windows.materialize_all("7d", YESTERDAY)

        # Daily row reset because the log has no events for it
        await DailyAggregator(db, weights).aggregate_day(YESTERDAY)
        await windows.materialize_all("7d", YESTERDAY)

        snapshot = await windows.read_window("7d", YESTERDAY)
        assert snapshot.rows["cam-z6iii"].views == 0


class TestLifetimeAggregator:
    """Tests for LifetimeAggregator"""

    async def test_lifetime_is_sum_of_daily_rows(self, db, catalog):
        """Totals cover every day on record"""
        days = days_back(YESTERDAY, 40)
        await put_daily_views(db, "cam-a7iv", zip(days, [1] * 40))

        result = await LifetimeAggregator(db).refresh_lifetime(["cam-a7iv"])

        async with db() as session:
            row = await session.get(LifetimeAggregate, "cam-a7iv")
        assert result.updated == 1
        assert row.views_lifetime == 40
        assert row.score_lifetime == pytest.approx(40.0)

    async def test_decrease_is_flagged_not_applied(self, db, catalog):
        """Lifetime views never go down"""
        lifetime = LifetimeAggregator(db)
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 10)])
        await lifetime.refresh_lifetime(["cam-a7iv"])

        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 4)])
        result = await lifetime.refresh_lifetime(["cam-a7iv"])

        async with db() as session:
            row = await session.get(LifetimeAggregate, "cam-a7iv")
        assert row.views_lifetime == 10
        assert result.updated == 0
        assert len(result.anomalies) == 1
        assert result.anomalies[0].anomaly_type == AnomalyType.DROP
        assert result.anomalies[0].details["item_id"] == "cam-a7iv"

    async def test_refresh_all_items(self, db, catalog):
        """Without ids every item with daily rows is refreshed"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 3)])
        await put_daily_views(db, "lens-rf50", [(YESTERDAY, 5)])

        result = await LifetimeAggregator(db).refresh_lifetime()

        async with db() as session:
            rows = (await session.execute(select(LifetimeAggregate))).scalars().all()
        assert result.updated == 2
        assert {r.item_id: r.views_lifetime for r in rows} == {"cam-a7iv": 3, "lens-rf50": 5}

    async def test_empty_id_list_is_noop(self, db, catalog):
        """Nothing touched, nothing written"""
        result = await LifetimeAggregator(db).refresh_lifetime([])

        assert result.updated == 0


def fail_for(item_id, write, item_of):
    """Wrap a per-item writer so it raises for one item only"""
    async def wrapped(*args):
        if item_of(*args) == item_id:
            raise RuntimeError(f"write rejected for {item_id}")
        return await write(*args)
    return wrapped


class TestPerItemFailures:
    """One failing item never aborts a batch"""

    async def test_daily_batch_continues(self, db, catalog, weights):
        recorder = EventRecorder(db)
        for item_id in ("cam-a7iv", "cam-r6ii", "lens-rf50"):
            await recorder.record_event(item_id, "view", user_id="u1", now=at(YESTERDAY))
        aggregator = DailyAggregator(db, weights)
        aggregator._write_item = fail_for("cam-r6ii", aggregator._write_item, lambda day, item_id, counts: item_id)

        result = await aggregator.aggregate_day(YESTERDAY)

        assert not result.success
        assert [f.item_id for f in result.failures] == ["cam-r6ii"]
        assert sorted(result.affected_item_ids) == ["cam-a7iv", "lens-rf50"]
        assert (await daily_row(db, YESTERDAY, "lens-rf50")).views == 1
        assert await daily_row(db, YESTERDAY, "cam-r6ii") is None

    async def test_window_batch_continues_and_read_fills_gap(self, db, catalog):
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 4)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 9)])
        windows = WindowMaterializer(db)
        windows._write_row = fail_for("cam-r6ii", windows._write_row, lambda row, timeframe, as_of: row.item_id)

        result = await windows.materialize_all("7d", YESTERDAY)
        snapshot = await windows.read_window("7d", YESTERDAY)

        assert result.rows == 1
        assert [f.item_id for f in result.failures] == ["cam-r6ii"]
        assert snapshot.materialized
        assert {k: v.views for k, v in snapshot.rows.items()} == {"cam-a7iv": 4, "cam-r6ii": 9}

    async def test_lifetime_batch_continues(self, db, catalog):
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 3)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 5)])
        lifetime = LifetimeAggregator(db)
        lifetime._write_item = fail_for("cam-a7iv", lifetime._write_item, lambda item_id, views, score: item_id)

        result = await lifetime.refresh_lifetime()

        async with db() as session:
            rows = (await session.execute(select(LifetimeAggregate))).scalars().all()
        assert result.updated == 1
        assert [f.item_id for f in result.failures] == ["cam-a7iv"]
        assert {r.item_id: r.views_lifetime for r in rows} == {"cam-r6ii": 5}
