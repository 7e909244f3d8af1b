"""
Unit Tests - Live Boost, Trending Ranking and Item Stats
"""
from datetime import timedelta

import pytest

from gear_popularity.aggregation.lifetime import LifetimeAggregator
from gear_popularity.aggregation.windows import WindowMaterializer
from gear_popularity.database.models import Timeframe
from gear_popularity.ingestion.event_recorder import EventRecorder
from gear_popularity.ranking.item_stats import ItemStatsService
from gear_popularity.ranking.live_boost import LiveBoostCalculator, live_gap
from gear_popularity.ranking.trending import TrendingQuery, TrendingRanker, TrendingRanking

from tests.factories import NOW, TODAY, YESTERDAY, add_catalog_items, at, days_back, put_daily_views


async def record_views(db, item_id, users, when=NOW):
    recorder = EventRecorder(db)
    for user in users:
        await recorder.record_event(item_id, "view", user_id=user, now=when)


class TestLiveGap:
    """Tests for the uncovered day range"""

    def test_no_snapshot_means_today_only(self):
        """Without a snapshot, yesterday counts as covered"""
        gap = live_gap(Timeframe.SEVEN_DAYS, TODAY, None)

        assert (gap.start, gap.end) == (TODAY, TODAY)
        assert gap.days == 1

    def test_stale_snapshot_widens_gap(self):
        """Days after the newest snapshot are all live"""
        gap = live_gap(Timeframe.SEVEN_DAYS, TODAY, TODAY - timedelta(days=3))

        assert gap.start == TODAY - timedelta(days=2)
        assert gap.days == 3

    def test_gap_capped_at_window_length(self):
        """A very old snapshot never reaches past the window"""
        gap = live_gap(Timeframe.SEVEN_DAYS, TODAY, TODAY - timedelta(days=60))

        assert gap.days == 7

    def test_no_gap_when_covered(self):
        """A snapshot as of today leaves nothing live"""
        assert live_gap(Timeframe.THIRTY_DAYS, TODAY, TODAY) is None


class TestLiveBoostCalculator:
    """Tests for LiveBoostCalculator"""

    async def test_same_day_distinct_users(self, db, catalog, weights):
        """Four users viewing today give a boost of four"""
        await record_views(db, "cam-z6iii", ["u1", "u2", "u3", "u4"])

        boost = await LiveBoostCalculator(db, weights).live_boost("cam-z6iii", "7d", now=NOW)

        assert boost == 4

    async def test_score_metric_weights_types(self, db, catalog, weights):
        """The score metric weights every event type"""
        recorder = EventRecorder(db)
        await recorder.record_event("cam-z6iii", "view", user_id="u1", now=NOW)
        await recorder.record_event("cam-z6iii", "review_submit", user_id="u1", now=NOW)

        live = LiveBoostCalculator(db, weights)

        assert await live.live_boost("cam-z6iii", "7d", metric="views", now=NOW) == 1
        assert await live.live_boost("cam-z6iii", "7d", metric="score", now=NOW) == pytest.approx(6.0)

    async def test_zero_once_covered(self, db, catalog, weights):
        """After a snapshot as of today the boost drops to zero"""
        await record_views(db, "cam-z6iii", ["u1", "u2"])
        await put_daily_views(db, "cam-z6iii", [(TODAY, 2)])
        await WindowMaterializer(db).materialize_all("7d", TODAY)

        boost = await LiveBoostCalculator(db, weights).live_boost("cam-z6iii", "7d", now=NOW)

        assert boost == 0

    async def test_covered_days_not_counted(self, db, catalog, weights):
        """Events on days inside the snapshot are not boosted"""
        await record_views(db, "cam-z6iii", ["u1"], when=at(YESTERDAY))
        await record_views(db, "cam-z6iii", ["u2"])
        await put_daily_views(db, "cam-z6iii", [(YESTERDAY, 1)])
        await WindowMaterializer(db).materialize_all("7d", YESTERDAY)

        boost = await LiveBoostCalculator(db, weights).live_boost("cam-z6iii", "7d", now=NOW)

        assert boost == 1


class TestTrendingQuery:
    """Tests for request validation"""

    def test_defaults(self):
        """Defaults rank by 7d views"""
        query = TrendingQuery()

        assert query.timeframe == Timeframe.SEVEN_DAYS
        assert (query.page, query.per_page) == (1, 20)

    @pytest.mark.parametrize("page,per_page", [(0, 20), (1, 0), (1, 101)])
    def test_invalid_paging(self, page, per_page):
        """Out of range paging is refused"""
        with pytest.raises(ValueError):
            TrendingQuery(page=page, per_page=per_page)

    def test_cache_key_covers_filters(self):
        """Different filters never share a cache entry"""
        cameras = TrendingQuery(item_type="camera")
        sony = TrendingQuery(item_type="camera", brand_id="sony")

        assert cameras.cache_key() != sony.cache_key()

    def test_pages_share_cache_key(self):
        """All pages of one ranking are cut from the same cached entry"""
        assert TrendingQuery(page=1).cache_key() == TrendingQuery(page=3, per_page=50).cache_key()
        assert TrendingQuery(metric="views").cache_key() != TrendingQuery(metric="score").cache_key()


class TestTrendingRanker:
    """Tests for TrendingRanker"""

    async def test_window_plus_live_boost(self, db, catalog, weights):
        """Score is yesterday's window sum plus today's distinct views"""
        days = days_back(YESTERDAY, 7)
        await put_daily_views(db, "cam-z6iii", zip(days, [5, 3, 2, 0, 1, 4, 2]))
        await WindowMaterializer(db).materialize_all("7d", YESTERDAY)
        await record_views(db, "cam-z6iii", ["u1", "u2", "u3", "u4"])

        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(timeframe="7d"), now=NOW)

        top = page.items[0]
        assert top.item_id == "cam-z6iii"
        assert top.views == 17
        assert top.live_boost == 4
        assert top.score == 21
        assert top.is_live
        assert page.as_of_date == YESTERDAY
        assert page.live_through == TODAY

    async def test_live_only_items_are_ranked(self, db, catalog, weights):
        """Items with no window history still trend on live activity"""
        await record_views(db, "lens-rf50", ["u1", "u2"])

        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(), now=NOW)

        assert [i.item_id for i in page.items] == ["lens-rf50"]
        assert page.items[0].score == 2

    async def test_pages_do_not_overlap(self, db, weights):
        """Page 2 continues page 1 with non-increasing scores"""
        ids = await add_catalog_items(db, 45)
        for rank, item_id in enumerate(ids):
            await put_daily_views(db, item_id, [(YESTERDAY, 100 - rank * 2)])
        await WindowMaterializer(db).materialize_all("7d", YESTERDAY)
        ranker = TrendingRanker(db, weights)

        first = await ranker.rank_trending(TrendingQuery(page=1, per_page=20), now=NOW)
        second = await ranker.rank_trending(TrendingQuery(page=2, per_page=20), now=NOW)

        assert len(first.items) == len(second.items) == 20
        assert first.total == 45
        assert first.has_more and second.has_more
        scores = [i.score for i in first.items + second.items]
        assert scores == sorted(scores, reverse=True)
        assert not {i.item_id for i in first.items} & {i.item_id for i in second.items}

    async def test_partial_snapshot_keeps_other_items(self, db, catalog, weights):
        """Items missing from a partly written snapshot rank on their daily sums"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 10)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 50)])
        await WindowMaterializer(db).materialize_window("cam-a7iv", "7d", YESTERDAY)

        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(), now=NOW)

        assert {i.item_id: i.score for i in page.items} == {"cam-r6ii": 50, "cam-a7iv": 10}
        assert [i.item_id for i in page.items] == ["cam-r6ii", "cam-a7iv"]

    async def test_pages_cut_from_one_ranking(self, db, catalog, weights):
        """A ranking round-tripped through the cache pages like a fresh one"""
        for rank, item_id in enumerate(sorted(catalog)):
            await put_daily_views(db, item_id, [(YESTERDAY, 10 - rank)])
        ranker = TrendingRanker(db, weights)

        ranking = await ranker.rank_all(TrendingQuery(), now=NOW)
        cached = TrendingRanking.from_dict(ranking.to_dict())
        pages = [cached.page(n, 2) for n in (1, 2, 3)]

        assert [i.item_id for p in pages for i in p.items] == [i.item_id for i in ranking.items]
        assert [p.has_more for p in pages] == [True, True, False]
        assert all(p.total == 5 for p in pages)
        assert pages[0].items == (await ranker.rank_trending(TrendingQuery(per_page=2), now=NOW)).items

    async def test_ties_are_deterministic(self, db, weights):
        """Equal scores are ordered by item id, identically on every call"""
        ids = await add_catalog_items(db, 6, prefix="tie")
        for item_id in reversed(ids):
            await put_daily_views(db, item_id, [(YESTERDAY, 5)])
        ranker = TrendingRanker(db, weights)

        first = await ranker.rank_trending(TrendingQuery(per_page=3), now=NOW)
        again = await ranker.rank_trending(TrendingQuery(per_page=3), now=NOW)
        rest = await ranker.rank_trending(TrendingQuery(page=2, per_page=3), now=NOW)

        assert [i.item_id for i in first.items] == ids[:3]
        assert [i.item_id for i in again.items] == ids[:3]
        assert [i.item_id for i in rest.items] == ids[3:]
        assert not rest.has_more

    async def test_ties_broken_by_lifetime_views(self, db, catalog, weights):
        """Among equal scores the item with more lifetime views ranks first"""
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY - timedelta(days=60), 50), (YESTERDAY, 5)])
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 5)])
        await LifetimeAggregator(db).refresh_lifetime()

        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(), now=NOW)

        assert [i.item_id for i in page.items] == ["cam-r6ii", "cam-a7iv"]
        assert page.items[0].lifetime_views == 55

    async def test_filters(self, db, catalog, weights):
        """Item type and brand restrict the population"""
        for item_id in catalog:
            await put_daily_views(db, item_id, [(YESTERDAY, 3)])
        await record_views(db, "lens-rf50", ["u1"])
        ranker = TrendingRanker(db, weights)

        lenses = await ranker.rank_trending(TrendingQuery(item_type="lens"), now=NOW)
        sony_cameras = await ranker.rank_trending(TrendingQuery(item_type="camera", brand_id="sony"), now=NOW)

        assert [i.item_id for i in lenses.items] == ["lens-rf50", "lens-2470gm"]
        assert [i.item_id for i in sony_cameras.items] == ["cam-a7iv"]

    async def test_zero_scores_excluded(self, db, catalog, weights):
        """Items without activity are not trending"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 0)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 1)])

        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(), now=NOW)

        assert [i.item_id for i in page.items] == ["cam-r6ii"]
        assert page.total == 1

    async def test_empty_catalog_activity(self, db, catalog, weights):
        """No activity gives an empty first page"""
        page = await TrendingRanker(db, weights).rank_trending(TrendingQuery(), now=NOW)

        assert page.items == []
        assert page.total == 0
        assert not page.has_more

    async def test_score_metric(self, db, catalog, weights):
        """The score metric ranks on weighted activity"""
        recorder = EventRecorder(db)
        for user in ("u1", "u2", "u3"):
            await recorder.record_event("cam-a7iv", "view", user_id=user, now=NOW)
        await recorder.record_event("cam-r6ii", "owner_add", user_id="u1", now=NOW)

        views = await TrendingRanker(db, weights).rank_trending(TrendingQuery(metric="views"), now=NOW)
        score = await TrendingRanker(db, weights).rank_trending(TrendingQuery(metric="score"), now=NOW)

        assert [i.item_id for i in views.items] == ["cam-a7iv"]
        assert [i.item_id for i in score.items] == ["cam-r6ii", "cam-a7iv"]


class TestItemStats:
    """Tests for ItemStatsService"""

    async def test_unknown_slug(self, db, catalog):
        """Unknown slugs return None"""
        assert await ItemStatsService(db).get_item_stats("no-such-item", now=NOW) is None

    async def test_from_daily_rows(self, db, catalog):
        """Without a 30d snapshot the last 30 days are summed"""
        days = days_back(YESTERDAY, 31)
        await put_daily_views(db, "cam-a7iv", zip(days, [10] + [1] * 30))

        stats = await ItemStatsService(db).get_item_stats("sony-a7-iv", now=NOW)

        assert stats.views_30d == 30
        assert not stats.from_snapshot
        assert stats.lifetime_views == 0

    async def test_from_snapshot(self, db, catalog):
        """The newest 30d snapshot wins"""
        await put_daily_views(db, "cam-a7iv", [(YESTERDAY, 8)])
        await WindowMaterializer(db).materialize_all("30d", YESTERDAY)

        stats = await ItemStatsService(db).get_item_stats("sony-a7-iv", now=NOW)

        assert stats.views_30d == 8
        assert stats.from_snapshot
        assert stats.as_of_date == YESTERDAY

    async def test_quiet_item_reads_zero_at_latest_snapshot(self, db, catalog):
        """An older non-zero window is not served once a newer snapshot exists"""
        old = YESTERDAY - timedelta(days=40)
        await put_daily_views(db, "cam-a7iv", [(old, 9)])
        await put_daily_views(db, "cam-r6ii", [(YESTERDAY, 2)])
        windows = WindowMaterializer(db)
        await windows.materialize_all("30d", old)
        await windows.materialize_all("30d", YESTERDAY)

        stats = await ItemStatsService(db).get_item_stats("sony-a7-iv", now=NOW)

        assert stats.views_30d == 0
        assert stats.as_of_date == YESTERDAY
