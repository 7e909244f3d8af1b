"""
Unit Tests - Event Ingestion
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from gear_popularity.database.models import ComparePairCount, EventType, PopularityEvent
from gear_popularity.exceptions import UnknownEventTypeError
from gear_popularity.ingestion.compare_pairs import ComparePairCounter, canonical_pair
from gear_popularity.ingestion.event_recorder import EventRecorder, SkipReason, identity_key_for
from gear_popularity.ingestion.events import CompareAddEvent, ViewEvent, parse_event

from tests.factories import NOW


async def count_events(db, item_id=None) -> int:
    async with db() as session:
        query = select(func.count()).select_from(PopularityEvent)
        if item_id is not None:
            query = query.where(PopularityEvent.item_id == item_id)
        return await session.scalar(query)


class TestIdentityKey:
    """Tests for the dedup identity"""

    def test_user_wins_over_visitor(self):
        """Signed-in user is the identity even when a visitor id is sent"""
        assert identity_key_for("u1", "v1") == "u:u1"

    def test_visitor_when_anonymous(self):
        """Anonymous traffic is keyed by visitor"""
        assert identity_key_for(None, "v1") == "v:v1"

    def test_no_identity(self):
        """Nothing to key on"""
        assert identity_key_for(None, None) is None


class TestEventPayloads:
    """Tests for the tagged event union"""

    def test_parse_view(self):
        """event_type selects the model"""
        event = parse_event({"event_type": "view", "item_id": "cam-a7iv", "user_id": "u1"})

        assert isinstance(event, ViewEvent)
        assert event.kind == EventType.VIEW

    def test_parse_compare_with_other_item(self):
        """Compare events carry the other item"""
        event = parse_event({
            "event_type": "compare_add",
            "item_id": "cam-a7iv",
            "compared_with": "cam-r6ii",
        })

        assert isinstance(event, CompareAddEvent)
        assert event.compared_with == "cam-r6ii"

    def test_unknown_type_rejected(self):
        """Types outside the closed set fail validation"""
        with pytest.raises(ValidationError):
            parse_event({"event_type": "share", "item_id": "cam-a7iv"})

    def test_empty_item_rejected(self):
        """item_id is required"""
        with pytest.raises(ValidationError):
            parse_event({"event_type": "view", "item_id": ""})


class TestEventRecorder:
    """Tests for EventRecorder"""

    async def test_records_first_event(self, db, catalog):
        """A new event is written"""
        recorder = EventRecorder(db)

        result = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW)

        assert result.recorded
        assert result.event_id is not None
        assert await count_events(db) == 1

    async def test_same_user_same_day_is_deduplicated(self, db, catalog):
        """Three views from one user on one day leave one row"""
        recorder = EventRecorder(db)

        results = [
            await recorder.record_event("cam-a7iv", EventType.VIEW, user_id="u1", now=NOW + timedelta(minutes=i))
            for i in range(3)
        ]

        assert [r.recorded for r in results] == [True, False, False]
        assert results[1].deduplicated
        assert results[2].reason == SkipReason.DUPLICATE
        assert await count_events(db, "cam-a7iv") == 1

    async def test_same_user_next_day_counts_again(self, db, catalog):
        """Dedup is per UTC day"""
        recorder = EventRecorder(db)

        first = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW)
        second = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW + timedelta(days=1))

        assert first.recorded and second.recorded
        assert await count_events(db) == 2

    async def test_different_types_are_independent(self, db, catalog):
        """A view does not block a wishlist add from the same user"""
        recorder = EventRecorder(db)

        view = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW)
        wishlist = await recorder.record_event("cam-a7iv", "wishlist_add", user_id="u1", now=NOW)

        assert view.recorded and wishlist.recorded

    async def test_visitor_is_deduplicated(self, db, catalog):
        """Anonymous visitors are deduplicated by visitor id"""
        recorder = EventRecorder(db)

        first = await recorder.record_event("cam-a7iv", "view", visitor_id="sess-1", now=NOW)
        again = await recorder.record_event("cam-a7iv", "view", visitor_id="sess-1", now=NOW)
        other = await recorder.record_event("cam-a7iv", "view", visitor_id="sess-2", now=NOW)

        assert first.recorded
        assert again.deduplicated
        assert other.recorded

    async def test_no_identity_is_always_counted(self, db, catalog):
        """Events with neither user nor visitor are never deduplicated"""
        recorder = EventRecorder(db)

        results = [await recorder.record_event("cam-a7iv", "view", now=NOW) for _ in range(3)]

        assert all(r.recorded for r in results)
        assert await count_events(db) == 3

    async def test_bot_user_agent_skipped(self, db, catalog):
        """Crawler traffic never reaches the log"""
        recorder = EventRecorder(db)

        result = await recorder.record_event(
            "cam-a7iv",
            "view",
            user_id="u1",
            user_agent="Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
            now=NOW,
        )

        assert not result.recorded
        assert result.reason == SkipReason.BOT
        assert await count_events(db) == 0

    def test_bot_patterns_are_case_insensitive(self):
        """Pattern matching ignores case and regex metacharacters"""
        recorder = EventRecorder(bot_patterns=["headless", "curl/"])

        assert recorder.is_bot("Mozilla/5.0 HeadlessChrome/120.0")
        assert recorder.is_bot("curl/8.4.0")
        assert not recorder.is_bot("Mozilla/5.0 (Macintosh) Safari/605.1.15")
        assert not recorder.is_bot(None)

    async def test_unknown_item_skipped(self, db, catalog):
        """Events for items outside the catalog are ignored"""
        recorder = EventRecorder(db)

        result = await recorder.record_event("does-not-exist", "view", user_id="u1", now=NOW)

        assert not result.recorded
        assert result.reason == SkipReason.ITEM_NOT_FOUND

    async def test_unknown_event_type_raises(self, db, catalog):
        """Raw strings are checked against the closed set"""
        recorder = EventRecorder(db)

        with pytest.raises(UnknownEventTypeError):
            await recorder.record_event("cam-a7iv", "share", user_id="u1", now=NOW)

    async def test_event_day_is_utc_day(self, db, catalog):
        """Stored day matches the UTC date of the timestamp"""
        recorder = EventRecorder(db)
        late = NOW.replace(hour=23, minute=59)

        await recorder.record_event("cam-a7iv", "view", user_id="u1", now=late)

        async with db() as session:
            event = (await session.execute(select(PopularityEvent))).scalar_one()
        assert event.event_day == late.date()
        assert event.identity_key == "u:u1"

    async def test_unique_constraint_catches_concurrent_duplicate(self, db, catalog, monkeypatch):
        """Two writers that both pass the lookup still store one event"""
        recorder = EventRecorder(db)

        async def not_seen(*args, **kwargs):
            return False

        monkeypatch.setattr(recorder, "_already_recorded", not_seen)

        first = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW)
        second = await recorder.record_event("cam-a7iv", "view", user_id="u1", now=NOW)

        assert first.recorded
        assert not second.recorded
        assert second.reason == SkipReason.DUPLICATE
        async with db() as session:
            events = (await session.execute(select(PopularityEvent))).scalars().all()
        assert len(events) == 1


class TestComparePairs:
    """Tests for compare pair counting"""

    def test_canonical_pair_is_ordered(self):
        """Pairs are stored in id order"""
        assert canonical_pair("z", "a") == ("a", "z")
        assert canonical_pair("a", "z") == ("a", "z")

    def test_self_comparison_has_no_pair(self):
        """An item compared with itself is ignored"""
        assert canonical_pair("a", "a") is None

    async def test_increment_and_top_pairs(self, db, catalog):
        """Counts accumulate regardless of argument order"""
        counter = ComparePairCounter(db)

        await counter.increment("cam-r6ii", "cam-a7iv")
        await counter.increment("cam-a7iv", "cam-r6ii")
        await counter.increment("cam-a7iv", "cam-z6iii")

        pairs = await counter.top_pairs(limit=10)

        assert [p.count for p in pairs] == [2, 1]
        assert (pairs[0].item_a_id, pairs[0].item_b_id) == ("cam-a7iv", "cam-r6ii")
        assert pairs[0].item_a_slug == "sony-a7-iv"

    async def test_recorded_compare_event_bumps_pair(self, db, catalog):
        """Only recorded compare events count towards the pair"""
        recorder = EventRecorder(db)
        event = CompareAddEvent(item_id="cam-a7iv", user_id="u1", compared_with="cam-r6ii")

        first = await recorder.record(event, now=NOW)
        duplicate = await recorder.record(event, now=NOW)

        assert first.recorded
        assert duplicate.deduplicated
        async with db() as session:
            count = await session.scalar(select(ComparePairCount.count))
        assert count == 1
