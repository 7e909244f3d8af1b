"""
Popularity Event Recorder

Write path for the event log with:
- Crawler filtering by user agent
- Catalog existence check
- Per identity, per item, per type, per UTC day deduplication
- Prometheus counters by outcome
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union

import structlog
from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gear_popularity.clock import utc_now
from gear_popularity.config import get_settings
from gear_popularity.database.connection import SessionContextFactory, dialect_insert, get_db
from gear_popularity.database.models import EventType, GearItem, PopularityEvent
from gear_popularity.exceptions import UnknownEventTypeError
from gear_popularity.ingestion.compare_pairs import ComparePairCounter
from gear_popularity.ingestion.events import BaseGearEvent, CompareAddEvent

logger = structlog.get_logger(__name__)
settings = get_settings()


# =============================================================================
# METRICS
# =============================================================================

EVENTS_RECORDED = Counter(
    "gear_popularity_events_total",
    "Popularity events by outcome",
    ["event_type", "status"],
)


# =============================================================================
# RESULTS
# =============================================================================

class SkipReason(str, Enum):
    """Why an event was not written"""
    DUPLICATE = "duplicate"
    BOT = "bot"
    ITEM_NOT_FOUND = "item_not_found"


@dataclass
class RecordResult:
    """Outcome of a single record attempt"""
    recorded: bool
    reason: Optional[SkipReason] = None
    event_id: Optional[uuid.UUID] = None

    @property
    def deduplicated(self) -> bool:
        return self.reason == SkipReason.DUPLICATE


def identity_key_for(user_id: Optional[str], visitor_id: Optional[str]) -> Optional[str]:
    """
    Dedup identity: the user when signed in, else the anonymous visitor.

    Returns None when neither is known; such events are never deduplicated.
    """
    if user_id:
        return f"u:{user_id}"
    if visitor_id:
        return f"v:{visitor_id}"
    return None


def _coerce_event_type(event_type: Union[EventType, str]) -> EventType:
    try:
        return EventType(event_type)
    except ValueError:
        raise UnknownEventTypeError(str(event_type)) from None


# =============================================================================
# RECORDER
# =============================================================================

class EventRecorder:
    """
    Records popularity events idempotently.

    The unique constraint on the event log is the source of truth for
    deduplication; the pre-check only saves a write in the common case.

    Example:
        recorder = EventRecorder()
        result = await recorder.record_event("sony-a7iv", "view", user_id="u1")
    """

    def __init__(
        self,
        db: SessionContextFactory = get_db,
        bot_patterns: Optional[Iterable[str]] = None,
        compare_pairs: Optional[ComparePairCounter] = None,
    ):
        self._db = db
        patterns = list(bot_patterns if bot_patterns is not None else settings.popularity.bot_user_agent_patterns)
        self._bot_re = (
            re.compile("|".join(re.escape(p) for p in patterns), re.IGNORECASE)
            if patterns else None
        )
        self._compare_pairs = compare_pairs or ComparePairCounter(db)

    def is_bot(self, user_agent: Optional[str]) -> bool:
        """Match the user agent against crawler patterns."""
        if not user_agent or self._bot_re is None:
            return False
        return self._bot_re.search(user_agent) is not None

    async def record_event(
        self,
        item_id: str,
        event_type: Union[EventType, str],
        user_id: Optional[str] = None,
        visitor_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RecordResult:
        """
        Append an event unless the identity already did this today.

        Args:
            item_id: Catalog item id
            event_type: One of the EventType values
            user_id: Signed-in user, if any
            visitor_id: Anonymous session key, used when no user is present
            user_agent: Request user agent, for crawler filtering
            now: Clock override; defaults to the current UTC time

        Returns:
            RecordResult; duplicates come back as ``recorded=False``

        Raises:
            UnknownEventTypeError: event_type is not in the closed set
        """
        kind = _coerce_event_type(event_type)

        if self.is_bot(user_agent):
            EVENTS_RECORDED.labels(event_type=kind.value, status="bot").inc()
            logger.debug("Skipping crawler event", item_id=item_id, event_type=kind.value)
            return RecordResult(recorded=False, reason=SkipReason.BOT)

        # One clock reading for both the timestamp and its UTC day
        created_at = utc_now(now)
        event_day = created_at.date()
        identity_key = identity_key_for(user_id, visitor_id)

        try:
            async with self._db() as db:
                exists = await db.scalar(select(GearItem.id).where(GearItem.id == item_id))
                if exists is None:
                    EVENTS_RECORDED.labels(event_type=kind.value, status="item_not_found").inc()
                    logger.info("Event for unknown item ignored", item_id=item_id, event_type=kind.value)
                    return RecordResult(recorded=False, reason=SkipReason.ITEM_NOT_FOUND)

                if identity_key is not None and await self._already_recorded(
                    db, item_id, kind, event_day, identity_key
                ):
                    return self._duplicate(item_id, kind)

                stmt = dialect_insert(db, PopularityEvent).values(
                    id=uuid.uuid4(),
                    item_id=item_id,
                    user_id=user_id,
                    visitor_id=None if user_id else visitor_id,
                    identity_key=identity_key,
                    event_type=kind,
                    created_at=created_at,
                    event_day=event_day,
                )
                stmt = stmt.on_conflict_do_nothing(
                    index_elements=["item_id", "event_type", "event_day", "identity_key"],
                ).returning(PopularityEvent.id)

                event_id = (await db.execute(stmt)).scalar_one_or_none()
        except IntegrityError:
            # Lost a race on the unique constraint
            return self._duplicate(item_id, kind)

        if event_id is None:
            return self._duplicate(item_id, kind)

        EVENTS_RECORDED.labels(event_type=kind.value, status="recorded").inc()
        logger.debug(
            "Popularity event recorded",
            item_id=item_id,
            event_type=kind.value,
            event_day=event_day.isoformat(),
            anonymous=user_id is None,
        )
        return RecordResult(recorded=True, event_id=event_id)

    async def record(
        self,
        event: BaseGearEvent,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RecordResult:
        """Record a validated event payload, bumping compare pairs when named."""
        result = await self.record_event(
            item_id=event.item_id,
            event_type=event.kind,
            user_id=event.user_id,
            visitor_id=event.visitor_id,
            user_agent=user_agent,
            now=now,
        )

        if result.recorded and isinstance(event, CompareAddEvent) and event.compared_with:
            await self._compare_pairs.increment(event.item_id, event.compared_with)

        return result

    async def _already_recorded(
        self,
        db,
        item_id: str,
        kind: EventType,
        event_day,
        identity_key: str,
    ) -> bool:
        found = await db.scalar(
            select(PopularityEvent.id)
            .where(
                PopularityEvent.item_id == item_id,
                PopularityEvent.event_type == kind,
                PopularityEvent.event_day == event_day,
                PopularityEvent.identity_key == identity_key,
            )
            .limit(1)
        )
        return found is not None

    def _duplicate(self, item_id: str, kind: EventType) -> RecordResult:
        EVENTS_RECORDED.labels(event_type=kind.value, status="duplicate").inc()
        logger.debug("Duplicate popularity event suppressed", item_id=item_id, event_type=kind.value)
        return RecordResult(recorded=False, reason=SkipReason.DUPLICATE)
