"""
Database Models - Popularity Schema

Catalog:
- GearItem: read-only camera/lens catalog rows (owned by the catalog service)

Event Log:
- PopularityEvent: append-only, deduplicated interaction events

Aggregates:
- DailyAggregate: per item, per UTC day counts and weighted score
- LifetimeAggregate: running totals per item
- WindowAggregate: trailing 7d/30d sums per item and as-of date
- ComparePairCount: how often two items were compared

Operations:
- RollupRun: history of daily rollup executions
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# =============================================================================
# ENUMERATIONS
# =============================================================================

class EventType(str, Enum):
    """Popularity event types (closed set)"""
    VIEW = "view"
    WISHLIST_ADD = "wishlist_add"
    OWNER_ADD = "owner_add"
    COMPARE_ADD = "compare_add"
    REVIEW_SUBMIT = "review_submit"


class ItemType(str, Enum):
    """Catalog item type"""
    CAMERA = "camera"
    LENS = "lens"


class Timeframe(str, Enum):
    """Trailing window lengths"""
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"

    @property
    def days(self) -> int:
        return 7 if self is Timeframe.SEVEN_DAYS else 30


# Daily aggregate column for each event type
EVENT_COUNT_COLUMNS = {
    EventType.VIEW: "views",
    EventType.WISHLIST_ADD: "wishlist_adds",
    EventType.OWNER_ADD: "owner_adds",
    EventType.COMPARE_ADD: "compare_adds",
    EventType.REVIEW_SUBMIT: "review_submits",
}


# =============================================================================
# CATALOG
# =============================================================================

class GearItem(Base):
    """
    Gear Catalog Table

    Cameras and lenses. Read by the ranker for filtering and display,
    never written by this service outside of seeding.
    """
    __tablename__ = "gear_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    item_type: Mapped[ItemType] = mapped_column(
        SQLEnum(ItemType, name="gear_item_type", values_callable=_enum_values),
        nullable=False,
    )
    brand_id: Mapped[Optional[str]] = mapped_column(String(64))
    brand_name: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gear_items_type", "item_type"),
        Index("ix_gear_items_brand", "brand_id"),
    )


# =============================================================================
# EVENT LOG
# =============================================================================

class PopularityEvent(Base):
    """
    Popularity Event Log

    Append-only. One row per accepted interaction. ``identity_key`` is
    ``u:<user_id>`` for signed-in users and ``v:<visitor_id>`` for anonymous
    sessions; it is NULL when no identity is known, and NULLs never collide
    in the unique constraint.
    """
    __tablename__ = "popularity_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    visitor_id: Mapped[Optional[str]] = mapped_column(String(128))
    identity_key: Mapped[Optional[str]] = mapped_column(String(200))
    event_type: Mapped[EventType] = mapped_column(
        SQLEnum(EventType, name="popularity_event_type", values_callable=_enum_values),
        nullable=False,
    )

    # UTC wall clock, stored naive
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    event_day: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "item_id", "event_type", "event_day", "identity_key",
            name="uq_popularity_events_dedup",
        ),
        Index("ix_popularity_events_day", "event_day"),
        Index("ix_popularity_events_item_day", "item_id", "event_day"),
    )


# =============================================================================
# AGGREGATES
# =============================================================================

class DailyAggregate(Base):
    """
    Daily Popularity Aggregate

    Grain: one row per item per UTC day. Rewritten with absolute values
    on every aggregation run.
    """
    __tablename__ = "gear_popularity_daily"

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wishlist_adds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    owner_adds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    compare_adds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_submits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    weights_version: Mapped[str] = mapped_column(String(20), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gear_popularity_daily_item", "item_id"),
    )


class LifetimeAggregate(Base):
    """
    Lifetime Popularity Aggregate

    Recomputed from daily rows. Values only ever move up.
    """
    __tablename__ = "gear_popularity_lifetime"

    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    views_lifetime: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score_lifetime: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )


class WindowAggregate(Base):
    """
    Trailing Window Aggregate

    Sum of daily rows over the inclusive range
    ``[as_of_date - days + 1, as_of_date]``.
    """
    __tablename__ = "gear_popularity_windows"

    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timeframe: Mapped[Timeframe] = mapped_column(
        SQLEnum(Timeframe, name="popularity_timeframe", values_callable=_enum_values),
        primary_key=True,
    )
    as_of_date: Mapped[date] = mapped_column(Date, primary_key=True)

    views_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    wishlist_adds_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    owner_adds_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    compare_adds_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_submits_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score_sum: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gear_popularity_windows_lookup", "timeframe", "as_of_date"),
    )


class ComparePairCount(Base):
    """
    Compare Pair Counter

    Pairs are stored canonically with ``item_a_id < item_b_id``.
    """
    __tablename__ = "compare_pair_counts"

    item_a_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_b_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    pair_key: Mapped[str] = mapped_column(String(140), unique=True, nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_compare_pair_counts_count", "count"),
    )


# =============================================================================
# OPERATIONS
# =============================================================================

class RollupRun(Base):
    """
    Rollup Run History

    One row per daily rollup execution, written on success and failure.
    """
    __tablename__ = "rollup_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    corrected_date: Mapped[Optional[date]] = mapped_column(Date)

    daily_rows: Mapped[int] = mapped_column(Integer, default=0)
    corrected_rows: Mapped[int] = mapped_column(Integer, default=0)
    windows_rows: Mapped[int] = mapped_column(Integer, default=0)
    lifetime_rows: Mapped[int] = mapped_column(Integer, default=0)
    anomalies: Mapped[int] = mapped_column(Integer, default=0)
    failures: Mapped[int] = mapped_column(Integer, default=0)

    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_rollup_runs_created", "created_at"),
    )
