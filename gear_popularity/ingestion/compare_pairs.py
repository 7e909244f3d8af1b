"""
Compare Pair Counter

Counts how often two catalog items are compared against each other.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from gear_popularity.database.connection import SessionContextFactory, dialect_insert, get_db
from gear_popularity.database.models import ComparePairCount, GearItem

logger = structlog.get_logger(__name__)


@dataclass
class ComparePair:
    """A compared pair with display fields"""
    item_a_id: str
    item_a_slug: str
    item_a_name: str
    item_b_id: str
    item_b_slug: str
    item_b_name: str
    count: int


def canonical_pair(item_a: str, item_b: str) -> Optional[Tuple[str, str]]:
    """Order a pair by id; self-comparisons have no pair."""
    if not item_a or not item_b or item_a == item_b:
        return None
    first, second = sorted((item_a, item_b))
    return first, second


class ComparePairCounter:
    """Atomic upsert-increment over ``compare_pair_counts``"""

    def __init__(self, db: SessionContextFactory = get_db):
        self._db = db

    async def increment(self, item_a: str, item_b: str) -> bool:
        """
        Add one to the counter for the pair.

        Returns:
            False when the pair is degenerate (same item twice)
        """
        pair = canonical_pair(item_a, item_b)
        if pair is None:
            return False

        first, second = pair
        async with self._db() as db:
            stmt = dialect_insert(db, ComparePairCount).values(
                item_a_id=first,
                item_b_id=second,
                pair_key=f"{first}|{second}",
                count=1,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["item_a_id", "item_b_id"],
                set_={
                    "count": ComparePairCount.count + 1,
                    "updated_at": func.now(),
                },
            )
            await db.execute(stmt)

        logger.debug("Compare pair incremented", item_a=first, item_b=second)
        return True

    async def top_pairs(self, limit: int = 20) -> List[ComparePair]:
        """Most compared pairs, highest count first."""
        item_a = aliased(GearItem)
        item_b = aliased(GearItem)

        async with self._db() as db:
            result = await db.execute(
                select(
                    ComparePairCount.item_a_id,
                    item_a.slug,
                    item_a.name,
                    ComparePairCount.item_b_id,
                    item_b.slug,
                    item_b.name,
                    ComparePairCount.count,
                )
                .join(item_a, item_a.id == ComparePairCount.item_a_id)
                .join(item_b, item_b.id == ComparePairCount.item_b_id)
                .order_by(ComparePairCount.count.desc(), ComparePairCount.pair_key)
                .limit(limit)
            )
            rows = result.all()

        return [ComparePair(*row) for row in rows]
