"""
UTC clock helpers

Timestamps are stored as naive UTC; day boundaries are UTC days.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now(now: Optional[datetime] = None) -> datetime:
    """Return ``now`` (or the current time) as a naive UTC datetime."""
    if now is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def utc_today(now: Optional[datetime] = None) -> date:
    """Return the UTC calendar day for ``now``."""
    return utc_now(now).date()
