"""
Popularity Event Payloads

Closed set of event shapes accepted on the write path, discriminated by
``event_type``. Anything else fails validation before reaching the log.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, RootModel, TypeAdapter

from gear_popularity.database.models import EventType


class BaseGearEvent(BaseModel):
    """Fields shared by every popularity event"""
    item_id: str = Field(min_length=1, max_length=64)
    user_id: Optional[str] = Field(default=None, max_length=64)
    visitor_id: Optional[str] = Field(default=None, max_length=128)

    @property
    def kind(self) -> EventType:
        return EventType(self.event_type)


class ViewEvent(BaseGearEvent):
    event_type: Literal["view"] = "view"


class WishlistAddEvent(BaseGearEvent):
    event_type: Literal["wishlist_add"] = "wishlist_add"


class OwnerAddEvent(BaseGearEvent):
    event_type: Literal["owner_add"] = "owner_add"


class CompareAddEvent(BaseGearEvent):
    """Item added to a comparison, optionally naming the other item"""
    event_type: Literal["compare_add"] = "compare_add"
    compared_with: Optional[str] = Field(default=None, max_length=64)


class ReviewSubmitEvent(BaseGearEvent):
    event_type: Literal["review_submit"] = "review_submit"


GearEvent = Annotated[
    Union[ViewEvent, WishlistAddEvent, OwnerAddEvent, CompareAddEvent, ReviewSubmitEvent],
    Field(discriminator="event_type"),
]

gear_event_adapter = TypeAdapter(GearEvent)


class GearEventPayload(RootModel[GearEvent]):
    """Request body carrying exactly one event"""


def parse_event(payload: dict) -> BaseGearEvent:
    """Validate a raw payload into one of the event models."""
    return gear_event_adapter.validate_python(payload)
