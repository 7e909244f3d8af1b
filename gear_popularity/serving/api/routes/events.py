"""
Event Ingestion Endpoint

Fire-and-forget from the caller's point of view: the response is always
202 and never reports a server-side failure as an error status.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
import structlog

from gear_popularity.ingestion.event_recorder import EventRecorder
from gear_popularity.ingestion.events import GearEventPayload
from gear_popularity.serving.api.dependencies import get_event_recorder

router = APIRouter()
logger = structlog.get_logger(__name__)


class EventAccepted(BaseModel):
    """Event ingestion outcome"""
    recorded: bool
    reason: Optional[str] = None


@router.post("/events", response_model=EventAccepted, status_code=202)
async def record_event(
    payload: GearEventPayload,
    user_agent: Optional[str] = Header(default=None),
    recorder: EventRecorder = Depends(get_event_recorder),
) -> EventAccepted:
    """
    Record a popularity event.

    Duplicates, crawler traffic and unknown items come back with
    ``recorded=false`` and a reason.
    """
    event = payload.root
    try:
        result = await recorder.record(event, user_agent=user_agent)
    except Exception as e:
        logger.error(
            "Event recording failed",
            item_id=event.item_id,
            event_type=event.event_type,
            error=str(e),
            exc_info=True,
        )
        return EventAccepted(recorded=False, reason="error")

    return EventAccepted(
        recorded=result.recorded,
        reason=result.reason.value if result.reason else None,
    )
