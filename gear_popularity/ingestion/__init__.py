"""
Ingestion Module - event write path
"""
from .event_recorder import EventRecorder, RecordResult, SkipReason
from .compare_pairs import ComparePairCounter
from .events import GearEvent, GearEventPayload, parse_event

__all__ = [
    "EventRecorder",
    "RecordResult",
    "SkipReason",
    "ComparePairCounter",
    "GearEvent",
    "GearEventPayload",
    "parse_event",
]
