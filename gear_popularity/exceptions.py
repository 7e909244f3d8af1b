"""
Domain Exceptions
"""


class PopularityError(Exception):
    """Base class for popularity engine errors"""


class InvalidTimeframeError(PopularityError, ValueError):
    """Raised when a timeframe outside the supported set is requested"""

    def __init__(self, timeframe: str):
        super().__init__(f"Unsupported timeframe: {timeframe!r}")
        self.timeframe = timeframe


class UnknownEventTypeError(PopularityError, ValueError):
    """Raised when an event type outside the closed enumeration is used"""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type!r}")
        self.event_type = event_type
