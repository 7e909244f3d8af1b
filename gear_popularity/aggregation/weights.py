"""
Popularity Weight Table

A single declared, versioned mapping from event type to score weight.
The daily aggregator stamps ``version`` on every row it writes so that
scores computed under different tables can be told apart.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from gear_popularity.config import get_settings
from gear_popularity.database.models import EventType
from gear_popularity.exceptions import UnknownEventTypeError


@dataclass(frozen=True)
class WeightTable:
    """Versioned event type weights"""
    version: str
    weights: Dict[EventType, float] = field(default_factory=dict)

    def __post_init__(self):
        missing = [t.value for t in EventType if t not in self.weights]
        if missing:
            raise ValueError(f"Weight table {self.version} is missing weights for: {missing}")

    @classmethod
    def from_mapping(cls, version: str, weights: Mapping[str, float]) -> "WeightTable":
        """Build a table from string keys, rejecting unknown event types."""
        parsed: Dict[EventType, float] = {}
        for name, weight in weights.items():
            try:
                parsed[EventType(name)] = float(weight)
            except ValueError:
                raise UnknownEventTypeError(name) from None
        return cls(version=version, weights=parsed)

    def weight(self, event_type: EventType) -> float:
        return self.weights[EventType(event_type)]

    def score(self, counts: Mapping[EventType, int]) -> float:
        """Weighted sum of per-type counts."""
        return float(sum(self.weight(t) * n for t, n in counts.items()))


def default_weights(settings=None) -> WeightTable:
    """Weight table declared in settings."""
    popularity = (settings or get_settings()).popularity
    return WeightTable.from_mapping(popularity.weights_version, popularity.weights)


def resolve_weights(weights: Optional[WeightTable]) -> WeightTable:
    return weights if weights is not None else default_weights()
