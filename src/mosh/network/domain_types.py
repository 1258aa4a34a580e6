"""Core dataclasses shared across the network package."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

WALK = "walk"
BIKE = "bike"
TRANSIT = "transit"
MODES = (WALK, BIKE, TRANSIT)

BIKING_NETWORK = "biking"
TRANSIT_NETWORK = "transit"
NETWORK_TYPES = (BIKING_NETWORK, TRANSIT_NETWORK)


@dataclass(frozen=True)
class Stop:
    """Routable node snapped from GeoJSON vertices or Point features."""

    index: int
    id: str
    lon: float
    lat: float
    name: Optional[str] = None

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.lon, self.lat)


@dataclass(frozen=True)
class StreetEdge:
    """Unscheduled directed edge (bike lane segment)."""

    from_stop: int
    to_stop: int
    distance_m: float
    mode: str
    line_id: str


@dataclass(frozen=True)
class Transfer:
    """Walking connection between two distinct stops."""

    from_stop: int
    to_stop: int
    distance_m: float


@dataclass(frozen=True)
class TransitTrip:
    """One vehicle run along a route pattern; times are service-day seconds."""

    trip_id: str
    arrivals: Tuple[int, ...]
    departures: Tuple[int, ...]


@dataclass(frozen=True)
class TransitRoute:
    """Ordered stop pattern with its trips sorted by first departure."""

    route_id: str
    name: Optional[str]
    stops: Tuple[int, ...]
    cumulative_m: Tuple[float, ...]
    trips: Tuple[TransitTrip, ...]
    vehicle_type: Optional[str] = None
    # departures_by_position[i] lists (departure, trip_idx) sorted for boarding lookups
    departures_by_position: Tuple[Tuple[Tuple[int, int], ...], ...] = field(
        default=(), repr=False, compare=False
    )

    def distance_between(self, board_pos: int, alight_pos: int) -> float:
        return self.cumulative_m[alight_pos] - self.cumulative_m[board_pos]

