"""Immutable trip outcomes produced by the router and annotated by the aggregator."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from mosh.clock import format_time_of_day
from mosh.network.domain_types import BIKE, TRANSIT, WALK

BASELINE = "baseline"
PROPOSED = "proposed"
SCENARIOS = (BASELINE, PROPOSED)


class TripStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Location:
    """OD endpoint: an identifier plus WGS84 coordinates."""

    id: str
    lon: float
    lat: float

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.lon, self.lat)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "Location":
        if not isinstance(data, Mapping):
            raise ValueError("Locations must be mappings with 'id' and 'coordinates'")
        loc_id = data.get("id")
        coords = data.get("coordinates")
        if coords is None and "lon" in data and "lat" in data:
            coords = (data["lon"], data["lat"])
        if loc_id is None or str(loc_id).strip() == "":
            raise ValueError("Location requires an 'id'")
        if not isinstance(coords, (list, tuple)) or len(coords) < 2:
            raise ValueError(f"Location {loc_id!r} requires [lon, lat] coordinates")
        return cls(id=str(loc_id), lon=float(coords[0]), lat=float(coords[1]))


@dataclass(frozen=True)
class RouteLeg:
    mode: str
    departure_time: int
    arrival_time: int
    distance_m: float
    from_stop_id: Optional[str] = None
    to_stop_id: Optional[str] = None
    route_id: Optional[str] = None
    route_name: Optional[str] = None
    trip_id: Optional[str] = None
    line_id: Optional[str] = None
    stop_ids: Tuple[str, ...] = ()
    geometry: Tuple[Tuple[float, float], ...] = ()

    @property
    def duration(self) -> int:
        return self.arrival_time - self.departure_time

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "mode": self.mode,
            "duration": self.duration,
            "distance": round(self.distance_m, 1),
            "departureTime": format_time_of_day(self.departure_time),
            "arrivalTime": format_time_of_day(self.arrival_time),
            "fromStopId": self.from_stop_id,
            "toStopId": self.to_stop_id,
        }
        if self.route_id is not None:
            payload["routeId"] = self.route_id
            payload["routeName"] = self.route_name
            payload["tripId"] = self.trip_id
        if self.line_id is not None:
            payload["lineId"] = self.line_id
        if self.stop_ids:
            payload["stopIds"] = list(self.stop_ids)
        if self.geometry:
            payload["geometry"] = {
                "type": "LineString",
                "coordinates": [list(coord) for coord in self.geometry],
            }
        return payload


@dataclass(frozen=True)
class Itinerary:
    departure_time: int
    arrival_time: int
    transfers: int
    legs: Tuple[RouteLeg, ...]

    @property
    def total_duration(self) -> int:
        return self.arrival_time - self.departure_time

    @property
    def total_distance(self) -> float:
        return sum(leg.distance_m for leg in self.legs)

    @property
    def modes(self) -> FrozenSet[str]:
        return frozenset(leg.mode for leg in self.legs)

    @property
    def non_walk_modes(self) -> FrozenSet[str]:
        return frozenset(mode for mode in self.modes if mode != WALK)

    @property
    def route_ids(self) -> FrozenSet[str]:
        return frozenset(leg.route_id for leg in self.legs if leg.route_id is not None)

    @property
    def infrastructure_ids(self) -> FrozenSet[str]:
        """Transit route ids and bike line ids ridden by this itinerary."""
        ids = {leg.route_id for leg in self.legs if leg.route_id is not None}
        ids |= {leg.line_id for leg in self.legs if leg.line_id is not None}
        return frozenset(ids)

    @property
    def modal_category(self) -> str:
        """One of walkOnly, transitOnly, bikeOnly, multimodal."""
        modes = self.non_walk_modes
        if not modes:
            return "walkOnly"
        if len(modes) >= 2:
            return "multimodal"
        (mode,) = tuple(modes)
        if mode == TRANSIT:
            return "transitOnly"
        if mode == BIKE:
            return "bikeOnly"
        return "multimodal"

    def co2_kg(self, emission_factors: Mapping[str, float]) -> float:
        return sum(leg.distance_m / 1000.0 * float(emission_factors.get(leg.mode, 0.0)) for leg in self.legs)

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalDuration": self.total_duration,
            "totalDistance": round(self.total_distance, 1),
            "transfers": self.transfers,
            "departureTime": format_time_of_day(self.departure_time),
            "arrivalTime": format_time_of_day(self.arrival_time),
            "legs": [leg.to_dict() for leg in self.legs],
        }


@dataclass(frozen=True)
class BaselineSummary:
    total_duration: int
    total_distance: float
    transfers: int
    co2_emissions: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalDuration": self.total_duration,
            "totalDistance": round(self.total_distance, 1),
            "transfers": self.transfers,
            "co2Emissions": round(self.co2_emissions, 4),
        }


@dataclass(frozen=True)
class Improvement:
    time_saved: int
    distance_reduction: float
    co2_reduction: float
    transfers_reduction: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "timeSaved": self.time_saved,
            "distanceReduction": round(self.distance_reduction, 1),
            "co2Reduction": round(self.co2_reduction, 4),
            "transfersReduction": self.transfers_reduction,
        }


@dataclass(frozen=True)
class TripResult:
    trip_id: str
    origin_id: str
    destination_id: str
    departure_time: int
    status: TripStatus
    scenario: str = BASELINE
    route: Optional[Itinerary] = None
    alternatives: Tuple[Itinerary, ...] = ()
    baseline: Optional[BaselineSummary] = None
    improvement: Optional[Improvement] = None
    error: Optional[str] = None
    demand: float = 1.0

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.origin_id, self.destination_id, self.departure_time)

    @property
    def is_success(self) -> bool:
        return self.status == TripStatus.SUCCESS

    @property
    def has_route(self) -> bool:
        return self.route is not None and self.status != TripStatus.FAILED

    def with_comparison(
        self, baseline: Optional[BaselineSummary], improvement: Optional[Improvement]
    ) -> "TripResult":
        return replace(self, baseline=baseline, improvement=improvement)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "tripId": self.trip_id,
            "originId": self.origin_id,
            "destinationId": self.destination_id,
            "departureTime": format_time_of_day(self.departure_time),
            "scenario": self.scenario,
            "status": self.status.value,
            "demand": self.demand,
        }
        if self.route is not None:
            payload["route"] = self.route.to_dict()
        if self.alternatives:
            payload["alternatives"] = [alt.to_dict() for alt in self.alternatives]
        if self.baseline is not None:
            payload["baseline"] = self.baseline.to_dict()
        if self.improvement is not None:
            payload["improvement"] = self.improvement.to_dict()
        if self.error:
            payload["error"] = self.error
        return payload


def failed_trip(
    trip_id: str,
    origin_id: str,
    destination_id: str,
    departure_time: int,
    error: str,
    *,
    scenario: str = BASELINE,
    demand: float = 1.0,
) -> TripResult:
    return TripResult(
        trip_id=trip_id,
        origin_id=origin_id,
        destination_id=destination_id,
        departure_time=departure_time,
        status=TripStatus.FAILED,
        scenario=scenario,
        error=error,
        demand=demand,
    )


def legs_geometry(coords: Sequence[Tuple[float, float]]) -> Tuple[Tuple[float, float], ...]:
    """Drop consecutive duplicate points so leg geometries stay valid LineStrings."""
    cleaned: List[Tuple[float, float]] = []
    for coord in coords:
        point = (float(coord[0]), float(coord[1]))
        if not cleaned or cleaned[-1] != point:
            cleaned.append(point)
    return tuple(cleaned)


__all__ = [
    "BASELINE",
    "BaselineSummary",
    "Improvement",
    "Itinerary",
    "Location",
    "PROPOSED",
    "RouteLeg",
    "SCENARIOS",
    "TripResult",
    "TripStatus",
    "failed_trip",
    "legs_geometry",
]
