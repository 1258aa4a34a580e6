"""
Round-based multi-criteria RAPTOR over a :class:`~mosh.network.NetworkGraph`.

Round 0 seeds every stop within walking distance of the origin and relaxes the
street layer (walking transfers and bike edges). Round ``k`` rides exactly one
more transit vehicle: routes serving stops improved in round ``k-1`` are
scanned, then the street layer is relaxed again from the stops the scan
improved. A stop is only improved when the new arrival beats its best arrival
over all earlier rounds, so every round label is Pareto-optimal on
(arrival time, transit legs).

The router is pure: it reads the immutable graph and keeps all state local to
one ``route`` call.
"""

from __future__ import annotations

import heapq
import logging
from bisect import bisect_left
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from mosh.network.domain_types import BIKE, TRANSIT, WALK
from mosh.network.geodesy import haversine_m
from mosh.network.graph_builder import NetworkGraph

from .parameters import SimulationParameters
from .trip_result import (
    BASELINE,
    Itinerary,
    Location,
    RouteLeg,
    TripResult,
    TripStatus,
    failed_trip,
    legs_geometry,
)

logger = logging.getLogger(__name__)

UNREACHED = 2**62

NO_PATH = "no path within constraints"
ORIGIN_TOO_FAR = "origin is farther than max_walking_distance from the network"
DESTINATION_TOO_FAR = "destination is farther than max_walking_distance from the network"

_ACCESS = "access"
_STREET = "street"
_TRANSIT = "transit"


class _Label(NamedTuple):
    kind: str
    depart: int
    arrive: int
    distance_m: float
    from_stop: int = -1
    mode: str = WALK
    line_id: Optional[str] = None
    route_idx: int = -1
    trip_idx: int = -1
    board_pos: int = -1
    alight_pos: int = -1


@dataclass(frozen=True)
class _Arrival:
    """Best destination arrival reached in one round."""

    round: int
    arrival: int
    egress_stop: Optional[int]
    egress_distance: float


class RaptorRouter:
    """Earliest-arrival router honouring ``max_transfers`` and walking limits."""

    def __init__(self, graph: NetworkGraph):
        self.graph = graph

    def route(
        self,
        origin: Location,
        destination: Location,
        departure_time: int,
        params: SimulationParameters | None = None,
        *,
        trip_id: str | None = None,
        scenario: str = BASELINE,
        demand: float = 1.0,
    ) -> TripResult:
        params = params or SimulationParameters()
        departure_time = int(departure_time)
        trip_id = trip_id or f"{origin.id}->{destination.id}@{departure_time}"

        def _failed(message: str) -> TripResult:
            logger.debug("Trip %s failed: %s", trip_id, message)
            return failed_trip(
                trip_id,
                origin.id,
                destination.id,
                departure_time,
                message,
                scenario=scenario,
                demand=demand,
            )

        max_walk = params.max_walking_distance
        direct_m = haversine_m(origin.coordinates, destination.coordinates)
        can_walk_direct = direct_m <= max_walk
        access = self.graph.locator.within(origin.coordinates, max_walk)
        egress = self.graph.locator.within(destination.coordinates, max_walk)
        if not can_walk_direct:
            if not access:
                return _failed(ORIGIN_TOO_FAR)
            if not egress:
                return _failed(DESTINATION_TOO_FAR)

        search = _RoundSearch(self.graph, params)
        search.seed(departure_time, access)
        arrivals = self._destination_arrivals(search, egress, params, departure_time, direct_m, can_walk_direct)
        if not arrivals:
            return _failed(NO_PATH)

        itineraries = [
            self._itinerary(search, item, origin, destination, departure_time)
            for item in arrivals
        ]
        chosen = min(itineraries, key=lambda it: (it.arrival_time, it.transfers))
        alternatives = tuple(it for it in itineraries if it is not chosen)

        status = TripStatus.SUCCESS
        error = None
        if params.max_trip_duration is not None and chosen.total_duration > params.max_trip_duration:
            status = TripStatus.PARTIAL
            error = (
                f"itinerary takes {chosen.total_duration}s, above max_trip_duration "
                f"{params.max_trip_duration}s"
            )
        return TripResult(
            trip_id=trip_id,
            origin_id=origin.id,
            destination_id=destination.id,
            departure_time=departure_time,
            status=status,
            scenario=scenario,
            route=chosen,
            alternatives=alternatives,
            error=error,
            demand=demand,
        )

    # ---------------------------------------------------------------- rounds
    def _destination_arrivals(
        self,
        search: "_RoundSearch",
        egress: Sequence[Tuple[int, float]],
        params: SimulationParameters,
        departure_time: int,
        direct_m: float,
        can_walk_direct: bool,
    ) -> List[_Arrival]:
        pareto: List[_Arrival] = []
        best = UNREACHED
        k = 0
        while True:
            candidates: List[Tuple[int, int, int, float]] = []
            if k == 0 and can_walk_direct:
                candidates.append((departure_time + params.walk_seconds(direct_m), -1, -1, direct_m))
            tau = search.tau[k]
            for stop_idx, distance in egress:
                if tau[stop_idx] >= UNREACHED:
                    continue
                candidates.append((tau[stop_idx] + params.walk_seconds(distance), 0, stop_idx, distance))
            if candidates:
                arrival, _, stop_idx, distance = min(candidates)
                if arrival < best:
                    best = arrival
                    pareto.append(
                        _Arrival(k, arrival, stop_idx if stop_idx >= 0 else None, distance)
                    )
            if k >= params.max_rounds or not search.marked:
                break
            k += 1
            search.run_round(k)
            if not search.marked:
                break
        return pareto

    # ---------------------------------------------------------------- legs
    def _itinerary(
        self,
        search: "_RoundSearch",
        item: _Arrival,
        origin: Location,
        destination: Location,
        departure_time: int,
    ) -> Itinerary:
        stops = self.graph.stops
        if item.egress_stop is None:
            legs = []
            if item.egress_distance > 0:
                legs.append(
                    RouteLeg(
                        mode=WALK,
                        departure_time=departure_time,
                        arrival_time=item.arrival,
                        distance_m=item.egress_distance,
                        geometry=legs_geometry([origin.coordinates, destination.coordinates]),
                    )
                )
            return Itinerary(departure_time, item.arrival, 0, tuple(legs))

        reversed_legs: List[RouteLeg] = []
        egress_stop = stops[item.egress_stop]
        if item.egress_distance > 0:
            reversed_legs.append(
                RouteLeg(
                    mode=WALK,
                    departure_time=search.tau[item.round][item.egress_stop],
                    arrival_time=item.arrival,
                    distance_m=item.egress_distance,
                    from_stop_id=egress_stop.id,
                    geometry=legs_geometry([egress_stop.coordinates, destination.coordinates]),
                )
            )

        stop_idx = item.egress_stop
        round_idx = item.round
        while True:
            label_round = search.label_round(stop_idx, round_idx)
            label = search.labels[label_round][stop_idx]
            stop = stops[stop_idx]
            if label.kind == _ACCESS:
                if label.distance_m > 0:
                    reversed_legs.append(
                        RouteLeg(
                            mode=WALK,
                            departure_time=label.depart,
                            arrival_time=label.arrive,
                            distance_m=label.distance_m,
                            to_stop_id=stop.id,
                            geometry=legs_geometry([origin.coordinates, stop.coordinates]),
                        )
                    )
                break
            if label.kind == _STREET:
                source = stops[label.from_stop]
                reversed_legs.append(
                    RouteLeg(
                        mode=label.mode,
                        departure_time=label.depart,
                        arrival_time=label.arrive,
                        distance_m=label.distance_m,
                        from_stop_id=source.id,
                        to_stop_id=stop.id,
                        line_id=label.line_id,
                        stop_ids=(source.id, stop.id),
                        geometry=legs_geometry([source.coordinates, stop.coordinates]),
                    )
                )
                stop_idx = label.from_stop
                round_idx = label_round
                continue
            route = self.graph.routes[label.route_idx]
            trip = route.trips[label.trip_idx]
            ride = route.stops[label.board_pos : label.alight_pos + 1]
            reversed_legs.append(
                RouteLeg(
                    mode=TRANSIT,
                    departure_time=trip.departures[label.board_pos],
                    arrival_time=trip.arrivals[label.alight_pos],
                    distance_m=route.distance_between(label.board_pos, label.alight_pos),
                    from_stop_id=stops[ride[0]].id,
                    to_stop_id=stop.id,
                    route_id=route.route_id,
                    route_name=route.name,
                    trip_id=trip.trip_id,
                    stop_ids=tuple(stops[s].id for s in ride),
                    geometry=legs_geometry([stops[s].coordinates for s in ride]),
                )
            )
            stop_idx = ride[0]
            round_idx = label_round - 1

        legs = _merge_street_legs(list(reversed(reversed_legs)))
        transit_legs = sum(1 for leg in legs if leg.mode == TRANSIT)
        return Itinerary(
            departure_time=departure_time,
            arrival_time=item.arrival,
            transfers=max(transit_legs - 1, 0),
            legs=tuple(legs),
        )


class _RoundSearch:
    """Per-query RAPTOR state: round arrival arrays, best arrivals and labels."""

    def __init__(self, graph: NetworkGraph, params: SimulationParameters):
        self.graph = graph
        self.params = params
        n = len(graph.stops)
        self.best: List[int] = [UNREACHED] * n
        self.tau: List[List[int]] = []
        self.labels: List[Dict[int, _Label]] = []
        self.marked: Set[int] = set()

    def seed(self, departure_time: int, access: Sequence[Tuple[int, float]]) -> None:
        tau = [UNREACHED] * len(self.graph.stops)
        labels: Dict[int, _Label] = {}
        self.tau.append(tau)
        self.labels.append(labels)
        marked: Set[int] = set()
        for stop_idx, distance in access:
            arrival = departure_time + self.params.walk_seconds(distance)
            if arrival < tau[stop_idx]:
                tau[stop_idx] = arrival
                self.best[stop_idx] = arrival
                labels[stop_idx] = _Label(_ACCESS, departure_time, arrival, distance)
                marked.add(stop_idx)
        marked |= self._relax_street(0, marked)
        self.marked = marked

    def run_round(self, k: int) -> None:
        previous = self.tau[k - 1]
        tau = list(previous)
        labels: Dict[int, _Label] = {}
        self.tau.append(tau)
        self.labels.append(labels)

        queue: Dict[int, int] = {}
        for stop_idx in self.marked:
            for route_idx, pos in self.graph.routes_by_stop.get(stop_idx, ()):
                if route_idx not in queue or pos < queue[route_idx]:
                    queue[route_idx] = pos

        marked: Set[int] = set()
        for route_idx in sorted(queue):
            route = self.graph.routes[route_idx]
            trip_idx = -1
            board_pos = -1
            for pos in range(queue[route_idx], len(route.stops)):
                stop_idx = route.stops[pos]
                if trip_idx >= 0:
                    arrival = route.trips[trip_idx].arrivals[pos]
                    if arrival < tau[stop_idx] and arrival < self.best[stop_idx]:
                        tau[stop_idx] = arrival
                        self.best[stop_idx] = arrival
                        labels[stop_idx] = _Label(
                            _TRANSIT,
                            route.trips[trip_idx].departures[board_pos],
                            arrival,
                            route.distance_between(board_pos, pos),
                            route_idx=route_idx,
                            trip_idx=trip_idx,
                            board_pos=board_pos,
                            alight_pos=pos,
                        )
                        marked.add(stop_idx)
                ready = previous[stop_idx]
                if ready >= UNREACHED or pos == len(route.stops) - 1:
                    continue
                if trip_idx >= 0 and ready > route.trips[trip_idx].departures[pos]:
                    continue
                candidate = _earliest_trip(route.departures_by_position[pos], ready)
                if candidate is None:
                    continue
                if trip_idx < 0 or candidate[0] < route.trips[trip_idx].departures[pos]:
                    trip_idx = candidate[1]
                    board_pos = pos

        marked |= self._relax_street(k, marked)
        self.marked = marked

    def label_round(self, stop_idx: int, round_idx: int) -> int:
        for j in range(round_idx, -1, -1):
            if stop_idx in self.labels[j]:
                return j
        raise LookupError(f"stop {stop_idx} has no label up to round {round_idx}")

    def _relax_street(self, k: int, sources: Set[int]) -> Set[int]:
        """Bounded Dijkstra over walking transfers and bike edges within round ``k``."""
        tau = self.tau[k]
        labels = self.labels[k]
        graph = self.graph
        params = self.params
        heap = [(tau[s], s) for s in sorted(sources)]
        heapq.heapify(heap)
        improved: Set[int] = set()
        while heap:
            time_s, stop_idx = heapq.heappop(heap)
            if time_s > tau[stop_idx]:
                continue
            moves: List[Tuple[int, int, float, str, Optional[str]]] = []
            for transfer in graph.transfers_out.get(stop_idx, ()):
                if transfer.distance_m > params.max_walking_distance:
                    continue
                moves.append(
                    (transfer.to_stop, time_s + params.walk_seconds(transfer.distance_m), transfer.distance_m, WALK, None)
                )
            for edge in graph.street_out.get(stop_idx, ()):
                seconds = params.bike_seconds(edge.distance_m) if edge.mode == BIKE else params.walk_seconds(edge.distance_m)
                moves.append((edge.to_stop, time_s + seconds, edge.distance_m, edge.mode, edge.line_id))
            for target, arrival, distance, mode, line_id in moves:
                if arrival < tau[target] and arrival < self.best[target]:
                    tau[target] = arrival
                    self.best[target] = arrival
                    labels[target] = _Label(
                        _STREET, time_s, arrival, distance, from_stop=stop_idx, mode=mode, line_id=line_id
                    )
                    improved.add(target)
                    heapq.heappush(heap, (arrival, target))
        return improved


def _earliest_trip(departures: Sequence[Tuple[int, int]], ready: int) -> Optional[Tuple[int, int]]:
    idx = bisect_left(departures, (ready, -1))
    if idx >= len(departures):
        return None
    return departures[idx]


def _merge_street_legs(legs: List[RouteLeg]) -> List[RouteLeg]:
    """Collapse consecutive walk/bike legs sharing a mode and line into one leg."""
    merged: List[RouteLeg] = []
    for leg in legs:
        prev = merged[-1] if merged else None
        if (
            prev is not None
            and leg.mode != TRANSIT
            and prev.mode == leg.mode
            and prev.line_id == leg.line_id
        ):
            stop_ids = prev.stop_ids + tuple(s for s in leg.stop_ids if not prev.stop_ids or s != prev.stop_ids[-1])
            merged[-1] = RouteLeg(
                mode=prev.mode,
                departure_time=prev.departure_time,
                arrival_time=leg.arrival_time,
                distance_m=prev.distance_m + leg.distance_m,
                from_stop_id=prev.from_stop_id,
                to_stop_id=leg.to_stop_id,
                line_id=prev.line_id,
                stop_ids=stop_ids,
                geometry=legs_geometry(prev.geometry + leg.geometry),
            )
            continue
        merged.append(leg)
    return merged


def route(
    graph: NetworkGraph,
    origin: Location,
    destination: Location,
    departure_time: int,
    params: SimulationParameters | None = None,
    **kwargs,
) -> TripResult:
    return RaptorRouter(graph).route(origin, destination, departure_time, params, **kwargs)


__all__ = ["DESTINATION_TOO_FAR", "NO_PATH", "ORIGIN_TOO_FAR", "RaptorRouter", "route"]
