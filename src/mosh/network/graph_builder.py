"""Turn biking-lane or transit-line GeoJSON into an immutable routable graph.

Biking networks
---------------
Every LineString (or MultiLineString part) is split at its vertices. Vertices
are snapped onto stop nodes (deduplicated within ``snap_tolerance_deg``) and
each consecutive pair becomes a pair of ``bike`` edges weighted by haversine
length; a truthy ``oneway`` property keeps only the digitised direction.

Transit networks
----------------
Every LineString is a route pattern whose vertices are stops. The timetable is
read from the feature properties, in order of precedence:

``schedule``
    List of trips. A trip is a list of per-vertex times (or a mapping with
    ``trip_id`` and ``times``); a time is either a single value or an
    ``[arrival, departure]`` pair. Values are seconds or ``HH:MM[:SS]``.
``departures``
    Departure times from the first stop; run times derive from the vehicle
    speed (``speed_kmh`` property, else the default for the ``type``).
``frequency`` / ``headway``
    Headway in minutes over the service span (``service_start`` /
    ``service_end`` properties or the builder defaults), as in the seed data
    ``{"route": "Line 1", "type": "subway", "frequency": 5}``.

Point features name the stop at their location (``stop_id``/``id`` and
``name`` properties).

Failure modes
-------------
- payload that is not a FeatureCollection: :class:`MalformedGeometry` (fatal)
- unusable feature geometry: recorded issue, feature skipped (fatal in strict mode)
- out-of-order timetable: :class:`MalformedSchedule` recorded, route skipped
- zero usable edges: :class:`EmptyNetwork` (fatal)
- several connected components: :class:`DisconnectedNetwork` warning
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from mosh.clock import SECONDS_PER_DAY, parse_time_of_day
from mosh.errors import DisconnectedNetwork, EmptyNetwork, MalformedGeometry, MalformedSchedule

from .domain_types import (
    BIKE,
    BIKING_NETWORK,
    NETWORK_TYPES,
    Stop,
    StreetEdge,
    Transfer,
    TransitRoute,
    TransitTrip,
)
from .geodesy import Coordinate, haversine_m
from .geojson_source import features_dataframe
from .stop_locator import StopLocator

logger = logging.getLogger(__name__)

DEFAULT_TRANSIT_SPEED_KMH: Dict[str, float] = {
    "subway": 35.0,
    "metro": 35.0,
    "rail": 50.0,
    "train": 50.0,
    "tram": 20.0,
    "light_rail": 25.0,
    "bus": 18.0,
    "ferry": 20.0,
}


@dataclass(frozen=True)
class GraphBuildOptions:
    snap_tolerance_deg: float = 1e-5
    transfer_radius_m: float = 400.0
    default_transit_speed_kmh: float = 25.0
    transit_speed_kmh: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_TRANSIT_SPEED_KMH)
    )
    service_start: int = 5 * 3600
    service_end: int = SECONDS_PER_DAY
    dwell_seconds: int = 0
    strict: bool = False

    def __post_init__(self) -> None:
        if self.snap_tolerance_deg <= 0:
            raise ValueError("snap_tolerance_deg must be positive")
        if self.transfer_radius_m < 0:
            raise ValueError("transfer_radius_m must be non-negative")
        if self.default_transit_speed_kmh <= 0:
            raise ValueError("default_transit_speed_kmh must be positive")
        if self.service_end <= self.service_start:
            raise ValueError("service_end must be after service_start")


@dataclass(frozen=True)
class BuildIssue:
    kind: str
    message: str
    feature_index: Optional[int] = None
    route_id: Optional[str] = None


@dataclass
class BuildReport:
    """Bookkeeping for a single graph build."""

    network_type: str
    issues: List[BuildIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped_routes: List[str] = field(default_factory=list)
    feature_count: int = 0
    stop_count: int = 0
    edge_count: int = 0
    component_count: int = 0

    @property
    def is_connected(self) -> bool:
        return self.component_count <= 1


@dataclass(frozen=True)
class NetworkGraph:
    """Read-only routable graph. Safe to share between threads and forked workers."""

    network_type: str
    stops: Tuple[Stop, ...]
    street_edges: Tuple[StreetEdge, ...]
    routes: Tuple[TransitRoute, ...]
    transfers: Tuple[Transfer, ...]
    network_id: Optional[str] = None
    version: Optional[int] = None
    street_out: Dict[int, Tuple[StreetEdge, ...]] = field(init=False, repr=False, compare=False)
    transfers_out: Dict[int, Tuple[Transfer, ...]] = field(init=False, repr=False, compare=False)
    routes_by_stop: Dict[int, Tuple[Tuple[int, int], ...]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        street_out: Dict[int, List[StreetEdge]] = {}
        for edge in self.street_edges:
            street_out.setdefault(edge.from_stop, []).append(edge)
        transfers_out: Dict[int, List[Transfer]] = {}
        for transfer in self.transfers:
            transfers_out.setdefault(transfer.from_stop, []).append(transfer)
        routes_by_stop: Dict[int, List[Tuple[int, int]]] = {}
        for route_idx, route in enumerate(self.routes):
            for pos, stop_idx in enumerate(route.stops):
                routes_by_stop.setdefault(stop_idx, []).append((route_idx, pos))
        object.__setattr__(self, "street_out", {k: tuple(v) for k, v in street_out.items()})
        object.__setattr__(self, "transfers_out", {k: tuple(v) for k, v in transfers_out.items()})
        object.__setattr__(
            self, "routes_by_stop", {k: tuple(sorted(v)) for k, v in routes_by_stop.items()}
        )
        object.__setattr__(self, "_locator", None)

    # ------------------------------------------------------------------ queries
    @property
    def locator(self) -> StopLocator:
        locator = self.__dict__.get("_locator")
        if locator is None:
            locator = StopLocator(self.stops)
            object.__setattr__(self, "_locator", locator)
        return locator

    @property
    def route_ids(self) -> frozenset:
        return frozenset(route.route_id for route in self.routes)

    @property
    def line_ids(self) -> frozenset:
        return frozenset(edge.line_id for edge in self.street_edges)

    @property
    def transit_edge_count(self) -> int:
        return sum((len(route.stops) - 1) * len(route.trips) for route in self.routes)

    @property
    def edge_count(self) -> int:
        return len(self.street_edges) + self.transit_edge_count

    def __getstate__(self):
        state = dict(self.__dict__)
        state["_locator"] = None
        return state

    def __setstate__(self, state) -> None:
        for key, value in state.items():
            object.__setattr__(self, key, value)


@dataclass(frozen=True)
class NetworkBuildResult:
    graph: NetworkGraph
    report: BuildReport


class _StopRegistry:
    """Grid-hash deduplication of vertices into stop nodes."""

    def __init__(self, tolerance: float):
        self.tolerance = tolerance
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self.coords: List[Coordinate] = []
        self.ids: List[Optional[str]] = []
        self.names: List[Optional[str]] = []

    def _cell(self, lon: float, lat: float) -> Tuple[int, int]:
        return (math.floor(lon / self.tolerance), math.floor(lat / self.tolerance))

    def find(self, lon: float, lat: float) -> Optional[int]:
        cx, cy = self._cell(lon, lat)
        best: Optional[int] = None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for idx in self._cells.get((cx + dx, cy + dy), ()):
                    slon, slat = self.coords[idx]
                    if abs(slon - lon) <= self.tolerance and abs(slat - lat) <= self.tolerance:
                        if best is None or idx < best:
                            best = idx
        return best

    def add(self, lon: float, lat: float) -> int:
        existing = self.find(lon, lat)
        if existing is not None:
            return existing
        idx = len(self.coords)
        self.coords.append((lon, lat))
        self.ids.append(None)
        self.names.append(None)
        self._cells.setdefault(self._cell(lon, lat), []).append(idx)
        return idx

    def build_stops(self) -> Tuple[Stop, ...]:
        stops = []
        for idx, (lon, lat) in enumerate(self.coords):
            stop_id = self.ids[idx] or f"stop-{idx}"
            stops.append(Stop(index=idx, id=stop_id, lon=lon, lat=lat, name=self.names[idx]))
        return tuple(stops)


class NetworkGraphBuilder:
    """Builds :class:`NetworkGraph` instances from GeoJSON FeatureCollections."""

    def __init__(self, options: GraphBuildOptions | None = None):
        self.options = options or GraphBuildOptions()

    def build(
        self,
        source: str | Path | Mapping[str, object],
        network_type: str,
        *,
        network_id: str | None = None,
        version: int | None = None,
    ) -> NetworkBuildResult:
        network_type = str(network_type or "").strip().lower()
        if network_type not in NETWORK_TYPES:
            raise ValueError(f"Unknown network type {network_type!r}; expected one of {NETWORK_TYPES}")

        features = features_dataframe(source)
        report = BuildReport(network_type=network_type, feature_count=len(features))
        registry = _StopRegistry(self.options.snap_tolerance_deg)
        used_stop_ids: Dict[str, int] = {}

        lines: List[Tuple[int, Optional[str], str, Mapping[str, object], List[Coordinate]]] = []
        for row in features.itertuples(index=False):
            if row.geometry is None:
                self._record_geometry_issue(report, int(row.feature_index), str(row.issue))
                continue
            if row.geometry_type == "Point":
                self._register_point(registry, used_stop_ids, row, report)
                continue
            if row.geometry_type == "MultiLineString":
                parts = list(row.geometry.geoms)
                for part_idx, part in enumerate(parts):
                    suffix = f"#{part_idx}" if len(parts) > 1 else ""
                    lines.append(
                        (int(row.feature_index), row.feature_id, suffix, row.properties, list(part.coords))
                    )
            else:
                lines.append((int(row.feature_index), row.feature_id, "", row.properties, list(row.geometry.coords)))

        street_edges: List[StreetEdge] = []
        routes: List[TransitRoute] = []
        seen_route_ids: Dict[str, int] = {}

        for feature_index, feature_id, suffix, properties, coords in lines:
            if network_type == BIKING_NETWORK:
                street_edges.extend(
                    self._bike_edges(registry, feature_index, feature_id, suffix, properties, coords)
                )
                continue
            route_id = _route_id(feature_index, feature_id, properties) + suffix
            if route_id in seen_route_ids:
                renamed = f"{route_id}~{feature_index}"
                report.warnings.append(
                    f"Duplicate route id {route_id!r} on feature {feature_index}; renamed to {renamed!r}"
                )
                route_id = renamed
            seen_route_ids[route_id] = feature_index
            try:
                route_group = self._transit_routes(registry, route_id, properties, coords)
            except MalformedSchedule as exc:
                logger.warning("Skipping transit route %s: %s", route_id, exc)
                report.issues.append(
                    BuildIssue(
                        kind=MalformedSchedule.kind,
                        message=str(exc),
                        feature_index=feature_index,
                        route_id=route_id,
                    )
                )
                report.skipped_routes.append(route_id)
                continue
            routes.extend(route_group)

        stops = registry.build_stops()
        routes.sort(key=lambda r: r.route_id)
        transfers = _build_transfers(stops, self.options.transfer_radius_m)
        graph = NetworkGraph(
            network_type=network_type,
            stops=stops,
            street_edges=tuple(street_edges),
            routes=tuple(routes),
            transfers=transfers,
            network_id=network_id,
            version=version,
        )
        report.stop_count = len(stops)
        report.edge_count = graph.edge_count
        if graph.edge_count == 0:
            raise EmptyNetwork(
                f"Network {network_id or '<unnamed>'} has no usable edges "
                f"({len(report.issues)} issues recorded)"
            )

        report.component_count = _count_components(graph)
        if report.component_count > 1:
            message = (
                f"Network {network_id or '<unnamed>'} has {report.component_count} "
                "disconnected components; routing across them will fail"
            )
            report.warnings.append(message)
            logger.warning(message)
            warnings.warn(message, DisconnectedNetwork, stacklevel=2)

        logger.info(
            "Built %s graph %s: %d stops, %d street edges, %d routes, %d transfers, %d issues",
            network_type,
            network_id or "<unnamed>",
            len(stops),
            len(street_edges),
            len(routes),
            len(transfers),
            len(report.issues),
        )
        return NetworkBuildResult(graph=graph, report=report)

    # ---------------------------------------------------------------- features
    def _record_geometry_issue(self, report: BuildReport, feature_index: int, message: str) -> None:
        if self.options.strict:
            raise MalformedGeometry(f"Feature {feature_index}: {message}")
        logger.warning("Skipping feature %d: %s", feature_index, message)
        report.issues.append(
            BuildIssue(kind=MalformedGeometry.kind, message=message, feature_index=feature_index)
        )

    def _register_point(self, registry: _StopRegistry, used_ids: Dict[str, int], row, report: BuildReport) -> None:
        point = row.geometry
        idx = registry.add(float(point.x), float(point.y))
        properties = row.properties or {}
        stop_id = properties.get("stop_id") or row.feature_id
        name = properties.get("name")
        if stop_id is not None:
            stop_id = str(stop_id)
            if stop_id in used_ids and used_ids[stop_id] != idx:
                report.warnings.append(
                    f"Stop id {stop_id!r} reused at a different location (feature {row.feature_index})"
                )
            elif registry.ids[idx] is None:
                registry.ids[idx] = stop_id
                used_ids[stop_id] = idx
        if name and registry.names[idx] is None:
            registry.names[idx] = str(name)

    def _bike_edges(
        self,
        registry: _StopRegistry,
        feature_index: int,
        feature_id: Optional[str],
        suffix: str,
        properties: Mapping[str, object],
        coords: Sequence[Coordinate],
    ) -> List[StreetEdge]:
        line_id = (feature_id or _text(properties.get("name")) or f"line-{feature_index}") + suffix
        oneway = _truthy(properties.get("oneway"))
        stop_seq = _collapse([registry.add(lon, lat) for lon, lat in coords])
        edges: List[StreetEdge] = []
        for a, b in zip(stop_seq, stop_seq[1:]):
            distance = haversine_m(registry.coords[a], registry.coords[b])
            edges.append(StreetEdge(a, b, distance, BIKE, line_id))
            if not oneway:
                edges.append(StreetEdge(b, a, distance, BIKE, line_id))
        return edges

    def _transit_routes(
        self,
        registry: _StopRegistry,
        route_id: str,
        properties: Mapping[str, object],
        coords: Sequence[Coordinate],
    ) -> List[TransitRoute]:
        raw_stops = [registry.add(lon, lat) for lon, lat in coords]
        keep = [0] + [i for i in range(1, len(raw_stops)) if raw_stops[i] != raw_stops[i - 1]]
        stops = tuple(raw_stops[i] for i in keep)
        if len(stops) < 2:
            raise MalformedSchedule(route_id, "pattern collapses to a single stop")

        cumulative = [0.0]
        for a, b in zip(stops, stops[1:]):
            cumulative.append(cumulative[-1] + haversine_m(registry.coords[a], registry.coords[b]))

        vehicle_type = _text(properties.get("type"))
        trips = self._parse_trips(route_id, properties, keep, len(raw_stops), cumulative, vehicle_type)
        if not trips:
            raise MalformedSchedule(route_id, "no trips could be derived from the feature properties")
        trips.sort(key=lambda trip: (trip.departures[0], trip.trip_id))

        name = _text(properties.get("name")) or _text(properties.get("route"))
        routes = []
        for group in _fifo_groups(trips):
            departures_by_position = []
            for pos in range(len(stops)):
                departures_by_position.append(
                    tuple(sorted((trip.departures[pos], trip_idx) for trip_idx, trip in enumerate(group)))
                )
            routes.append(
                TransitRoute(
                    route_id=route_id,
                    name=name,
                    stops=stops,
                    cumulative_m=tuple(cumulative),
                    trips=tuple(group),
                    vehicle_type=vehicle_type,
                    departures_by_position=tuple(departures_by_position),
                )
            )
        if len(routes) > 1:
            logger.debug("Route %s split into %d non-overtaking trip groups", route_id, len(routes))
        return routes

    # ---------------------------------------------------------------- timetables
    def _parse_trips(
        self,
        route_id: str,
        properties: Mapping[str, object],
        keep: Sequence[int],
        raw_len: int,
        cumulative: Sequence[float],
        vehicle_type: Optional[str],
    ) -> List[TransitTrip]:
        schedule = properties.get("schedule", properties.get("stop_times"))
        if schedule is not None:
            return _explicit_trips(route_id, schedule, keep, raw_len)

        speed_mps = self._speed_mps(properties, vehicle_type)
        departures = properties.get("departures")
        if departures is not None:
            if not isinstance(departures, list):
                raise MalformedSchedule(route_id, "'departures' must be a list")
            starts = [_schedule_time(route_id, value, "departure") for value in departures]
        else:
            headway = properties.get("frequency", properties.get("headway"))
            if headway is None:
                raise MalformedSchedule(route_id, "no schedule, departures or frequency property")
            try:
                headway_s = int(round(float(headway) * 60))
            except (TypeError, ValueError) as exc:
                raise MalformedSchedule(route_id, f"invalid frequency {headway!r}") from exc
            if headway_s <= 0:
                raise MalformedSchedule(route_id, "frequency must be positive")
            span_start = _time_property(properties, "service_start", self.options.service_start, route_id)
            span_end = _time_property(properties, "service_end", self.options.service_end, route_id)
            starts = list(range(span_start, span_end + 1, headway_s))

        run_times = [
            int(math.ceil((cumulative[i + 1] - cumulative[i]) / speed_mps))
            for i in range(len(cumulative) - 1)
        ]
        dwell = self.options.dwell_seconds
        trips = []
        for n, start in enumerate(starts):
            arrivals = [start]
            deps = [start]
            clock = start
            for hop_idx, run in enumerate(run_times):
                clock += run
                arrivals.append(clock)
                is_last = hop_idx == len(run_times) - 1
                clock += 0 if is_last else dwell
                deps.append(clock)
            trips.append(TransitTrip(f"{route_id}:{n}", tuple(arrivals), tuple(deps)))
        return trips

    def _speed_mps(self, properties: Mapping[str, object], vehicle_type: Optional[str]) -> float:
        speed = properties.get("speed_kmh", properties.get("speed"))
        if speed is not None:
            try:
                kmh = float(speed)
            except (TypeError, ValueError):
                kmh = 0.0
            if kmh > 0:
                return kmh / 3.6
        kmh = self.options.transit_speed_kmh.get(
            (vehicle_type or "").lower(), self.options.default_transit_speed_kmh
        )
        return kmh / 3.6


# ------------------------------------------------------------------ helpers
def build_network_graph(
    source: str | Path | Mapping[str, object],
    network_type: str,
    options: GraphBuildOptions | None = None,
    **kwargs,
) -> NetworkGraph:
    """Convenience wrapper returning only the graph."""
    return NetworkGraphBuilder(options).build(source, network_type, **kwargs).graph


def _explicit_trips(
    route_id: str, schedule: object, keep: Sequence[int], raw_len: int
) -> List[TransitTrip]:
    if not isinstance(schedule, list):
        raise MalformedSchedule(route_id, "'schedule' must be a list of trips")
    trips: List[TransitTrip] = []
    for n, entry in enumerate(schedule):
        trip_id = f"{route_id}:{n}"
        times = entry
        if isinstance(entry, Mapping):
            trip_id = str(entry.get("trip_id") or trip_id)
            times = entry.get("times")
        if not isinstance(times, list) or len(times) != raw_len:
            raise MalformedSchedule(
                route_id, f"trip {trip_id} must list {raw_len} times, one per vertex"
            )
        arrivals: List[int] = []
        departures: List[int] = []
        for i in keep:
            value = times[i]
            if isinstance(value, (list, tuple)):
                if len(value) != 2:
                    raise MalformedSchedule(route_id, f"trip {trip_id} has a malformed time pair")
                arr = _schedule_time(route_id, value[0])
                dep = _schedule_time(route_id, value[1])
            else:
                arr = dep = _schedule_time(route_id, value)
            arrivals.append(arr)
            departures.append(dep)
        for pos in range(len(arrivals)):
            if departures[pos] < arrivals[pos]:
                raise MalformedSchedule(route_id, f"trip {trip_id} departs before it arrives at position {pos}")
            if pos and arrivals[pos] < departures[pos - 1]:
                raise MalformedSchedule(route_id, f"trip {trip_id} has out-of-order times at position {pos}")
        trips.append(TransitTrip(trip_id, tuple(arrivals), tuple(departures)))
    return trips


def _schedule_time(route_id: str, value: object, label: str = "schedule time") -> int:
    try:
        return parse_time_of_day(value, label)
    except ValueError as exc:
        raise MalformedSchedule(route_id, str(exc)) from exc


def _fifo_groups(trips: Sequence[TransitTrip]) -> List[List[TransitTrip]]:
    """Partition trips (sorted by first departure) so no trip overtakes another within a group."""
    groups: List[List[TransitTrip]] = []
    for trip in trips:
        for group in groups:
            last = group[-1]
            if all(a >= b for a, b in zip(trip.arrivals, last.arrivals)) and all(
                a >= b for a, b in zip(trip.departures, last.departures)
            ):
                group.append(trip)
                break
        else:
            groups.append([trip])
    return groups


def _time_property(properties: Mapping[str, object], key: str, default: int, route_id: str) -> int:
    value = properties.get(key)
    if value is None:
        return default
    return _schedule_time(route_id, value)


def _build_transfers(stops: Sequence[Stop], radius_m: float) -> Tuple[Transfer, ...]:
    if radius_m <= 0 or len(stops) < 2:
        return ()
    locator = StopLocator(stops)
    transfers: List[Transfer] = []
    for stop in stops:
        for other_idx, distance in locator.within(stop.coordinates, radius_m):
            if other_idx == stop.index:
                continue
            transfers.append(Transfer(stop.index, other_idx, distance))
    return tuple(transfers)


def _count_components(graph: NetworkGraph) -> int:
    parent = list(range(len(graph.stops)))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    for edge in graph.street_edges:
        union(edge.from_stop, edge.to_stop)
    for transfer in graph.transfers:
        union(transfer.from_stop, transfer.to_stop)
    for route in graph.routes:
        for a, b in zip(route.stops, route.stops[1:]):
            union(a, b)
    return len({find(i) for i in range(len(parent))})


def _route_id(feature_index: int, feature_id: Optional[str], properties: Mapping[str, object]) -> str:
    for key in ("route_id", "routeId"):
        value = _text(properties.get(key))
        if value:
            return value
    if feature_id:
        return feature_id
    for key in ("route", "name"):
        value = _text(properties.get(key))
        if value:
            return value
    return f"route-{feature_index}"


def _collapse(sequence: Iterable[int]) -> List[int]:
    collapsed: List[int] = []
    for item in sequence:
        if not collapsed or collapsed[-1] != item:
            collapsed.append(item)
    return collapsed


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def _truthy(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


__all__ = [
    "BuildIssue",
    "BuildReport",
    "GraphBuildOptions",
    "NetworkBuildResult",
    "NetworkGraph",
    "NetworkGraphBuilder",
    "build_network_graph",
]
