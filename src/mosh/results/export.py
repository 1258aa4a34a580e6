"""Tabular and JSON exports shaped like the stored simulation result document."""

from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import pandas as pd

from mosh.clock import format_time_of_day
from mosh.routing.trip_result import Location, TripResult

from .aggregator import AggregateStatistics

logger = logging.getLogger(__name__)

TRIP_COLUMNS = [
    "trip_id",
    "scenario",
    "origin_id",
    "destination_id",
    "departure_time",
    "status",
    "total_duration",
    "total_distance",
    "transfers",
    "modes",
    "route_ids",
    "time_saved",
    "co2_reduction",
    "demand",
    "error",
]


def trips_to_dataframe(trips: Iterable[TripResult]) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for trip in trips:
        route = trip.route
        rows.append(
            {
                "trip_id": trip.trip_id,
                "scenario": trip.scenario,
                "origin_id": trip.origin_id,
                "destination_id": trip.destination_id,
                "departure_time": format_time_of_day(trip.departure_time),
                "status": trip.status.value,
                "total_duration": route.total_duration if route else None,
                "total_distance": round(route.total_distance, 1) if route else None,
                "transfers": route.transfers if route else None,
                "modes": "+".join(sorted(route.modes)) if route else "",
                "route_ids": "|".join(sorted(route.route_ids)) if route else "",
                "time_saved": trip.improvement.time_saved if trip.improvement else None,
                "co2_reduction": round(trip.improvement.co2_reduction, 4) if trip.improvement else None,
                "demand": trip.demand,
                "error": trip.error or "",
            }
        )
    return pd.DataFrame(rows, columns=TRIP_COLUMNS)


def write_trips_csv(trips: Iterable[TripResult], path: str | Path) -> Path:
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    frame = trips_to_dataframe(trips)
    frame.to_csv(dest, index=False)
    logger.info("Wrote %d trips to %s", len(frame), dest)
    return dest


def corridor_usage(trips: Iterable[TripResult]) -> Dict[str, object]:
    """FeatureCollection of ridden transit corridors with the number of trips using each."""
    counts: Counter = Counter()
    geometries: Dict[Tuple[str, Tuple[str, ...]], Sequence[Tuple[float, float]]] = {}
    for trip in trips:
        if not trip.has_route:
            continue
        for leg in trip.route.legs:
            if leg.route_id is None or len(leg.geometry) < 2:
                continue
            key = (leg.route_id, leg.stop_ids)
            counts[key] += 1
            geometries.setdefault(key, leg.geometry)
    features = []
    for (route_id, stop_ids), usage in sorted(counts.items(), key=lambda item: (-item[1], item[0])):
        features.append(
            {
                "type": "Feature",
                "geometry": {
                    "type": "LineString",
                    "coordinates": [list(coord) for coord in geometries[(route_id, stop_ids)]],
                },
                "properties": {
                    "routeId": route_id,
                    "fromStopId": stop_ids[0] if stop_ids else None,
                    "toStopId": stop_ids[-1] if stop_ids else None,
                    "usage": usage,
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}


def accessibility_grid(
    statistics: AggregateStatistics, origins: Iterable[Location]
) -> Dict[str, object]:
    """FeatureCollection of origin points carrying their accessibility score; unlocated origins are left out."""
    located = {origin.id: origin for origin in origins}
    features = []
    for item in statistics.origin_accessibility:
        origin = located.get(item.origin_id)
        if origin is None:
            continue
        features.append(
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [origin.lon, origin.lat]},
                "properties": {
                    "originId": item.origin_id,
                    "accessibilityScore": round(item.score, 2),
                    "destinationsReachable": item.reachable,
                    "destinationsAttempted": item.destinations,
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}


def geospatial_data(
    statistics: AggregateStatistics,
    trips: Iterable[TripResult],
    origins: Iterable[Location] = (),
) -> Dict[str, object]:
    return {
        "accessibilityGrid": accessibility_grid(statistics, origins),
        "corridorUsage": corridor_usage(trips),
    }


def result_document(
    job_id: str,
    statistics: AggregateStatistics,
    trips: Sequence[TripResult],
    origins: Iterable[Location] = (),
) -> Dict[str, object]:
    document: Dict[str, object] = {"simulation": job_id}
    document.update(statistics.to_dict())
    document["tripDetails"] = [trip.to_dict() for trip in trips]
    document["geospatialData"] = geospatial_data(statistics, trips, origins)
    return document


def write_statistics_json(
    statistics: AggregateStatistics | Mapping[str, object], path: str | Path
) -> Path:
    payload = statistics.to_dict() if isinstance(statistics, AggregateStatistics) else dict(statistics)
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    logger.info("Wrote statistics to %s", dest)
    return dest


__all__ = [
    "TRIP_COLUMNS",
    "accessibility_grid",
    "corridor_usage",
    "geospatial_data",
    "result_document",
    "trips_to_dataframe",
    "write_statistics_json",
    "write_trips_csv",
]
