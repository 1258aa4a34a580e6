"""Spatial helper that snaps coordinates to nearby stops."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from shapely.geometry import Point, box
from shapely.strtree import STRtree

from .domain_types import Stop
from .geodesy import Coordinate, degree_window, haversine_m


class StopLocator:
    """STRtree over stop points answering radius queries in meters."""

    def __init__(self, stops: Sequence[Stop]):
        self._stops = list(stops)
        self._points = [Point(stop.lon, stop.lat) for stop in self._stops]
        self._tree = STRtree(self._points) if self._points else None

    def within(self, coord: Coordinate, radius_m: float) -> List[Tuple[int, float]]:
        """Return ``(stop_index, distance_m)`` for stops within ``radius_m``, sorted by distance then index."""
        if self._tree is None or radius_m < 0:
            return []
        lon, lat = coord
        dlon, dlat = degree_window(lat, radius_m)
        window = box(lon - dlon, lat - dlat, lon + dlon, lat + dlat)
        matches: List[Tuple[int, float]] = []
        for tree_idx in self._tree.query(window):
            stop = self._stops[int(tree_idx)]
            distance = haversine_m(coord, stop.coordinates)
            if distance <= radius_m:
                matches.append((stop.index, distance))
        matches.sort(key=lambda item: (item[1], item[0]))
        return matches
