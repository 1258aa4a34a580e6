from __future__ import annotations

import pytest

from mosh.network.graph_builder import build_network_graph
from mosh.routing.trip_result import Location

# 0.01 degree of longitude on the equator is ~1112 m


def _line(coords, **properties):
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": [list(c) for c in coords]},
        "properties": properties,
    }


def _point(coord, **properties):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": list(coord)},
        "properties": properties,
    }


def _collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


class GeoJsonFactory:
    line = staticmethod(_line)
    point = staticmethod(_point)
    collection = staticmethod(_collection)


@pytest.fixture
def geojson() -> GeoJsonFactory:
    return GeoJsonFactory()


@pytest.fixture
def two_stop_payload():
    return _collection(_line([(0.0, 0.0), (0.01, 0.0)], route_id="R1", schedule=[[0, 300]]))


@pytest.fixture
def two_stop_graph(two_stop_payload):
    return build_network_graph(two_stop_payload, "transit")


@pytest.fixture
def transfer_payload():
    """R1 A->B then a ~100 m walk to C and R2 C->D."""
    return _collection(
        _line([(0.0, 0.0), (0.01, 0.0)], route_id="R1", schedule=[[0, 300]]),
        _line([(0.0109, 0.0), (0.02, 0.0)], route_id="R2", schedule=[[600, 900]]),
    )


@pytest.fixture
def transfer_graph(transfer_payload):
    return build_network_graph(transfer_payload, "transit")


@pytest.fixture
def bike_payload():
    return _collection(_line([(0.0, 0.0), (0.01, 0.0), (0.02, 0.0)], name="Riverside lane", surface="asphalt"))


@pytest.fixture
def loc():
    def _make(loc_id: str, lon: float, lat: float = 0.0) -> Location:
        return Location(loc_id, lon, lat)

    return _make


@pytest.fixture
def od_mapping():
    def _make(*pairs):
        return {
            "pairs": [
                {
                    "origin": {"id": o_id, "coordinates": list(o_coord)},
                    "destination": {"id": d_id, "coordinates": list(d_coord)},
                }
                for o_id, o_coord, d_id, d_coord in pairs
            ]
        }

    return _make
