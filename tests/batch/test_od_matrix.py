from __future__ import annotations

import json

import pandas as pd
import pytest

from mosh.batch.od_matrix import ODMatrix, ODPair
from mosh.errors import InvalidParameters
from mosh.routing.parameters import SimulationParameters
from mosh.routing.trip_result import Location


def test_pairs_mapping(od_mapping):
    matrix = ODMatrix.from_mapping(od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0))))

    (pair,) = matrix.pairs
    assert pair.origin == Location("A", 0.0, 0.0)
    assert pair.destination_id == "B"
    assert pair.demand == 1.0
    assert len(matrix) == 1


def test_origins_and_destinations_expand_to_cross_product():
    matrix = ODMatrix.from_mapping(
        {
            "origins": [
                {"id": "A", "coordinates": [0.0, 0.0], "demand": 5},
                {"id": "B", "coordinates": [0.01, 0.0]},
            ],
            "destinations": [
                {"id": "B", "coordinates": [0.01, 0.0]},
                {"id": "C", "coordinates": [0.02, 0.0]},
            ],
        }
    )

    assert [(p.origin_id, p.destination_id) for p in matrix] == [("A", "B"), ("A", "C"), ("B", "C")]
    assert [p.demand for p in matrix] == [5.0, 5.0, 1.0]
    assert matrix.destination_ids == ["B", "C"]


def test_departure_window_overrides_parameters():
    pair = ODPair(Location("A", 0.0, 0.0), Location("B", 0.01, 0.0), departure_window=(3600, 5400))
    params = SimulationParameters(time_step=15)

    assert pair.departure_times(params) == [3600, 4500, 5400]
    assert ODPair(pair.origin, pair.destination).departure_times(params) == [8 * 3600]


@pytest.mark.parametrize(
    "payload",
    [
        {"pairs": "A->B"},
        {"origins": [{"id": "A", "coordinates": [0, 0]}]},
        {"pairs": [{"origin": {"id": "A"}, "destination": {"id": "B", "coordinates": [0, 0]}}]},
        {
            "pairs": [
                {
                    "origin": {"id": "A", "coordinates": [0, 0]},
                    "destination": {"id": "B", "coordinates": [0, 0]},
                    "demand": -1,
                }
            ]
        },
    ],
)
def test_invalid_matrices_raise(payload):
    with pytest.raises(InvalidParameters):
        ODMatrix.from_mapping(payload)


def test_json_list_is_read_as_pairs(tmp_path, od_mapping):
    path = tmp_path / "od.json"
    path.write_text(json.dumps(od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0)))["pairs"]), encoding="utf-8")

    matrix = ODMatrix.load(path)

    assert [(p.origin_id, p.destination_id) for p in matrix] == [("A", "B")]


def test_csv_with_windows_and_demand(tmp_path):
    path = tmp_path / "od.csv"
    pd.DataFrame(
        [
            {
                "origin_id": "001",
                "origin_lon": 0.0,
                "origin_lat": 0.0,
                "destination_id": "002",
                "destination_lon": 0.01,
                "destination_lat": 0.0,
                "demand": 12,
                "departure_start": "07:00",
                "departure_end": "07:15",
            },
            {
                "origin_id": "002",
                "origin_lon": 0.01,
                "origin_lat": 0.0,
                "destination_id": "001",
                "destination_lon": 0.0,
                "destination_lat": 0.0,
                "demand": None,
                "departure_start": None,
                "departure_end": None,
            },
        ]
    ).to_csv(path, index=False)

    matrix = ODMatrix.load(path)

    first, second = matrix.pairs
    assert first.origin_id == "001"
    assert first.demand == 12.0
    assert first.departure_window == (25200, 26100)
    assert second.demand == 1.0
    assert second.departure_window is None


def test_csv_missing_columns(tmp_path):
    path = tmp_path / "od.csv"
    path.write_text("origin_id,destination_id\nA,B\n", encoding="utf-8")

    with pytest.raises(InvalidParameters, match="missing columns"):
        ODMatrix.from_csv(path)


def test_mapping_round_trip(od_mapping):
    matrix = ODMatrix.from_mapping(od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0))))

    assert ODMatrix.from_mapping(matrix.to_mapping()) == matrix


def test_csv_numeric_departure_window_is_read_as_seconds(tmp_path):
    path = tmp_path / "od.csv"
    pd.DataFrame(
        [
            {
                "origin_id": "o1",
                "origin_lon": 0.0,
                "origin_lat": 0.0,
                "destination_id": "d1",
                "destination_lon": 0.01,
                "destination_lat": 0.0,
                "departure_start": 28800,
                "departure_end": 29700,
            },
            {
                "origin_id": "o2",
                "origin_lon": 0.0,
                "origin_lat": 0.0,
                "destination_id": "d1",
                "destination_lon": 0.01,
                "destination_lat": 0.0,
                "departure_start": 30600,
            },
        ]
    ).to_csv(path, index=False)

    first, second = ODMatrix.from_csv(path).pairs

    assert first.departure_window == (28800, 29700)
    assert second.departure_window == (30600, 30600)
