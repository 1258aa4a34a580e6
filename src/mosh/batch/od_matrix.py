"""Origin-destination matrices loaded from mappings, JSON or CSV."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from mosh.clock import departure_grid, parse_time_of_day
from mosh.errors import InvalidParameters
from mosh.routing.parameters import SimulationParameters
from mosh.routing.trip_result import Location

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "origin_id",
    "origin_lon",
    "origin_lat",
    "destination_id",
    "destination_lon",
    "destination_lat",
)


@dataclass(frozen=True)
class ODPair:
    origin: Location
    destination: Location
    demand: float = 1.0
    departure_window: Optional[Tuple[int, int]] = None

    def __post_init__(self) -> None:
        if self.demand < 0:
            raise InvalidParameters(
                f"OD pair {self.origin.id}->{self.destination.id} has negative demand"
            )
        if self.departure_window is not None:
            start, end = self.departure_window
            if end < start:
                raise InvalidParameters(
                    f"OD pair {self.origin.id}->{self.destination.id} departure window ends before it starts"
                )

    @property
    def origin_id(self) -> str:
        return self.origin.id

    @property
    def destination_id(self) -> str:
        return self.destination.id

    def departure_times(self, params: SimulationParameters) -> List[int]:
        if self.departure_window is None:
            return params.departure_times()
        start, end = self.departure_window
        return departure_grid(start, end, params.time_step * 60)

    def to_mapping(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "origin": {"id": self.origin.id, "coordinates": [self.origin.lon, self.origin.lat]},
            "destination": {
                "id": self.destination.id,
                "coordinates": [self.destination.lon, self.destination.lat],
            },
            "demand": self.demand,
        }
        if self.departure_window is not None:
            payload["departureWindow"] = {"start": self.departure_window[0], "end": self.departure_window[1]}
        return payload


@dataclass(frozen=True)
class ODMatrix:
    pairs: Tuple[ODPair, ...]

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self) -> Iterator[ODPair]:
        return iter(self.pairs)

    @property
    def destination_ids(self) -> List[str]:
        return sorted({pair.destination_id for pair in self.pairs})

    # ------------------------------------------------------------------ loaders
    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ODMatrix":
        """
        Accept either ``{"pairs": [...]}`` or ``{"origins": [...], "destinations": [...]}``.

        The second shape expands to the cross product of origins and
        destinations; pairs whose ids coincide are skipped and the origin
        ``demand`` is carried onto every pair.
        """
        if not isinstance(data, Mapping):
            raise InvalidParameters("OD matrix must be a mapping")
        try:
            if "pairs" in data:
                raw_pairs = data.get("pairs")
                if not isinstance(raw_pairs, list):
                    raise InvalidParameters("'pairs' must be a list")
                pairs = [_pair_from_mapping(raw) for raw in raw_pairs]
            else:
                origins = data.get("origins")
                destinations = data.get("destinations")
                if not isinstance(origins, list) or not isinstance(destinations, list):
                    raise InvalidParameters("OD matrix requires 'pairs' or both 'origins' and 'destinations'")
                pairs = []
                parsed_destinations = [Location.from_mapping(raw) for raw in destinations]
                for raw_origin in origins:
                    origin = Location.from_mapping(raw_origin)
                    demand = float(raw_origin.get("demand", 1.0))
                    for destination in parsed_destinations:
                        if destination.id == origin.id:
                            continue
                        pairs.append(ODPair(origin, destination, demand))
        except (TypeError, ValueError) as exc:
            if isinstance(exc, InvalidParameters):
                raise
            raise InvalidParameters(f"Invalid OD matrix: {exc}") from exc
        return cls(pairs=tuple(pairs))

    @classmethod
    def from_json(cls, path: str | Path) -> "ODMatrix":
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        if isinstance(data, list):
            data = {"pairs": data}
        return cls.from_mapping(data)

    @classmethod
    def from_csv(cls, path: str | Path) -> "ODMatrix":
        frame = pd.read_csv(path, dtype={"origin_id": str, "destination_id": str})
        missing = [column for column in CSV_COLUMNS if column not in frame.columns]
        if missing:
            raise InvalidParameters(f"OD CSV {path} is missing columns: {', '.join(missing)}")
        return cls.from_dataframe(frame)

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame) -> "ODMatrix":
        has_demand = "demand" in frame.columns
        has_window = "departure_start" in frame.columns
        pairs: List[ODPair] = []
        for row in frame.itertuples(index=False):
            window = None
            start = _csv_time(row.departure_start, "departure_start") if has_window else None
            if start is not None:
                end = _csv_time(getattr(row, "departure_end", None), "departure_end")
                window = (start, start if end is None else end)
            demand = float(row.demand) if has_demand and not pd.isna(row.demand) else 1.0
            pairs.append(
                ODPair(
                    Location(str(row.origin_id), float(row.origin_lon), float(row.origin_lat)),
                    Location(str(row.destination_id), float(row.destination_lon), float(row.destination_lat)),
                    demand,
                    window,
                )
            )
        return cls(pairs=tuple(pairs))

    @classmethod
    def load(cls, path: str | Path) -> "ODMatrix":
        suffix = Path(path).suffix.lower()
        matrix = cls.from_csv(path) if suffix == ".csv" else cls.from_json(path)
        logger.info("Loaded %d OD pairs from %s", len(matrix), path)
        return matrix

    def to_mapping(self) -> Dict[str, object]:
        return {"pairs": [pair.to_mapping() for pair in self.pairs]}


def _pair_from_mapping(raw: object) -> ODPair:
    if not isinstance(raw, Mapping):
        raise InvalidParameters("OD pairs must be mappings with 'origin' and 'destination'")
    origin = Location.from_mapping(raw.get("origin"))
    destination = Location.from_mapping(raw.get("destination"))
    demand = float(raw.get("demand", 1.0))
    window = raw.get("departure_window", raw.get("departureWindow"))
    return ODPair(origin, destination, demand, _window(window))


def _csv_time(value: object, label: str) -> Optional[int]:
    """Parse a CSV time cell; pandas hands over strings, numpy numbers or NaN for blanks."""
    if value is None:
        return None
    if isinstance(value, str):
        return parse_time_of_day(value, label) if value.strip() else None
    if pd.isna(value):
        return None
    if isinstance(value, np.generic):
        value = value.item()
    return parse_time_of_day(value, label)


def _window(raw: object) -> Optional[Tuple[int, int]]:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        start, end = raw.get("start"), raw.get("end", raw.get("start"))
    elif isinstance(raw, Sequence) and not isinstance(raw, str) and len(raw) == 2:
        start, end = raw
    else:
        raise InvalidParameters(f"Invalid departure window {raw!r}")
    return (parse_time_of_day(start, "departure window start"), parse_time_of_day(end, "departure window end"))


__all__ = ["CSV_COLUMNS", "ODMatrix", "ODPair"]
