from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping

import yaml

from mosh.clock import departure_grid, format_time_of_day, parse_time_of_day
from mosh.errors import InvalidParameters

logger = logging.getLogger(__name__)

PARAMETERS_VERSION = 1

DEFAULT_EMISSION_FACTORS: Dict[str, float] = {
    "walk": 0.0,
    "bike": 0.0,
    "transit": 0.1,
    "car": 0.17,
}

# camelCase keys used by the simulation submission documents
_ALIASES = {
    "maxTransfers": "max_transfers",
    "walkingSpeed": "walking_speed",
    "bikingSpeed": "biking_speed",
    "maxWalkingDistance": "max_walking_distance",
    "departureTimeStart": "departure_time_start",
    "departureTimeEnd": "departure_time_end",
    "timeStep": "time_step",
    "maxTripDuration": "max_trip_duration",
    "emissionFactors": "emission_factors",
}


@dataclass(frozen=True)
class SimulationParameters:
    """
    Closed, versioned routing configuration.

    Times are stored as service-day seconds; ``time_step`` stays in minutes as
    submitted. ``departure_time_end`` defaults to ``departure_time_start`` so a
    bare submission yields a single departure per OD pair.
    """

    version: int = PARAMETERS_VERSION
    max_transfers: int = 3
    walking_speed: float = 1.4
    biking_speed: float = 4.5
    max_walking_distance: float = 800.0
    departure_time_start: int = 8 * 3600
    departure_time_end: int | None = None
    time_step: int = 15
    max_trip_duration: int | None = None
    emission_factors: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_EMISSION_FACTORS)
    )

    def __post_init__(self) -> None:
        try:
            start = parse_time_of_day(self.departure_time_start, "departure_time_start")
            end = (
                start
                if self.departure_time_end is None
                else parse_time_of_day(self.departure_time_end, "departure_time_end")
            )
        except ValueError as exc:
            raise InvalidParameters(str(exc)) from exc
        factors = dict(DEFAULT_EMISSION_FACTORS)
        for mode, value in dict(self.emission_factors or {}).items():
            factors[str(mode)] = _number(value, f"emission_factors.{mode}")
        object.__setattr__(self, "departure_time_start", start)
        object.__setattr__(self, "departure_time_end", end)
        object.__setattr__(self, "max_transfers", _integer(self.max_transfers, "max_transfers"))
        object.__setattr__(self, "time_step", _integer(self.time_step, "time_step"))
        object.__setattr__(self, "walking_speed", _number(self.walking_speed, "walking_speed"))
        object.__setattr__(self, "biking_speed", _number(self.biking_speed, "biking_speed"))
        object.__setattr__(
            self, "max_walking_distance", _number(self.max_walking_distance, "max_walking_distance")
        )
        if self.max_trip_duration is not None:
            object.__setattr__(
                self, "max_trip_duration", _integer(self.max_trip_duration, "max_trip_duration")
            )
        object.__setattr__(self, "emission_factors", factors)
        self._validate()

    def _validate(self) -> None:
        if self.version != PARAMETERS_VERSION:
            raise InvalidParameters(f"Unsupported parameters version {self.version!r}")
        if self.max_transfers < 0:
            raise InvalidParameters("max_transfers must be non-negative")
        if self.walking_speed <= 0 or self.biking_speed <= 0:
            raise InvalidParameters("walking_speed and biking_speed must be positive")
        if self.max_walking_distance < 0:
            raise InvalidParameters("max_walking_distance must be non-negative")
        if self.time_step <= 0:
            raise InvalidParameters("time_step must be a positive number of minutes")
        if self.departure_time_end < self.departure_time_start:
            raise InvalidParameters("departure_time_end must not precede departure_time_start")
        if self.max_trip_duration is not None and self.max_trip_duration <= 0:
            raise InvalidParameters("max_trip_duration must be positive when provided")
        if any(factor < 0 for factor in self.emission_factors.values()):
            raise InvalidParameters("emission factors must be non-negative")

    # ------------------------------------------------------------------ derived
    @property
    def max_rounds(self) -> int:
        return self.max_transfers + 1

    def walk_seconds(self, distance_m: float) -> int:
        return int(math.ceil(distance_m / self.walking_speed))

    def bike_seconds(self, distance_m: float) -> int:
        return int(math.ceil(distance_m / self.biking_speed))

    def departure_times(self) -> List[int]:
        return departure_grid(self.departure_time_start, self.departure_time_end, self.time_step * 60)

    def emission_factor(self, mode: str) -> float:
        return float(self.emission_factors.get(mode, 0.0))

    # ------------------------------------------------------------------ loaders
    @classmethod
    def from_mapping(cls, data: Mapping[str, object] | None) -> "SimulationParameters":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise InvalidParameters("Simulation parameters must be a mapping")
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, object] = {}
        unknown: List[str] = []
        for raw_key, value in data.items():
            key = _ALIASES.get(str(raw_key), str(raw_key))
            if key not in known:
                unknown.append(str(raw_key))
                continue
            if key in kwargs:
                raise InvalidParameters(f"Parameter {key!r} given more than once")
            kwargs[key] = value
        if unknown:
            raise InvalidParameters(f"Unknown simulation parameters: {', '.join(sorted(unknown))}")
        for key in ("departure_time_end", "max_trip_duration"):
            if key in kwargs and kwargs[key] is None:
                kwargs.pop(key)
        if kwargs.get("emission_factors") is not None and not isinstance(
            kwargs["emission_factors"], Mapping
        ):
            raise InvalidParameters("emission_factors must be a mapping of mode to kg/km")
        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise InvalidParameters(str(exc)) from exc

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SimulationParameters":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Simulation parameters YAML not found at {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise InvalidParameters("Simulation parameters YAML must contain a mapping at the top level")
        params = cls.from_mapping(data)
        logger.debug("Loaded simulation parameters from %s", config_path)
        return params

    def to_mapping(self) -> Dict[str, object]:
        output: Dict[str, object] = {
            "version": self.version,
            "max_transfers": self.max_transfers,
            "walking_speed": float(self.walking_speed),
            "biking_speed": float(self.biking_speed),
            "max_walking_distance": float(self.max_walking_distance),
            "departure_time_start": format_time_of_day(self.departure_time_start),
            "departure_time_end": format_time_of_day(self.departure_time_end),
            "time_step": self.time_step,
            "emission_factors": {k: float(v) for k, v in sorted(self.emission_factors.items())},
        }
        if self.max_trip_duration is not None:
            output["max_trip_duration"] = self.max_trip_duration
        return output

    def to_yaml(self, path: str | Path) -> None:
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with dest.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(self.to_mapping(), handle, sort_keys=True)


def _number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise InvalidParameters(f"{label} must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameters(f"{label} must be numeric, got {value!r}") from exc
    if math.isnan(number) or math.isinf(number):
        raise InvalidParameters(f"{label} must be finite")
    return number


def _integer(value: object, label: str) -> int:
    number = _number(value, label)
    if number != int(number):
        raise InvalidParameters(f"{label} must be a whole number, got {value!r}")
    return int(number)


__all__ = ["DEFAULT_EMISSION_FACTORS", "PARAMETERS_VERSION", "SimulationParameters"]
