"""Routing package exports."""

from .parameters import DEFAULT_EMISSION_FACTORS, SimulationParameters
from .raptor import RaptorRouter, route
from .trip_result import (
    BASELINE,
    PROPOSED,
    BaselineSummary,
    Improvement,
    Itinerary,
    Location,
    RouteLeg,
    TripResult,
    TripStatus,
)

__all__ = [
    "BASELINE",
    "BaselineSummary",
    "DEFAULT_EMISSION_FACTORS",
    "Improvement",
    "Itinerary",
    "Location",
    "PROPOSED",
    "RaptorRouter",
    "RouteLeg",
    "SimulationParameters",
    "TripResult",
    "TripStatus",
    "route",
]
