"""
Roll TripResults up into the statistics block of a simulation result.

All averages are taken over successful trips only and collapse to 0 when no
trip succeeded. Person totals (``total_travel_time``, ``total_distance``)
weight each trip by its OD demand; counts never do.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
import psutil

from mosh.clock import format_time_of_day
from mosh.routing.parameters import DEFAULT_EMISSION_FACTORS
from mosh.routing.trip_result import (
    BaselineSummary,
    Improvement,
    TripResult,
    TripStatus,
)
from mosh.settings import ALGORITHM_VERSION

logger = logging.getLogger(__name__)

MODAL_CATEGORIES = ("walkOnly", "transitOnly", "bikeOnly", "multimodal")
REFERENCE_MODE = "car"


@dataclass(frozen=True)
class TemporalBucket:
    departure_time: int
    trips: int
    average_travel_time: float
    success_rate: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "departureTime": format_time_of_day(self.departure_time),
            "trips": self.trips,
            "averageTravelTime": round(self.average_travel_time, 2),
            "successRate": round(self.success_rate, 2),
        }


@dataclass(frozen=True)
class BaselineComparison:
    matched_trips: int
    overall_improvement: float
    time_savings_total: int
    co2_reduction_total: float
    accessibility_improvement: float
    modal_shift_percentage: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "matchedTrips": self.matched_trips,
            "overallImprovement": round(self.overall_improvement, 2),
            "timeSavingsTotal": self.time_savings_total,
            "co2ReductionTotal": round(self.co2_reduction_total, 4),
            "accessibilityImprovement": round(self.accessibility_improvement, 2),
            "modalShiftPercentage": round(self.modal_shift_percentage, 2),
        }


@dataclass(frozen=True)
class QualityMetrics:
    completeness: float
    missing_data: Tuple[str, ...]
    anomalies: Tuple[str, ...]
    confidence: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "completeness": round(self.completeness, 2),
            "missingData": list(self.missing_data),
            "anomalies": list(self.anomalies),
            "confidence": round(self.confidence, 2),
        }


@dataclass(frozen=True)
class ProcessingMetadata:
    algorithm_version: str
    compute_time: float
    processing_node: str
    memory_used: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "algorithmVersion": self.algorithm_version,
            "computeTime": round(self.compute_time, 3),
            "memoryUsed": round(self.memory_used, 1),
            "processingNode": self.processing_node,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class OriginAccessibility:
    """Share of an origin's attempted destinations reached by at least one successful trip."""

    origin_id: str
    destinations: int
    reachable: int
    score: float


@dataclass(frozen=True)
class AggregateStatistics:
    total_trips: int
    successful_trips: int
    failed_trips: int
    partial_trips: int
    average_travel_time: float
    median_travel_time: float
    min_travel_time: float
    max_travel_time: float
    total_travel_time: float
    average_transfers: float
    max_transfers: int
    trips_with_no_transfers: int
    trips_with_one_transfer: int
    trips_with_multiple_transfers: int
    average_distance: float
    total_distance: float
    modal_split: Mapping[str, int]
    total_co2_reduction: float
    average_co2_reduction_per_trip: float
    destinations_reachable: int
    destinations_unreachable: int
    average_accessibility_score: float
    temporal_analysis: Tuple[TemporalBucket, ...] = ()
    origin_accessibility: Tuple[OriginAccessibility, ...] = ()
    baseline_comparison: Optional[BaselineComparison] = None
    quality_metrics: Optional[QualityMetrics] = None
    processing_metadata: Optional[ProcessingMetadata] = None

    def to_dict(self) -> Dict[str, object]:
        statistics = {
            "totalTrips": self.total_trips,
            "successfulTrips": self.successful_trips,
            "failedTrips": self.failed_trips,
            "partialTrips": self.partial_trips,
            "averageTravelTime": round(self.average_travel_time, 2),
            "medianTravelTime": round(self.median_travel_time, 2),
            "minTravelTime": round(self.min_travel_time, 2),
            "maxTravelTime": round(self.max_travel_time, 2),
            "totalTravelTime": round(self.total_travel_time, 2),
            "averageTransfers": round(self.average_transfers, 3),
            "maxTransfers": self.max_transfers,
            "tripsWithNoTransfers": self.trips_with_no_transfers,
            "tripsWithOneTransfer": self.trips_with_one_transfer,
            "tripsWithMultipleTransfers": self.trips_with_multiple_transfers,
            "averageDistance": round(self.average_distance, 1),
            "totalDistance": round(self.total_distance, 1),
            "modalSplit": dict(self.modal_split),
            "totalCO2Reduction": round(self.total_co2_reduction, 4),
            "averageCO2ReductionPerTrip": round(self.average_co2_reduction_per_trip, 4),
            "destinationsReachable": self.destinations_reachable,
            "destinationsUnreachable": self.destinations_unreachable,
            "averageAccessibilityScore": round(self.average_accessibility_score, 2),
        }
        payload: Dict[str, object] = {
            "statistics": statistics,
            "temporalAnalysis": [bucket.to_dict() for bucket in self.temporal_analysis],
        }
        if self.baseline_comparison is not None:
            payload["baselineComparison"] = self.baseline_comparison.to_dict()
        if self.quality_metrics is not None:
            payload["qualityMetrics"] = self.quality_metrics.to_dict()
        if self.processing_metadata is not None:
            payload["processingMetadata"] = self.processing_metadata.to_dict()
        return payload

    def summary(self, execution_time: float | None = None) -> Dict[str, object]:
        """The short ``resultsSummary`` block stored on the job record."""
        comparison = self.baseline_comparison
        return {
            "totalTrips": self.total_trips,
            "successfulTrips": self.successful_trips,
            "failedTrips": self.failed_trips,
            "averageTravelTime": round(self.average_travel_time, 2),
            "averageTransfers": round(self.average_transfers, 3),
            "totalCO2Reduction": round(self.total_co2_reduction, 4),
            "modalShiftPercentage": round(comparison.modal_shift_percentage, 2) if comparison else 0.0,
            "executionTime": round(execution_time, 3) if execution_time is not None else None,
        }


def _safe_div(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator else 0.0


def process_memory_mb() -> float:
    """Resident set size of the current process in MB."""
    return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024


def compare_with_baseline(
    proposed: Sequence[TripResult],
    baseline: Sequence[TripResult],
    emission_factors: Mapping[str, float] | None = None,
) -> List[TripResult]:
    """
    Annotate proposed trips with their baseline counterpart matched on
    (origin, destination, departure time). Trips without a routed
    counterpart come back unchanged.
    """
    factors = dict(emission_factors or DEFAULT_EMISSION_FACTORS)
    by_key: Dict[Tuple[str, str, int], TripResult] = {}
    for trip in baseline:
        by_key.setdefault(trip.key, trip)
    annotated: List[TripResult] = []
    for trip in proposed:
        base = by_key.get(trip.key)
        if base is None or not base.has_route or not trip.has_route:
            annotated.append(trip)
            continue
        base_route = base.route
        base_co2 = base_route.co2_kg(factors)
        summary = BaselineSummary(
            total_duration=base_route.total_duration,
            total_distance=base_route.total_distance,
            transfers=base_route.transfers,
            co2_emissions=base_co2,
        )
        improvement = Improvement(
            time_saved=base_route.total_duration - trip.route.total_duration,
            distance_reduction=base_route.total_distance - trip.route.total_distance,
            co2_reduction=base_co2 - trip.route.co2_kg(factors),
            transfers_reduction=base_route.transfers - trip.route.transfers,
        )
        annotated.append(trip.with_comparison(summary, improvement))
    return annotated


class ResultAggregator:
    def __init__(
        self,
        emission_factors: Mapping[str, float] | None = None,
        *,
        algorithm_version: str = ALGORITHM_VERSION,
        processing_node: str | None = None,
    ):
        self.emission_factors = dict(emission_factors or DEFAULT_EMISSION_FACTORS)
        self.algorithm_version = algorithm_version
        self.processing_node = processing_node or socket.gethostname()

    def aggregate(
        self,
        trips: Iterable[TripResult],
        baseline_trips: Iterable[TripResult] | None = None,
        *,
        baseline_route_ids: Iterable[str] | None = None,
        compute_time: float = 0.0,
        memory_used: float | None = None,
        timestamp: datetime | None = None,
    ) -> AggregateStatistics:
        trips = list(trips)
        baseline_list = list(baseline_trips) if baseline_trips is not None else None
        if baseline_list is not None and any(t.baseline is None for t in trips if t.has_route):
            trips = compare_with_baseline(trips, baseline_list, self.emission_factors)

        successes = [t for t in trips if t.status == TripStatus.SUCCESS]
        failed = sum(1 for t in trips if t.status == TripStatus.FAILED)
        partial = sum(1 for t in trips if t.status == TripStatus.PARTIAL)

        durations = np.array([t.route.total_duration for t in successes], dtype=float)
        distances = np.array([t.route.total_distance for t in successes], dtype=float)
        demands = np.array([t.demand for t in successes], dtype=float)
        transfers = [t.route.transfers for t in successes]

        modal_split = {category: 0 for category in MODAL_CATEGORIES}
        for trip in successes:
            modal_split[trip.route.modal_category] += 1

        co2_reductions = [self._co2_reduction(trip) for trip in successes]
        per_origin = _accessibility(trips)
        reachable = sum(item.reachable for item in per_origin)
        unreachable = sum(item.destinations - item.reachable for item in per_origin)
        accessibility = _safe_div(sum(item.score for item in per_origin), len(per_origin))

        stats = AggregateStatistics(
            total_trips=len(trips),
            successful_trips=len(successes),
            failed_trips=failed,
            partial_trips=partial,
            average_travel_time=float(durations.mean()) if durations.size else 0.0,
            median_travel_time=float(np.median(durations)) if durations.size else 0.0,
            min_travel_time=float(durations.min()) if durations.size else 0.0,
            max_travel_time=float(durations.max()) if durations.size else 0.0,
            total_travel_time=float((durations * demands).sum()),
            average_transfers=_safe_div(sum(transfers), len(transfers)),
            max_transfers=max(transfers) if transfers else 0,
            trips_with_no_transfers=sum(1 for n in transfers if n == 0),
            trips_with_one_transfer=sum(1 for n in transfers if n == 1),
            trips_with_multiple_transfers=sum(1 for n in transfers if n > 1),
            average_distance=float(distances.mean()) if distances.size else 0.0,
            total_distance=float((distances * demands).sum()),
            modal_split=modal_split,
            total_co2_reduction=float(sum(co2_reductions)),
            average_co2_reduction_per_trip=_safe_div(sum(co2_reductions), len(co2_reductions)),
            destinations_reachable=reachable,
            destinations_unreachable=unreachable,
            average_accessibility_score=accessibility,
            temporal_analysis=_temporal_analysis(trips),
            origin_accessibility=per_origin,
            baseline_comparison=(
                self._baseline_comparison(trips, baseline_list, baseline_route_ids)
                if baseline_list is not None
                else None
            ),
            quality_metrics=_quality_metrics(trips),
            processing_metadata=ProcessingMetadata(
                algorithm_version=self.algorithm_version,
                compute_time=float(compute_time),
                processing_node=self.processing_node,
                memory_used=process_memory_mb() if memory_used is None else float(memory_used),
                timestamp=timestamp or datetime.now(timezone.utc),
            ),
        )
        logger.debug(
            "Aggregated %d trips: %d success, %d failed, %d partial",
            stats.total_trips,
            stats.successful_trips,
            stats.failed_trips,
            stats.partial_trips,
        )
        return stats

    # ---------------------------------------------------------------- helpers
    def _co2_reduction(self, trip: TripResult) -> float:
        if trip.improvement is not None:
            return trip.improvement.co2_reduction
        # no baseline counterpart: compare against driving the same distance
        reference = trip.route.total_distance / 1000.0 * self.emission_factors.get(REFERENCE_MODE, 0.0)
        return reference - trip.route.co2_kg(self.emission_factors)

    def _baseline_comparison(
        self,
        trips: Sequence[TripResult],
        baseline: Sequence[TripResult],
        baseline_route_ids: Iterable[str] | None,
    ) -> BaselineComparison:
        base_by_key = {}
        for trip in baseline:
            base_by_key.setdefault(trip.key, trip)
        matched = [t for t in trips if t.key in base_by_key]
        both_success = [
            t for t in matched if t.is_success and base_by_key[t.key].is_success
        ]
        base_mean = _safe_div(sum(base_by_key[t.key].route.total_duration for t in both_success), len(both_success))
        prop_mean = _safe_div(sum(t.route.total_duration for t in both_success), len(both_success))
        overall = _safe_div(base_mean - prop_mean, base_mean) * 100.0
        time_savings = sum(base_by_key[t.key].route.total_duration - t.route.total_duration for t in both_success)
        co2_total = sum(t.improvement.co2_reduction for t in matched if t.improvement is not None)

        matched_base = [base_by_key[t.key] for t in matched]
        prop_share = _safe_div(sum(1 for t in matched if t.is_success), len(matched))
        base_share = _safe_div(sum(1 for t in matched_base if t.is_success), len(matched_base))

        known_routes: Set[str] = set(baseline_route_ids or ())
        if baseline_route_ids is None:
            for trip in baseline:
                if trip.route is not None:
                    known_routes |= trip.route.infrastructure_ids
        matched_success = [t for t in matched if t.is_success]
        shifted = sum(1 for t in matched_success if t.route.infrastructure_ids - known_routes)
        return BaselineComparison(
            matched_trips=len(matched),
            overall_improvement=overall,
            time_savings_total=int(time_savings),
            co2_reduction_total=float(co2_total),
            accessibility_improvement=(prop_share - base_share) * 100.0,
            modal_shift_percentage=_safe_div(shifted, len(matched_success)) * 100.0,
        )


def _accessibility(trips: Sequence[TripResult]) -> Tuple[OriginAccessibility, ...]:
    attempted: Dict[str, Set[str]] = {}
    reached: Dict[str, Set[str]] = {}
    for trip in trips:
        attempted.setdefault(trip.origin_id, set()).add(trip.destination_id)
        if trip.is_success:
            reached.setdefault(trip.origin_id, set()).add(trip.destination_id)
    per_origin = []
    for origin, destinations in attempted.items():
        hit = len(reached.get(origin, ()))
        per_origin.append(
            OriginAccessibility(
                origin_id=origin,
                destinations=len(destinations),
                reachable=hit,
                score=_safe_div(hit, len(destinations)) * 100.0,
            )
        )
    return tuple(per_origin)


def _temporal_analysis(trips: Sequence[TripResult]) -> Tuple[TemporalBucket, ...]:
    by_departure: Dict[int, List[TripResult]] = {}
    for trip in trips:
        by_departure.setdefault(trip.departure_time, []).append(trip)
    buckets = []
    for departure in sorted(by_departure):
        group = by_departure[departure]
        successes = [t for t in group if t.is_success]
        buckets.append(
            TemporalBucket(
                departure_time=departure,
                trips=len(group),
                average_travel_time=_safe_div(sum(t.route.total_duration for t in successes), len(successes)),
                success_rate=_safe_div(len(successes), len(group)) * 100.0,
            )
        )
    return tuple(buckets)


def _quality_metrics(trips: Sequence[TripResult]) -> QualityMetrics:
    routed = sum(1 for t in trips if t.has_route)
    missing: Set[str] = set()
    anomalies: List[str] = []
    for trip in trips:
        if trip.status == TripStatus.FAILED and trip.error and "max_walking_distance" in trip.error:
            endpoint = trip.origin_id if trip.error.startswith("origin") else trip.destination_id
            missing.add(f"no network within walking distance of {endpoint}")
        if trip.route is not None and trip.route.arrival_time < trip.departure_time:
            anomalies.append(f"trip {trip.trip_id} arrives before it departs")
        if trip.route is not None and trip.route.total_duration == 0 and trip.route.total_distance > 0:
            anomalies.append(f"trip {trip.trip_id} covers distance in zero time")
    completeness = _safe_div(routed, len(trips)) * 100.0
    confidence = completeness * (1.0 - _safe_div(len(anomalies), len(trips)))
    return QualityMetrics(
        completeness=completeness,
        missing_data=tuple(sorted(missing)),
        anomalies=tuple(anomalies),
        confidence=confidence,
    )


__all__ = [
    "AggregateStatistics",
    "BaselineComparison",
    "MODAL_CATEGORIES",
    "OriginAccessibility",
    "ProcessingMetadata",
    "QualityMetrics",
    "ResultAggregator",
    "TemporalBucket",
    "compare_with_baseline",
    "process_memory_mb",
]
