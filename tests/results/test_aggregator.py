from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mosh.routing.raptor import DESTINATION_TOO_FAR, NO_PATH
from mosh.routing.trip_result import (
    PROPOSED,
    Itinerary,
    RouteLeg,
    TripResult,
    TripStatus,
    failed_trip,
)
from mosh.results.aggregator import ResultAggregator, compare_with_baseline


def _make_leg(mode, start, end, distance, route_id=None, line_id=None):
    return RouteLeg(
        mode=mode,
        departure_time=start,
        arrival_time=end,
        distance_m=distance,
        route_id=route_id,
        line_id=line_id,
    )


def _make_trip(origin, destination, departure, legs, transfers=0, demand=1.0, scenario="baseline"):
    itinerary = Itinerary(departure, legs[-1].arrival_time, transfers, tuple(legs))
    return TripResult(
        trip_id=f"{scenario}:{origin}->{destination}@{departure}",
        origin_id=origin,
        destination_id=destination,
        departure_time=departure,
        status=TripStatus.SUCCESS,
        scenario=scenario,
        route=itinerary,
        demand=demand,
    )


@pytest.fixture
def mixed_trips():
    return [
        _make_trip(
            "A",
            "B",
            0,
            [_make_leg("transit", 0, 300, 2500.0, "R1"), _make_leg("transit", 300, 600, 2500.0, "R2")],
            transfers=1,
            demand=2.0,
        ),
        _make_trip(
            "A",
            "C",
            0,
            [_make_leg("transit", 0, 300, 3000.0, "R1"), _make_leg("bike", 300, 900, 1000.0, line_id="L1")],
        ),
        failed_trip("baseline:A->D@900", "A", "D", 900, DESTINATION_TOO_FAR),
        _make_trip("B", "C", 900, [_make_leg("walk", 900, 1200, 420.0)]),
    ]


def test_counts_and_travel_time_statistics(mixed_trips):
    stats = ResultAggregator(processing_node="node-1").aggregate(mixed_trips)

    assert (stats.total_trips, stats.successful_trips, stats.failed_trips, stats.partial_trips) == (4, 3, 1, 0)
    assert stats.average_travel_time == pytest.approx(600.0)
    assert stats.median_travel_time == pytest.approx(600.0)
    assert (stats.min_travel_time, stats.max_travel_time) == (300.0, 900.0)
    # demand-weighted: 600 * 2 + 900 + 300
    assert stats.total_travel_time == pytest.approx(2400.0)
    assert stats.average_distance == pytest.approx(3140.0)
    assert stats.total_distance == pytest.approx(14420.0)


def test_transfer_and_modal_breakdown(mixed_trips):
    stats = ResultAggregator().aggregate(mixed_trips)

    assert stats.average_transfers == pytest.approx(1 / 3)
    assert stats.max_transfers == 1
    assert (stats.trips_with_no_transfers, stats.trips_with_one_transfer, stats.trips_with_multiple_transfers) == (
        2,
        1,
        0,
    )
    assert stats.modal_split == {"walkOnly": 1, "transitOnly": 1, "bikeOnly": 0, "multimodal": 1}


def test_co2_reduction_against_driving(mixed_trips):
    stats = ResultAggregator().aggregate(mixed_trips)

    # 5 km transit: 0.85 - 0.5; 3 km transit + 1 km bike: 0.68 - 0.3; 0.42 km walk: 0.0714
    assert stats.total_co2_reduction == pytest.approx(0.8014)
    assert stats.average_co2_reduction_per_trip == pytest.approx(0.8014 / 3)


def test_accessibility_temporal_and_quality(mixed_trips):
    stats = ResultAggregator().aggregate(mixed_trips)

    assert (stats.destinations_reachable, stats.destinations_unreachable) == (3, 1)
    assert stats.average_accessibility_score == pytest.approx((200 / 3 + 100) / 2)
    assert [(o.origin_id, o.destinations, o.reachable) for o in stats.origin_accessibility] == [
        ("A", 3, 2),
        ("B", 1, 1),
    ]

    early, late = stats.temporal_analysis
    assert (early.departure_time, early.trips, early.average_travel_time, early.success_rate) == (0, 2, 750.0, 100.0)
    assert (late.departure_time, late.trips, late.average_travel_time, late.success_rate) == (900, 2, 300.0, 50.0)

    quality = stats.quality_metrics
    assert quality.completeness == pytest.approx(75.0)
    assert quality.missing_data == ("no network within walking distance of D",)
    assert quality.anomalies == ()
    assert quality.confidence == pytest.approx(75.0)


def test_zero_time_with_distance_is_an_anomaly():
    trip = _make_trip("A", "B", 0, [_make_leg("walk", 0, 0, 50.0)])

    quality = ResultAggregator().aggregate([trip]).quality_metrics

    assert quality.anomalies == ("trip baseline:A->B@0 covers distance in zero time",)
    assert quality.confidence == pytest.approx(0.0)


def test_empty_input_collapses_to_zero():
    stats = ResultAggregator().aggregate([])

    assert stats.total_trips == 0
    assert stats.average_travel_time == 0.0
    assert stats.median_travel_time == 0.0
    assert stats.total_travel_time == 0.0
    assert stats.average_accessibility_score == 0.0
    assert stats.quality_metrics.completeness == 0.0
    assert stats.baseline_comparison is None


@pytest.fixture
def baseline_trips():
    return [
        _make_trip("A", "B", 0, [_make_leg("transit", 0, 900, 5000.0, "R1")], transfers=1),
        failed_trip("baseline:A->C@0", "A", "C", 0, NO_PATH),
    ]


@pytest.fixture
def proposed_trips():
    return [
        _make_trip("A", "B", 0, [_make_leg("transit", 0, 600, 5000.0, "R1")], scenario=PROPOSED),
        _make_trip("A", "C", 0, [_make_leg("bike", 0, 400, 1000.0, line_id="L1")], scenario=PROPOSED),
    ]


def test_compare_with_baseline_annotates_matched_trips(proposed_trips, baseline_trips):
    annotated = compare_with_baseline(proposed_trips, baseline_trips)

    first, second = annotated
    assert first.baseline.total_duration == 900
    assert first.improvement.time_saved == 300
    assert first.improvement.transfers_reduction == 1
    assert first.improvement.co2_reduction == pytest.approx(0.0)
    assert second.baseline is None
    assert second.improvement is None


def test_baseline_comparison_block(proposed_trips, baseline_trips):
    stats = ResultAggregator().aggregate(proposed_trips, baseline_trips, baseline_route_ids={"R1"})

    comparison = stats.baseline_comparison
    assert comparison.matched_trips == 2
    assert comparison.overall_improvement == pytest.approx(100 / 3)
    assert comparison.time_savings_total == 300
    assert comparison.co2_reduction_total == pytest.approx(0.0)
    assert comparison.accessibility_improvement == pytest.approx(50.0)
    # only the bike trip rides infrastructure missing from the baseline
    assert comparison.modal_shift_percentage == pytest.approx(50.0)
    # unmatched bike trip falls back to the driving reference
    assert stats.total_co2_reduction == pytest.approx(0.17)


def test_document_and_summary_shapes(proposed_trips, baseline_trips):
    stats = ResultAggregator(processing_node="node-1").aggregate(
        proposed_trips,
        baseline_trips,
        compute_time=1.23456,
        memory_used=87.654,
        timestamp=datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc),
    )

    payload = stats.to_dict()
    assert payload["statistics"]["totalTrips"] == 2
    assert payload["statistics"]["modalSplit"]["bikeOnly"] == 1
    assert payload["baselineComparison"]["matchedTrips"] == 2
    assert payload["processingMetadata"] == {
        "algorithmVersion": "raptor-1.0",
        "computeTime": 1.235,
        "memoryUsed": 87.7,
        "processingNode": "node-1",
        "timestamp": "2024-03-01T08:30:00+00:00",
    }
    assert [bucket["departureTime"] for bucket in payload["temporalAnalysis"]] == ["00:00:00"]

    summary = stats.summary(execution_time=2.5)
    assert summary["totalTrips"] == 2
    assert summary["modalShiftPercentage"] == pytest.approx(50.0)
    assert summary["executionTime"] == 2.5


def test_memory_defaults_to_the_current_process(proposed_trips):
    metadata = ResultAggregator().aggregate(proposed_trips).processing_metadata

    assert metadata.memory_used > 0
    assert metadata.timestamp.tzinfo is not None
