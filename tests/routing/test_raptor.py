from __future__ import annotations

import pytest

from mosh.network.domain_types import BIKE, TRANSIT, WALK
from mosh.network.graph_builder import build_network_graph
from mosh.routing.parameters import SimulationParameters
from mosh.routing.raptor import DESTINATION_TOO_FAR, NO_PATH, ORIGIN_TOO_FAR, RaptorRouter, route
from mosh.routing.trip_result import PROPOSED, TripStatus


def test_single_ride_between_two_stops(two_stop_graph, loc):
    result = RaptorRouter(two_stop_graph).route(loc("A", 0.0), loc("B", 0.01), 0)

    assert result.status == TripStatus.SUCCESS
    assert result.trip_id == "A->B@0"
    itinerary = result.route
    assert itinerary.total_duration == 300
    assert itinerary.transfers == 0
    assert len(itinerary.legs) == 1
    leg = itinerary.legs[0]
    assert leg.mode == TRANSIT
    assert leg.route_id == "R1"
    assert leg.stop_ids == ("stop-0", "stop-1")
    assert leg.distance_m == pytest.approx(1111.95, abs=0.5)
    assert result.alternatives == ()


def test_missed_last_trip_means_no_path(two_stop_graph, loc):
    result = RaptorRouter(two_stop_graph).route(loc("A", 0.0), loc("B", 0.01), 100)

    assert result.status == TripStatus.FAILED
    assert result.route is None
    assert result.error == NO_PATH


def test_endpoints_far_from_network_fail_early(two_stop_graph, loc):
    router = RaptorRouter(two_stop_graph)

    far_origin = router.route(loc("X", 0.5, 0.5), loc("B", 0.01), 0)
    far_destination = router.route(loc("A", 0.0), loc("Y", 0.5), 0)

    assert far_origin.error == ORIGIN_TOO_FAR
    assert far_destination.error == DESTINATION_TOO_FAR


def test_egress_walk_is_appended(two_stop_graph, loc):
    result = RaptorRouter(two_stop_graph).route(loc("A", 0.0), loc("B2", 0.0105), 0)

    legs = result.route.legs
    assert [leg.mode for leg in legs] == [TRANSIT, WALK]
    assert legs[1].from_stop_id == "stop-1"
    # ~55.6 m at 1.4 m/s
    assert legs[1].duration == 40
    assert result.route.arrival_time == 340


def test_walking_transfer_between_two_routes(transfer_graph, loc):
    result = RaptorRouter(transfer_graph).route(loc("A", 0.0), loc("D", 0.02), 0)

    assert result.status == TripStatus.SUCCESS
    itinerary = result.route
    assert itinerary.total_duration == 900
    assert itinerary.transfers == 1
    assert [leg.mode for leg in itinerary.legs] == [TRANSIT, WALK, TRANSIT]
    walk = itinerary.legs[1]
    assert (walk.departure_time, walk.arrival_time) == (300, 372)
    assert [leg.route_id for leg in itinerary.legs if leg.mode == TRANSIT] == ["R1", "R2"]
    assert itinerary.route_ids == frozenset({"R1", "R2"})


def test_transfer_cap_excludes_longer_itineraries(transfer_graph, loc):
    params = SimulationParameters(max_transfers=0)
    result = RaptorRouter(transfer_graph).route(loc("A", 0.0), loc("D", 0.02), 0, params)

    assert result.status == TripStatus.FAILED
    assert result.error == NO_PATH


def test_pareto_alternatives_keep_fewer_transfers(transfer_payload, geojson, loc):
    payload = dict(transfer_payload)
    payload["features"] = transfer_payload["features"] + [
        geojson.line([(0.0, 0.0), (0.02, 0.0)], route_id="S", schedule=[[0, 2000]])
    ]
    graph = build_network_graph(payload, "transit")

    result = RaptorRouter(graph).route(loc("A", 0.0), loc("D", 0.02), 0)

    assert result.route.arrival_time == 900
    assert result.route.transfers == 1
    (alternative,) = result.alternatives
    assert alternative.arrival_time == 2000
    assert alternative.transfers == 0
    assert alternative.route_ids == frozenset({"S"})
    assert alternative.arrival_time > result.route.arrival_time


def test_direct_walk_wins_ties(two_stop_graph, loc):
    result = RaptorRouter(two_stop_graph).route(loc("A", 0.0), loc("M", 0.005), 0)

    itinerary = result.route
    assert itinerary.total_duration == 398
    assert [leg.mode for leg in itinerary.legs] == [WALK]
    assert itinerary.legs[0].from_stop_id is None
    assert itinerary.modal_category == "walkOnly"
    assert result.alternatives == ()


def test_bike_lane_segments_merge_into_one_leg(bike_payload, loc):
    graph = build_network_graph(bike_payload, "biking")

    result = RaptorRouter(graph).route(loc("A", 0.0), loc("C", 0.02), 0)

    itinerary = result.route
    assert itinerary.total_duration == 496
    assert itinerary.transfers == 0
    (leg,) = itinerary.legs
    assert leg.mode == BIKE
    assert leg.line_id == "Riverside lane"
    assert leg.stop_ids == ("stop-0", "stop-1", "stop-2")
    assert leg.distance_m == pytest.approx(2223.9, abs=1.0)
    assert itinerary.modal_category == "bikeOnly"
    assert itinerary.infrastructure_ids == frozenset({"Riverside lane"})


def test_overlong_itinerary_is_partial(two_stop_graph, loc):
    params = SimulationParameters(max_trip_duration=100)
    result = RaptorRouter(two_stop_graph).route(loc("A", 0.0), loc("B", 0.01), 0, params)

    assert result.status == TripStatus.PARTIAL
    assert result.has_route
    assert not result.is_success
    assert "max_trip_duration" in result.error


def test_module_level_route_passes_metadata(two_stop_graph, loc):
    result = route(
        two_stop_graph,
        loc("A", 0.0),
        loc("B", 0.01),
        0,
        trip_id="proposed:A->B@00:00:00",
        scenario=PROPOSED,
        demand=3.0,
    )

    assert result.trip_id == "proposed:A->B@00:00:00"
    assert result.scenario == PROPOSED
    assert result.demand == 3.0
    payload = result.to_dict()
    assert payload["status"] == "success"
    assert payload["route"]["legs"][0]["routeId"] == "R1"
    assert payload["route"]["legs"][0]["geometry"]["type"] == "LineString"


def test_later_express_trip_overtakes_earlier_departure(geojson, loc):
    payload = geojson.collection(
        geojson.line([(0.0, 0.0), (0.01, 0.0)], route_id="R1", schedule=[[0, 1000], [10, 100]])
    )
    graph = build_network_graph(payload, "transit")

    result = RaptorRouter(graph).route(loc("A", 0.0), loc("B", 0.01), 0)

    assert result.route.arrival_time == 100
    (leg,) = result.route.legs
    assert leg.route_id == "R1"
    assert leg.trip_id == "R1:1"
    assert leg.departure_time == 10


def test_repeated_queries_give_identical_results(transfer_payload, loc):
    first = RaptorRouter(build_network_graph(transfer_payload, "transit"))
    second = RaptorRouter(build_network_graph(transfer_payload, "transit"))

    runs = [
        router.route(loc("A", 0.0), loc("D", 0.02), 0).to_dict()
        for router in (first, first, second)
    ]

    assert runs[0] == runs[1] == runs[2]


@pytest.mark.parametrize("departure", [0, 100, 500, 600])
def test_arrival_never_precedes_departure(transfer_payload, geojson, loc, departure):
    payload = dict(transfer_payload)
    payload["features"] = transfer_payload["features"] + [
        geojson.line([(0.0, 0.0), (0.02, 0.0)], route_id="S", schedule=[[0, 2000], [500, 1400]])
    ]
    router = RaptorRouter(build_network_graph(payload, "transit"))
    points = [loc("A", 0.0), loc("B", 0.01), loc("C", 0.0109), loc("D", 0.02)]

    for origin in points:
        for destination in points:
            if origin is destination:
                continue
            result = router.route(origin, destination, departure)
            if result.route is None:
                continue
            assert result.route.arrival_time >= departure
            clock = departure
            for leg in result.route.legs:
                assert leg.departure_time >= clock
                assert leg.arrival_time >= leg.departure_time
                clock = leg.arrival_time
            assert clock == result.route.arrival_time
