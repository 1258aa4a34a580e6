"""Network package exports."""

from .domain_types import (
    BIKE,
    BIKING_NETWORK,
    TRANSIT,
    TRANSIT_NETWORK,
    WALK,
    Stop,
    StreetEdge,
    Transfer,
    TransitRoute,
    TransitTrip,
)
from .graph_builder import (
    BuildIssue,
    BuildReport,
    GraphBuildOptions,
    NetworkBuildResult,
    NetworkGraph,
    NetworkGraphBuilder,
    build_network_graph,
)
from .stop_locator import StopLocator

__all__ = [
    "BIKE",
    "BIKING_NETWORK",
    "BuildIssue",
    "BuildReport",
    "GraphBuildOptions",
    "NetworkBuildResult",
    "NetworkGraph",
    "NetworkGraphBuilder",
    "Stop",
    "StopLocator",
    "StreetEdge",
    "TRANSIT",
    "TRANSIT_NETWORK",
    "Transfer",
    "TransitRoute",
    "TransitTrip",
    "WALK",
    "build_network_graph",
]
