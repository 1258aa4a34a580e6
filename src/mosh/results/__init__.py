"""Result aggregation and export."""

from .aggregator import (
    AggregateStatistics,
    BaselineComparison,
    OriginAccessibility,
    QualityMetrics,
    ResultAggregator,
    TemporalBucket,
    compare_with_baseline,
)
from .export import (
    accessibility_grid,
    corridor_usage,
    geospatial_data,
    result_document,
    trips_to_dataframe,
    write_statistics_json,
    write_trips_csv,
)

__all__ = [
    "AggregateStatistics",
    "BaselineComparison",
    "OriginAccessibility",
    "QualityMetrics",
    "ResultAggregator",
    "TemporalBucket",
    "accessibility_grid",
    "compare_with_baseline",
    "corridor_usage",
    "geospatial_data",
    "result_document",
    "trips_to_dataframe",
    "write_statistics_json",
    "write_trips_csv",
]
