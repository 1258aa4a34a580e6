"""Batch execution exports."""

from .od_matrix import ODMatrix, ODPair
from .scheduler import BatchScheduler, RoutingTask, SchedulerRun, SchedulerRunReport, build_tasks

__all__ = [
    "BatchScheduler",
    "ODMatrix",
    "ODPair",
    "RoutingTask",
    "SchedulerRun",
    "SchedulerRunReport",
    "build_tasks",
]
