"""
Fan a simulation job out into routing tasks and collect their TripResults.

Tasks are the product scenario x OD pair x departure time. With
``worker_concurrency > 1`` they run on a ``multiprocessing`` pool whose
initializer installs the immutable graphs once per worker; at most
``2 * worker_concurrency`` tasks are in flight and results are collected in
dispatch order so the output sequence does not depend on worker timing.

Timeout and cancellation are observed at task boundaries only.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import os
from collections import deque
from dataclasses import dataclass, field
from time import perf_counter
from typing import Callable, Deque, Dict, Iterator, List, Mapping, Sequence, Tuple

from mosh.clock import format_time_of_day
from mosh.network.graph_builder import NetworkGraph
from mosh.routing.parameters import SimulationParameters
from mosh.routing.raptor import RaptorRouter
from mosh.routing.trip_result import BASELINE, PROPOSED, Location, TripResult

from .od_matrix import ODMatrix

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_CANCELLED = "cancelled"
_RUNNING = "running"


@dataclass(frozen=True)
class RoutingTask:
    index: int
    scenario: str
    origin: Location
    destination: Location
    departure_time: int
    demand: float = 1.0

    @property
    def trip_id(self) -> str:
        return (
            f"{self.scenario}:{self.origin.id}->{self.destination.id}"
            f"@{format_time_of_day(self.departure_time)}"
        )


@dataclass
class SchedulerRunReport:
    total_tasks: int = 0
    dispatched: int = 0
    completed: int = 0
    timed_out: bool = False
    cancelled: bool = False
    elapsed_ms: float = 0.0
    last_progress: int = 0
    scenarios: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def finished(self) -> bool:
        return not self.timed_out and not self.cancelled and self.completed == self.total_tasks


def build_tasks(
    od_matrix: ODMatrix, params: SimulationParameters, scenarios: Sequence[str]
) -> List[RoutingTask]:
    tasks: List[RoutingTask] = []
    for scenario in scenarios:
        for pair in od_matrix:
            for departure in pair.departure_times(params):
                tasks.append(
                    RoutingTask(
                        index=len(tasks),
                        scenario=scenario,
                        origin=pair.origin,
                        destination=pair.destination,
                        departure_time=departure,
                        demand=pair.demand,
                    )
                )
    return tasks


WORKER_ROUTERS: Dict[str, RaptorRouter] = {}
WORKER_PARAMS: SimulationParameters | None = None


def _init_worker(payload: dict) -> None:
    """Install the read-only graphs and parameters inside each worker process."""

    global WORKER_ROUTERS, WORKER_PARAMS
    WORKER_ROUTERS = {scenario: RaptorRouter(graph) for scenario, graph in payload["graphs"].items()}
    WORKER_PARAMS = payload["parameters"]


def _route_task(task: RoutingTask) -> TripResult:
    if WORKER_PARAMS is None:
        raise RuntimeError("Worker routing state not initialised.")
    return _execute(task, WORKER_ROUTERS, WORKER_PARAMS)


def _execute(task: RoutingTask, routers: Mapping[str, RaptorRouter], params: SimulationParameters) -> TripResult:
    return routers[task.scenario].route(
        task.origin,
        task.destination,
        task.departure_time,
        params,
        trip_id=task.trip_id,
        scenario=task.scenario,
        demand=task.demand,
    )


class SchedulerRun:
    """Single-use iterator over the TripResults of one scheduler run; ``report`` fills as it drains."""

    def __init__(self, results: Iterator[TripResult], report: SchedulerRunReport):
        self._results = results
        self._started = False
        self.report = report

    def __iter__(self) -> Iterator[TripResult]:
        if self._started:
            raise RuntimeError("Scheduler runs are not restartable")
        self._started = True
        return self._results


class BatchScheduler:
    def __init__(
        self,
        *,
        worker_concurrency: int = 1,
        max_runtime_ms: int | None = None,
        store=None,
        clock: Callable[[], float] = perf_counter,
        on_progress: ProgressCallback | None = None,
    ):
        self.worker_concurrency = max(1, int(worker_concurrency))
        self.max_runtime_ms = max_runtime_ms
        self.store = store
        self.clock = clock
        self.on_progress = on_progress

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "BatchScheduler":
        return cls(
            worker_concurrency=settings.worker_concurrency,
            max_runtime_ms=settings.max_runtime_ms,
            **kwargs,
        )

    def run(self, job, graphs: Mapping[str, NetworkGraph]) -> SchedulerRun:
        """
        Schedule every task of ``job`` against ``graphs`` (keyed by scenario).

        ``job`` needs ``job_id``, ``od_matrix`` and ``parameters``. Only the
        scenarios present in ``graphs`` are scheduled, baseline first.
        """
        scenarios = tuple(s for s in (BASELINE, PROPOSED) if s in graphs)
        if not scenarios:
            raise ValueError("BatchScheduler.run needs at least one scenario graph")
        tasks = build_tasks(job.od_matrix, job.parameters, scenarios)
        report = SchedulerRunReport(total_tasks=len(tasks), scenarios=scenarios)
        logger.info(
            "Job %s: scheduling %d routing tasks over scenarios %s with %d worker(s)",
            job.job_id,
            len(tasks),
            ", ".join(scenarios),
            self.worker_concurrency,
        )
        if self.worker_concurrency <= 1 or len(tasks) <= 1:
            results = self._run_inline(job, graphs, tasks, report)
        else:
            results = self._run_pool(job, graphs, tasks, report)
        return SchedulerRun(results, report)

    # ---------------------------------------------------------------- execution
    def _run_inline(self, job, graphs, tasks: List[RoutingTask], report: SchedulerRunReport) -> Iterator[TripResult]:
        routers = {scenario: RaptorRouter(graph) for scenario, graph in graphs.items()}
        started = self.clock()
        for task in tasks:
            if self._should_stop(job.job_id, started, report):
                break
            report.dispatched += 1
            result = _execute(task, routers, job.parameters)
            self._task_done(job.job_id, started, report)
            yield result
        report.elapsed_ms = self._elapsed_ms(started)

    def _run_pool(self, job, graphs, tasks: List[RoutingTask], report: SchedulerRunReport) -> Iterator[TripResult]:
        payload = {"graphs": dict(graphs), "parameters": job.parameters}
        window = 2 * self.worker_concurrency
        ctx = mp.get_context("spawn" if os.name == "nt" else "fork")
        started = self.clock()
        pending: Deque = deque()
        next_task = 0
        stopping = False
        with ctx.Pool(
            processes=self.worker_concurrency,
            initializer=_init_worker,
            initargs=(payload,),
        ) as pool:
            while True:
                while not stopping and next_task < len(tasks) and len(pending) < window:
                    if self._should_stop(job.job_id, started, report):
                        stopping = True
                        break
                    pending.append(pool.apply_async(_route_task, (tasks[next_task],)))
                    next_task += 1
                    report.dispatched += 1
                if not pending:
                    break
                if report.timed_out:
                    # abandon in-flight work; the pool is terminated on exit
                    pending.clear()
                    break
                result = pending.popleft().get()
                self._task_done(job.job_id, started, report)
                if report.cancelled:
                    continue
                yield result
                if not stopping and self._should_stop(job.job_id, started, report):
                    stopping = True
        report.elapsed_ms = self._elapsed_ms(started)

    # ---------------------------------------------------------------- boundaries
    def _should_stop(self, job_id: str, started: float, report: SchedulerRunReport) -> bool:
        if report.cancelled or report.timed_out:
            return True
        if self._is_cancelled(job_id):
            report.cancelled = True
            logger.warning("Job %s cancelled after %d/%d tasks", job_id, report.completed, report.total_tasks)
            return True
        remaining = report.total_tasks - report.completed
        if self.max_runtime_ms is not None and remaining > 0:
            if self._elapsed_ms(started) > self.max_runtime_ms:
                report.timed_out = True
                logger.warning(
                    "Job %s exceeded max runtime of %d ms after %d/%d tasks",
                    job_id,
                    self.max_runtime_ms,
                    report.completed,
                    report.total_tasks,
                )
                return True
        return False

    def _is_cancelled(self, job_id: str) -> bool:
        if self.store is None:
            return False
        return self.store.get(job_id).status == _CANCELLED

    def _task_done(self, job_id: str, started: float, report: SchedulerRunReport) -> None:
        report.completed += 1
        percent = report.completed * 100 // report.total_tasks if report.total_tasks else 100
        if self.on_progress is not None:
            self.on_progress(report.completed, report.total_tasks)
        if percent > report.last_progress:
            report.last_progress = percent
            if self.store is not None and not report.cancelled:
                self.store.persist_job_status(job_id, _RUNNING, percent)

    def _elapsed_ms(self, started: float) -> float:
        return (self.clock() - started) * 1000.0


__all__ = [
    "BatchScheduler",
    "RoutingTask",
    "SchedulerRun",
    "SchedulerRunReport",
    "build_tasks",
]
