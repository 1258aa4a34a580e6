"""Job lifecycle: submission, priority dispatch, execution and terminal bookkeeping.

This module provides :class:`JobLifecycleManager`, the only component that
mutates a :class:`~mosh.jobs.models.SimulationJob` while it executes. The CRUD
layer submits jobs and may request cancellation; everything else (claiming,
progress, results, terminal status) flows through here into the job store.

State machine
-------------
``queued -> running -> {completed, failed, cancelled}`` plus
``queued -> cancelled``. ``queued -> running`` happens only through the
store's atomic claim, so two dispatchers racing on one job produce exactly one
run; the loser sees :class:`~mosh.errors.AlreadyRunning` and the job is left
untouched.

Execution
---------
1. Resolve the baseline (and optional proposed) network through the
   repository and build or reuse the cached graphs.
2. Run the :class:`~mosh.batch.scheduler.BatchScheduler` over every
   scenario x OD pair x departure time.
3. Annotate proposed trips against the baseline, aggregate statistics and
   persist them together with the trip details.

Failures never escape as exceptions from a claimed job: graph build errors,
unknown networks, invalid parameters and unexpected crashes all end the job in
``failed`` with the error kind, message and stack trace recorded. A timeout
also ends in ``failed`` (kind ``Timeout``) but keeps the partial results.
Cancellation discards every collected result.

Example
-------
>>> store = InMemoryJobStore()
>>> networks = InMemoryNetworkRepository()
>>> networks.add(NetworkRecord(id="net-1", type="transit", version=1, geojson=payload))
>>> manager = JobLifecycleManager(store, networks)
>>> job_id = manager.submit({"name": "AM peak", "city": "c-1",
...                          "baselineNetwork": "net-1", "odMatrix": od})
>>> manager.run_pending()
>>> store.get(job_id).status
<JobStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import traceback
import uuid
from time import perf_counter
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from mosh.batch.scheduler import BatchScheduler
from mosh.errors import (
    AlreadyRunning,
    InvalidParameters,
    InvalidTransition,
    MoshError,
)
from mosh.network.graph_builder import GraphBuildOptions, NetworkGraph
from mosh.results.aggregator import ResultAggregator, compare_with_baseline
from mosh.results.export import geospatial_data
from mosh.routing.trip_result import BASELINE, PROPOSED, TripResult
from mosh.settings import EngineSettings

from .access import CANCEL_SIMULATION, SUBMIT_SIMULATION, require_capability
from .models import JobError, JobStatus, SimulationJob
from .networks import NetworkGraphCache, NetworkRepository
from .store import JobStore

logger = logging.getLogger(__name__)

TIMEOUT = "Timeout"
INTERNAL_ERROR = "InternalError"

JobProgressCallback = Callable[[str, int, int], None]


class JobLifecycleManager:
    def __init__(
        self,
        store: JobStore,
        networks: NetworkRepository,
        *,
        settings: EngineSettings | None = None,
        graph_cache: NetworkGraphCache | None = None,
        clock: Callable[[], float] = perf_counter,
        on_progress: JobProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._networks = networks
        self._settings = settings or EngineSettings()
        self._graphs = graph_cache if graph_cache is not None else NetworkGraphCache(
            GraphBuildOptions(
                snap_tolerance_deg=self._settings.snap_tolerance_deg,
                transfer_radius_m=self._settings.transfer_radius_m,
            )
        )
        self._clock = clock
        self._on_progress = on_progress

        self._queue: List[Tuple[int, int, str]] = []
        self._sequence = itertools.count()
        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    # ---------------------------------------------------------------- submission
    def submit(
        self,
        job: SimulationJob | Mapping[str, object],
        *,
        requester_roles: Iterable[str] | None = None,
    ) -> str:
        """Validate, persist as queued and enqueue by priority. Returns immediately."""
        if requester_roles is not None:
            require_capability(requester_roles, SUBMIT_SIMULATION)
        if not isinstance(job, SimulationJob):
            job = SimulationJob.from_mapping(job, job_id=uuid.uuid4().hex)
        if job.status != JobStatus.QUEUED:
            raise InvalidParameters(f"Only queued jobs can be submitted (got {job.status.value})")
        if len(job.od_matrix) == 0:
            raise InvalidParameters("OD matrix has no origin-destination pairs")
        self._store.add(job)
        with self._cond:
            heapq.heappush(self._queue, (job.priority.rank, next(self._sequence), job.job_id))
            self._cond.notify()
        logger.info("Job %s submitted (priority=%s, pairs=%d)", job.job_id, job.priority.value, len(job.od_matrix))
        return job.job_id

    def cancel(self, job_id: str, *, requester_roles: Iterable[str] | None = None) -> SimulationJob:
        """Cancel a queued or running job. A running scheduler notices at its next task boundary."""
        if requester_roles is not None:
            require_capability(requester_roles, CANCEL_SIMULATION)
        job = self._store.persist_job_status(job_id, JobStatus.CANCELLED)
        logger.info("Job %s cancellation requested", job_id)
        with self._cond:
            self._cond.notify_all()
        return job

    # ---------------------------------------------------------------- execution
    def run_job(self, job_id: str) -> SimulationJob:
        """Claim ``job_id`` and execute it synchronously; raises AlreadyRunning if another run owns it."""
        job = self._store.claim(job_id)
        try:
            self._execute(job)
        finally:
            with self._cond:
                self._cond.notify_all()
        return self._store.get(job_id)

    def run_pending(self) -> List[str]:
        """Drain the queue on the calling thread in priority order; returns the job ids that ran."""
        ran: List[str] = []
        while True:
            job_id = self._next_job(block=False)
            if job_id is None:
                return ran
            if self._try_run(job_id):
                ran.append(job_id)

    def start(self, num_threads: int | None = None) -> None:
        if self._threads:
            raise RuntimeError("Dispatcher threads already running")
        self._stop.clear()
        count = max(1, num_threads or self._settings.dispatch_threads)
        for idx in range(count):
            thread = threading.Thread(target=self._dispatch_loop, name=f"mosh-dispatch-{idx}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d dispatcher thread(s)", count)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        with self._cond:
            self._cond.notify_all()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def wait(self, job_id: str, timeout: float | None = None) -> SimulationJob:
        """Block until ``job_id`` is terminal (or ``timeout`` seconds pass) and return its record."""
        with self._cond:
            self._cond.wait_for(lambda: self._store.get(job_id).is_terminal, timeout)
        return self._store.get(job_id)

    # ---------------------------------------------------------------- internals
    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            job_id = self._next_job(block=True)
            if job_id is None:
                continue
            self._try_run(job_id)

    def _next_job(self, *, block: bool) -> Optional[str]:
        with self._cond:
            while not self._queue:
                if not block or self._stop.is_set():
                    return None
                self._cond.wait(timeout=0.5)
            _, _, job_id = heapq.heappop(self._queue)
            return job_id

    def _try_run(self, job_id: str) -> bool:
        try:
            self.run_job(job_id)
        except AlreadyRunning as exc:
            logger.info("Skipping job %s: %s", job_id, exc)
            return False
        return True

    def _execute(self, job: SimulationJob) -> None:
        started = self._clock()
        try:
            graphs, baseline_route_ids = self._load_graphs(job)
            scheduler = BatchScheduler.from_settings(
                self._settings,
                store=self._store,
                clock=self._clock,
                on_progress=self._progress_callback(job.job_id),
            )
            run = scheduler.run(job, graphs)
            trips = list(run)
            report = run.report
            if report.cancelled or self._store.get(job.job_id).status == JobStatus.CANCELLED:
                logger.warning("Job %s cancelled; discarding %d collected trips", job.job_id, len(trips))
                return

            compute_time = self._clock() - started
            primary, trip_details = self._split_scenarios(job, trips)
            baseline = [t for t in trips if t.scenario == BASELINE] if PROPOSED in graphs else None
            aggregator = ResultAggregator(
                job.parameters.emission_factors,
                algorithm_version=self._settings.algorithm_version,
                processing_node=self._settings.processing_node,
            )
            statistics = aggregator.aggregate(
                primary,
                baseline,
                baseline_route_ids=baseline_route_ids if baseline is not None else None,
                compute_time=compute_time,
            )
            document = statistics.to_dict()
            document["geospatialData"] = geospatial_data(
                statistics, primary, (pair.origin for pair in job.od_matrix)
            )
            status, error = JobStatus.COMPLETED, None
            if report.timed_out:
                status = JobStatus.FAILED
                error = JobError(
                    kind=TIMEOUT,
                    message=(
                        f"Simulation exceeded max runtime of {self._settings.max_runtime_ms} ms "
                        f"after {report.completed}/{report.total_tasks} routing tasks"
                    ),
                )
            try:
                self._store.persist_result(
                    job.job_id,
                    document,
                    trip_details,
                    status=status,
                    error=error,
                    summary=statistics.summary(compute_time),
                )
            except InvalidTransition as exc:
                logger.warning(
                    "Job %s left running before its results were stored; discarding them: %s", job.job_id, exc
                )
                return

            if error is not None:
                logger.error("Job %s failed (%s): %s", job.job_id, error.kind, error.message)
                return
            logger.info(
                "Job %s completed: %d trips (%d successful) in %.2fs",
                job.job_id,
                statistics.total_trips,
                statistics.successful_trips,
                compute_time,
            )
        except (MoshError, ValueError) as exc:
            kind = getattr(exc, "kind", InvalidParameters.kind)
            logger.error("Job %s failed (%s): %s", job.job_id, kind, exc)
            self._fail(job.job_id, kind, str(exc), traceback.format_exc())
        except Exception as exc:
            logger.exception("Job %s crashed", job.job_id)
            self._fail(job.job_id, INTERNAL_ERROR, str(exc) or exc.__class__.__name__, traceback.format_exc())

    def _load_graphs(self, job: SimulationJob) -> Tuple[Dict[str, NetworkGraph], frozenset]:
        graphs: Dict[str, NetworkGraph] = {}
        baseline = self._graphs.get(self._networks.get_network_graph(job.baseline_network_id))
        graphs[BASELINE] = baseline.graph
        if job.proposed_network_id:
            proposed = self._graphs.get(self._networks.get_network_graph(job.proposed_network_id))
            graphs[PROPOSED] = proposed.graph
        return graphs, baseline.graph.route_ids | baseline.graph.line_ids

    def _split_scenarios(
        self, job: SimulationJob, trips: List[TripResult]
    ) -> Tuple[List[TripResult], List[TripResult]]:
        baseline = [t for t in trips if t.scenario == BASELINE]
        proposed = [t for t in trips if t.scenario == PROPOSED]
        if not job.proposed_network_id:
            return baseline, baseline
        annotated = compare_with_baseline(proposed, baseline, job.parameters.emission_factors)
        return annotated, annotated + baseline

    def _progress_callback(self, job_id: str) -> Optional[Callable[[int, int], None]]:
        if self._on_progress is None:
            return None
        callback = self._on_progress
        return lambda completed, total: callback(job_id, completed, total)

    def _fail(self, job_id: str, kind: str, message: str, stack: str | None = None) -> None:
        self._transition(job_id, JobStatus.FAILED, JobError(kind=kind, message=message, stack=stack))

    def _transition(self, job_id: str, status: JobStatus, error: JobError | None = None) -> None:
        try:
            self._store.persist_job_status(job_id, status, error=error)
        except InvalidTransition as exc:
            # the job was cancelled while the run was finishing
            logger.warning("Job %s: %s", job_id, exc)


__all__ = ["INTERNAL_ERROR", "JobLifecycleManager", "TIMEOUT"]
