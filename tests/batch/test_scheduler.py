from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import pytest

from mosh.batch.od_matrix import ODMatrix
from mosh.batch.scheduler import BatchScheduler, build_tasks
from mosh.routing.parameters import SimulationParameters
from mosh.routing.trip_result import BASELINE, PROPOSED, TripStatus


@dataclass
class _Job:
    job_id: str
    od_matrix: ODMatrix
    parameters: SimulationParameters


@dataclass
class _Snapshot:
    status: str


class _RecordingStore:
    """Collects progress writes; flips to cancelled once ``cancel_at`` percent is written."""

    def __init__(self, cancel_at: int | None = None):
        self.status = "running"
        self.cancel_at = cancel_at
        self.writes: List[Tuple[str, int]] = []

    def get(self, job_id: str) -> _Snapshot:
        return _Snapshot(self.status)

    def persist_job_status(self, job_id: str, status: str, progress: int | None = None) -> None:
        self.writes.append((status, progress))
        if self.cancel_at is not None and progress is not None and progress >= self.cancel_at:
            self.status = "cancelled"


class _TickClock:
    """Advances one second per call."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        value = self.now
        self.now += 1.0
        return value


def _make_job(od_mapping, departures: int = 1) -> _Job:
    matrix = ODMatrix.from_mapping(
        od_mapping(
            ("A", (0.0, 0.0), "B", (0.01, 0.0)),
            ("A", (0.0, 0.0), "M", (0.005, 0.0)),
        )
    )
    end = f"00:{15 * (departures - 1):02d}"
    params = SimulationParameters(departure_time_start="00:00", departure_time_end=end, time_step=15)
    return _Job("job-1", matrix, params)


def test_build_tasks_orders_scenarios_pairs_then_departures(od_mapping):
    job = _make_job(od_mapping, departures=2)

    tasks = build_tasks(job.od_matrix, job.parameters, (BASELINE, PROPOSED))

    assert len(tasks) == 8
    assert [t.index for t in tasks] == list(range(8))
    assert tasks[0].trip_id == "baseline:A->B@00:00:00"
    assert tasks[1].trip_id == "baseline:A->B@00:15:00"
    assert tasks[2].trip_id == "baseline:A->M@00:00:00"
    assert tasks[4].trip_id == "proposed:A->B@00:00:00"


def test_inline_run_routes_every_task(two_stop_graph, od_mapping):
    job = _make_job(od_mapping)
    progress: List[Tuple[int, int]] = []
    store = _RecordingStore()

    run = BatchScheduler(store=store, on_progress=lambda done, total: progress.append((done, total))).run(
        job, {BASELINE: two_stop_graph}
    )
    results = list(run)

    assert [r.trip_id for r in results] == ["baseline:A->B@00:00:00", "baseline:A->M@00:00:00"]
    assert [r.status for r in results] == [TripStatus.SUCCESS, TripStatus.SUCCESS]
    assert progress == [(1, 2), (2, 2)]
    assert store.writes == [("running", 50), ("running", 100)]
    assert run.report.finished
    assert run.report.completed == 2


def test_proposed_graph_adds_a_scenario(two_stop_graph, transfer_graph, od_mapping):
    job = _make_job(od_mapping)

    results = list(BatchScheduler().run(job, {BASELINE: two_stop_graph, PROPOSED: transfer_graph}))

    assert [r.scenario for r in results] == [BASELINE, BASELINE, PROPOSED, PROPOSED]


def test_zero_budget_times_out_before_routing(two_stop_graph, od_mapping):
    job = _make_job(od_mapping)

    run = BatchScheduler(max_runtime_ms=0, clock=_TickClock()).run(job, {BASELINE: two_stop_graph})

    assert list(run) == []
    assert run.report.timed_out
    assert not run.report.finished


def test_budget_stops_at_task_boundary(two_stop_graph, od_mapping):
    job = _make_job(od_mapping, departures=2)

    run = BatchScheduler(max_runtime_ms=2500, clock=_TickClock()).run(job, {BASELINE: two_stop_graph})
    results = list(run)

    assert len(results) == 2
    assert run.report.timed_out
    assert run.report.completed == 2
    assert run.report.total_tasks == 4


def test_cancellation_is_observed_between_tasks(two_stop_graph, od_mapping):
    job = _make_job(od_mapping, departures=2)
    store = _RecordingStore(cancel_at=50)

    run = BatchScheduler(store=store).run(job, {BASELINE: two_stop_graph})
    results = list(run)

    assert len(results) == 2
    assert run.report.cancelled
    assert store.writes == [("running", 25), ("running", 50)]


def test_pool_matches_inline_order(two_stop_graph, od_mapping):
    job = _make_job(od_mapping, departures=2)

    inline = list(BatchScheduler().run(job, {BASELINE: two_stop_graph}))
    pooled_run = BatchScheduler(worker_concurrency=2).run(job, {BASELINE: two_stop_graph})
    pooled = list(pooled_run)

    assert pooled == inline
    assert pooled_run.report.completed == 4
    assert pooled_run.report.finished


def test_runs_are_not_restartable(two_stop_graph, od_mapping):
    run = BatchScheduler().run(_make_job(od_mapping), {BASELINE: two_stop_graph})
    list(run)

    with pytest.raises(RuntimeError):
        iter(run)


def test_missing_graphs_are_rejected(od_mapping):
    with pytest.raises(ValueError):
        BatchScheduler().run(_make_job(od_mapping), {})
