from __future__ import annotations

import threading

import pytest

from mosh.batch.od_matrix import ODMatrix
from mosh.errors import AlreadyRunning, InvalidTransition, JobNotFound
from mosh.jobs.models import JobError, JobStatus, SimulationJob
from mosh.jobs.store import InMemoryJobStore


def _make_job(od_mapping, job_id: str = "job-1") -> SimulationJob:
    return SimulationJob(
        job_id=job_id,
        city_id="c-1",
        name="AM peak",
        baseline_network_id="base",
        od_matrix=ODMatrix.from_mapping(od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0)))),
    )


@pytest.fixture
def store(od_mapping):
    store = InMemoryJobStore()
    store.add(_make_job(od_mapping))
    return store


def test_add_stamps_queue_time_and_returns_snapshots(store):
    job = store.get("job-1")

    assert job.status == JobStatus.QUEUED
    assert job.queue_info.queued_at is not None
    job.tags.append("mutated")
    assert store.get("job-1").tags == []


def test_duplicate_and_missing_jobs(store, od_mapping):
    with pytest.raises(ValueError):
        store.add(_make_job(od_mapping))
    with pytest.raises(JobNotFound):
        store.get("nope")


def test_claim_is_compare_and_set(store):
    claimed = store.claim("job-1")

    assert claimed.status == JobStatus.RUNNING
    assert claimed.queue_info.started_at is not None
    with pytest.raises(AlreadyRunning):
        store.claim("job-1")


def test_concurrent_claims_produce_one_winner(store):
    barrier = threading.Barrier(2)
    outcomes = []
    outcomes_lock = threading.Lock()

    def _claim():
        barrier.wait()
        try:
            store.claim("job-1")
            outcome = "claimed"
        except AlreadyRunning:
            outcome = "rejected"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_claim) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["claimed", "rejected"]
    assert store.status("job-1") == JobStatus.RUNNING


def test_progress_only_moves_forward(store):
    store.claim("job-1")

    store.persist_job_status("job-1", JobStatus.RUNNING, 40)
    store.persist_job_status("job-1", "running", 30)

    assert store.get("job-1").progress == 40


def test_completion_forces_full_progress(store):
    store.claim("job-1")
    store.persist_job_status("job-1", JobStatus.RUNNING, 10)

    job = store.persist_job_status("job-1", JobStatus.COMPLETED)

    assert job.progress == 100
    assert job.queue_info.completed_at is not None
    assert job.queue_info.execution_seconds >= 0


def test_terminal_jobs_reject_transitions(store):
    store.claim("job-1")
    store.persist_job_status("job-1", JobStatus.CANCELLED)

    with pytest.raises(InvalidTransition):
        store.persist_job_status("job-1", JobStatus.COMPLETED)
    # late scheduler progress is ignored rather than raised
    late = store.persist_job_status("job-1", JobStatus.RUNNING, 90)
    assert late.status == JobStatus.CANCELLED


def test_running_is_reached_only_by_claim(store):
    with pytest.raises(InvalidTransition):
        store.persist_job_status("job-1", JobStatus.RUNNING, 10)
    with pytest.raises(InvalidTransition):
        store.persist_job_status("job-1", JobStatus.COMPLETED)


def test_failure_records_error(store):
    store.claim("job-1")

    job = store.persist_job_status("job-1", JobStatus.FAILED, error=JobError("Timeout", "too slow"))

    assert job.status == JobStatus.FAILED
    assert job.error.kind == "Timeout"
    assert job.to_dict()["error"]["message"] == "too slow"


def test_results_are_stored_with_the_terminal_status(store):
    assert store.get_result("job-1") is None
    store.claim("job-1")

    job = store.persist_result(
        "job-1", {"statistics": {"totalTrips": 0}}, [], summary={"totalTrips": 0}
    )

    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    record = store.get_result("job-1")
    assert record.statistics == {"statistics": {"totalTrips": 0}}
    assert record.trip_details == ()
    assert store.get("job-1").results_summary == {"totalTrips": 0}


def test_results_of_a_cancelled_job_are_refused(store):
    store.claim("job-1")
    store.persist_job_status("job-1", JobStatus.CANCELLED)

    with pytest.raises(InvalidTransition):
        store.persist_result("job-1", {"statistics": {}}, [], summary={"totalTrips": 0})

    assert store.get_result("job-1") is None
    assert store.get("job-1").results_summary is None
    with pytest.raises(ValueError):
        store.persist_result("job-1", {}, [], status=JobStatus.RUNNING)


def test_list_jobs_filters_by_status(store, od_mapping):
    store.add(_make_job(od_mapping, "job-2"))
    store.claim("job-2")

    assert [job.job_id for job in store.list_jobs("running")] == ["job-2"]
    assert len(store.list_jobs()) == 2
