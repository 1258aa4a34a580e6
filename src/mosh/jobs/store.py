"""Job persistence contract and the in-memory implementation used by the CLI and tests."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from mosh.errors import AlreadyRunning, InvalidTransition, JobNotFound
from mosh.routing.trip_result import TripResult

from .models import JobError, JobStatus, SimulationJob, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationResultRecord:
    job_id: str
    statistics: Dict[str, object]
    trip_details: tuple
    persisted_at: datetime = field(default_factory=utc_now)


class JobStore(Protocol):
    def add(self, job: SimulationJob) -> None: ...

    def get(self, job_id: str) -> SimulationJob: ...

    def claim(self, job_id: str) -> SimulationJob: ...

    def persist_job_status(
        self,
        job_id: str,
        status: JobStatus | str,
        progress: int | None = None,
        error: JobError | None = None,
    ) -> SimulationJob: ...

    def persist_result(
        self,
        job_id: str,
        statistics: Dict[str, object],
        trip_details: Sequence[TripResult],
        *,
        status: JobStatus | str = JobStatus.COMPLETED,
        error: JobError | None = None,
        summary: Dict[str, object] | None = None,
    ) -> SimulationJob: ...


class InMemoryJobStore:
    """
    Thread-safe job table.

    Every read returns a snapshot; all mutations go through the lock so the
    progress counter and the queued -> running claim are atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: Dict[str, SimulationJob] = {}
        self._results: Dict[str, SimulationResultRecord] = {}

    # ------------------------------------------------------------------ jobs
    def add(self, job: SimulationJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists")
            stored = job.snapshot()
            if stored.queue_info.queued_at is None:
                stored.queue_info.queued_at = utc_now()
            self._jobs[job.job_id] = stored

    def get(self, job_id: str) -> SimulationJob:
        with self._lock:
            return self._require(job_id).snapshot()

    def status(self, job_id: str) -> JobStatus:
        with self._lock:
            return self._require(job_id).status

    def list_jobs(self, status: JobStatus | str | None = None) -> List[SimulationJob]:
        with self._lock:
            jobs = list(self._jobs.values())
            if status is not None:
                wanted = JobStatus(status)
                jobs = [job for job in jobs if job.status == wanted]
            return [job.snapshot() for job in jobs]

    def claim(self, job_id: str) -> SimulationJob:
        """Compare-and-set ``queued -> running``; any other current status raises AlreadyRunning."""
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.QUEUED:
                raise AlreadyRunning(job_id, job.status.value)
            job.status = JobStatus.RUNNING
            job.progress = 0
            job.queue_info.started_at = utc_now()
            logger.info("Job %s claimed (queued -> running)", job_id)
            return job.snapshot()

    def persist_job_status(
        self,
        job_id: str,
        status: JobStatus | str,
        progress: int | None = None,
        error: JobError | None = None,
    ) -> SimulationJob:
        target = JobStatus(status)
        with self._lock:
            job = self._require(job_id)
            if job.status == target:
                if not target.is_terminal and progress is not None and progress > job.progress:
                    job.progress = min(int(progress), 100)
                return job.snapshot()
            if job.status.is_terminal:
                if target == JobStatus.RUNNING:
                    # late progress from a scheduler whose job was cancelled
                    return job.snapshot()
                raise InvalidTransition(job_id, job.status.value, target.value)
            if target == JobStatus.RUNNING:
                raise InvalidTransition(job_id, job.status.value, target.value)
            if not job.status.can_transition(target):
                raise InvalidTransition(job_id, job.status.value, target.value)
            job.status = target
            if target == JobStatus.COMPLETED:
                job.progress = 100
            elif progress is not None:
                job.progress = max(job.progress, min(int(progress), 100))
            if error is not None:
                job.error = error
            job.queue_info.completed_at = utc_now()
            logger.info("Job %s -> %s", job_id, target.value)
            return job.snapshot()

    # ------------------------------------------------------------------ results
    def persist_result(
        self,
        job_id: str,
        statistics: Dict[str, object],
        trip_details: Sequence[TripResult],
        *,
        status: JobStatus | str = JobStatus.COMPLETED,
        error: JobError | None = None,
        summary: Dict[str, object] | None = None,
    ) -> SimulationJob:
        """
        Move the job to its terminal ``status`` and store its results in one step.

        Raises InvalidTransition without storing anything when the job already
        left ``running`` (e.g. it was cancelled while the run was finishing).
        """
        if not JobStatus(status).is_terminal:
            raise ValueError(f"Results can only be stored with a terminal status, got {status!r}")
        with self._lock:
            self.persist_job_status(job_id, status, error=error)
            job = self._require(job_id)
            self._results[job_id] = SimulationResultRecord(
                job_id=job_id,
                statistics=dict(statistics),
                trip_details=tuple(trip_details),
            )
            if summary is not None:
                job.results_summary = dict(summary)
            return job.snapshot()

    def get_result(self, job_id: str) -> Optional[SimulationResultRecord]:
        with self._lock:
            self._require(job_id)
            return self._results.get(job_id)

    def _require(self, job_id: str) -> SimulationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Simulation job {job_id} not found")
        return job


__all__ = ["InMemoryJobStore", "JobStore", "SimulationResultRecord"]
