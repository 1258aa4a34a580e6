from __future__ import annotations

import pytest

from mosh.errors import InvalidParameters
from mosh.jobs.models import JobPriority, JobStatus, SimulationJob


def test_state_machine():
    assert JobStatus.QUEUED.can_transition(JobStatus.RUNNING)
    assert JobStatus.QUEUED.can_transition(JobStatus.CANCELLED)
    assert not JobStatus.QUEUED.can_transition(JobStatus.COMPLETED)
    assert JobStatus.RUNNING.can_transition(JobStatus.FAILED)
    assert not JobStatus.COMPLETED.can_transition(JobStatus.RUNNING)
    assert JobStatus.CANCELLED.is_terminal
    assert not JobStatus.RUNNING.is_terminal


def test_priority_ranks():
    ordered = sorted(JobPriority, key=lambda p: p.rank)
    assert ordered == [JobPriority.URGENT, JobPriority.HIGH, JobPriority.NORMAL, JobPriority.LOW]


def test_submission_document_with_embedded_od_matrix(od_mapping):
    job = SimulationJob.from_mapping(
        {
            "name": "AM peak",
            "city": "c-1",
            "baselineNetwork": "base",
            "proposedNetwork": "plan",
            "priority": "high",
            "createdBy": "u-7",
            "tags": ["pilot"],
            "parameters": {
                "maxTransfers": 2,
                "departureTimeStart": "07:00",
                "odMatrix": od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0))),
                "customParams": {"note": "ignored"},
            },
        },
        job_id="job-9",
    )

    assert job.job_id == "job-9"
    assert (job.city_id, job.baseline_network_id, job.proposed_network_id) == ("c-1", "base", "plan")
    assert job.priority == JobPriority.HIGH
    assert job.parameters.max_transfers == 2
    assert job.parameters.departure_time_start == 7 * 3600
    assert len(job.od_matrix) == 1
    assert job.status == JobStatus.QUEUED
    assert job.to_dict()["parameters"]["max_transfers"] == 2


@pytest.mark.parametrize(
    "overrides",
    [
        {"odMatrix": None},
        {"name": None},
        {"priority": "whenever"},
        {"parameters": {"maxTransfers": -1}},
    ],
)
def test_invalid_submissions(overrides, od_mapping):
    document = {
        "name": "AM peak",
        "city": "c-1",
        "baselineNetwork": "base",
        "odMatrix": od_mapping(("A", (0.0, 0.0), "B", (0.01, 0.0))),
    }
    document.update(overrides)

    with pytest.raises(InvalidParameters):
        SimulationJob.from_mapping(document, job_id="job-1")
