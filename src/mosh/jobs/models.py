"""Simulation job record and its state machine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional

from mosh.batch.od_matrix import ODMatrix
from mosh.errors import InvalidParameters
from mosh.routing.parameters import SimulationParameters


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition(self, target: "JobStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Lower ranks are dispatched first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.URGENT: 0,
    JobPriority.HIGH: 1,
    JobPriority.NORMAL: 2,
    JobPriority.LOW: 3,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobError:
    kind: str
    message: str
    stack: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "kind": self.kind,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.stack:
            payload["stack"] = self.stack
        return payload


@dataclass
class QueueInfo:
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def execution_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "queuedAt": self.queued_at.isoformat() if self.queued_at else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class SimulationJob:
    job_id: str
    city_id: str
    name: str
    baseline_network_id: str
    od_matrix: ODMatrix
    parameters: SimulationParameters = field(default_factory=SimulationParameters)
    proposed_network_id: Optional[str] = None
    created_by: Optional[str] = None
    description: Optional[str] = None
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    error: Optional[JobError] = None
    queue_info: QueueInfo = field(default_factory=QueueInfo)
    results_summary: Optional[Dict[str, object]] = None
    tags: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "SimulationJob":
        """Copy safe to hand out of the store; nested mutable parts are copied too."""
        return replace(
            self,
            queue_info=replace(self.queue_info),
            results_summary=dict(self.results_summary) if self.results_summary is not None else None,
            tags=list(self.tags),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, object], *, job_id: str) -> "SimulationJob":
        """Build a queued job from a submission document (snake_case or camelCase keys)."""
        if not isinstance(data, Mapping):
            raise InvalidParameters("Simulation submissions must be mappings")

        def pick(*keys: str, default: object = None) -> object:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        raw_params = dict(pick("parameters", default={}) or {})
        raw_od = pick("od_matrix", "odMatrix")
        embedded_od = raw_params.pop("odMatrix", None) or raw_params.pop("od_matrix", None)
        raw_params.pop("customParams", None)
        if raw_od is None:
            raw_od = embedded_od
        if raw_od is None:
            raise InvalidParameters("Simulation submission requires an OD matrix")
        od_matrix = raw_od if isinstance(raw_od, ODMatrix) else ODMatrix.from_mapping(raw_od)

        baseline = pick("baseline_network_id", "baselineNetwork", "baselineNetworkId")
        city = pick("city_id", "city", "cityId")
        name = pick("name")
        if not baseline or not city or not name:
            raise InvalidParameters("Simulation submission requires name, city and baseline network")
        try:
            priority = JobPriority(str(pick("priority", default=JobPriority.NORMAL.value)))
        except ValueError as exc:
            raise InvalidParameters(f"Unknown priority {data.get('priority')!r}") from exc
        proposed = pick("proposed_network_id", "proposedNetwork", "proposedNetworkId")
        created_by = pick("created_by", "createdBy")
        return cls(
            job_id=job_id,
            city_id=str(city),
            name=str(name),
            baseline_network_id=str(baseline),
            proposed_network_id=str(proposed) if proposed is not None else None,
            od_matrix=od_matrix,
            parameters=SimulationParameters.from_mapping(raw_params),
            created_by=str(created_by) if created_by is not None else None,
            description=pick("description"),
            priority=priority,
            tags=[str(tag) for tag in pick("tags", default=[]) or []],
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.job_id,
            "city": self.city_id,
            "name": self.name,
            "description": self.description,
            "baselineNetwork": self.baseline_network_id,
            "proposedNetwork": self.proposed_network_id,
            "parameters": self.parameters.to_mapping(),
            "status": self.status.value,
            "priority": self.priority.value,
            "progress": self.progress,
            "queueInfo": self.queue_info.to_dict(),
            "resultsSummary": self.results_summary,
            "error": self.error.to_dict() if self.error else None,
            "createdBy": self.created_by,
            "tags": list(self.tags),
        }


__all__ = [
    "ALLOWED_TRANSITIONS",
    "JobError",
    "JobPriority",
    "JobStatus",
    "QueueInfo",
    "SimulationJob",
    "TERMINAL_STATUSES",
    "utc_now",
]
