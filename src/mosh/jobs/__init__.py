"""Job lifecycle exports."""

from .access import ROLE_CAPABILITIES, capabilities_for, require_capability
from .manager import JobLifecycleManager
from .models import JobError, JobPriority, JobStatus, QueueInfo, SimulationJob
from .networks import InMemoryNetworkRepository, NetworkGraphCache, NetworkRecord, NetworkRepository
from .store import InMemoryJobStore, JobStore, SimulationResultRecord

__all__ = [
    "InMemoryJobStore",
    "InMemoryNetworkRepository",
    "JobError",
    "JobLifecycleManager",
    "JobPriority",
    "JobStatus",
    "JobStore",
    "NetworkGraphCache",
    "NetworkRecord",
    "NetworkRepository",
    "QueueInfo",
    "ROLE_CAPABILITIES",
    "SimulationJob",
    "SimulationResultRecord",
    "capabilities_for",
    "require_capability",
]
