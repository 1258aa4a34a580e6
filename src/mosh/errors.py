"""Exception taxonomy shared by the graph builder, router and job manager."""

from __future__ import annotations


class MoshError(Exception):
    """Base class for engine errors."""


# ---------------------------------------------------------------- network build
class NetworkBuildError(MoshError):
    """Raised when a GeoJSON payload cannot be turned into a routable graph."""

    kind = "NetworkBuildError"


class MalformedGeometry(NetworkBuildError, ValueError):
    kind = "MalformedGeometry"


class MalformedSchedule(NetworkBuildError, ValueError):
    """Timetable of a single transit route is out of order or misaligned."""

    kind = "MalformedSchedule"

    def __init__(self, route_id: str, message: str) -> None:
        super().__init__(f"Route {route_id}: {message}")
        self.route_id = route_id


class EmptyNetwork(NetworkBuildError):
    kind = "EmptyNetwork"


class DisconnectedNetwork(UserWarning):
    """Warning category: the graph has more than one connected component."""


# ---------------------------------------------------------------- parameters
class InvalidParameters(MoshError, ValueError):
    kind = "InvalidParameters"


# ---------------------------------------------------------------- jobs
class JobNotFound(MoshError, KeyError):
    kind = "JobNotFound"


class NetworkNotFound(MoshError, KeyError):
    kind = "NetworkNotFound"


class AlreadyRunning(MoshError):
    """A second claim on a job that is no longer queued."""

    kind = "AlreadyRunning"

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job {job_id} cannot be claimed (status={status})")
        self.job_id = job_id
        self.status = status


class InvalidTransition(MoshError):
    kind = "InvalidTransition"

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id}: transition {current} -> {target} is not allowed")
        self.job_id = job_id
        self.current = current
        self.target = target


class PermissionDenied(MoshError):
    kind = "PermissionDenied"


__all__ = [
    "AlreadyRunning",
    "DisconnectedNetwork",
    "EmptyNetwork",
    "InvalidParameters",
    "InvalidTransition",
    "JobNotFound",
    "MalformedGeometry",
    "MalformedSchedule",
    "MoshError",
    "NetworkBuildError",
    "NetworkNotFound",
    "PermissionDenied",
]
