"""Role to capability mapping checked at the job submission boundary."""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable

from mosh.errors import PermissionDenied

SUBMIT_SIMULATION = "submit_simulation"
CANCEL_SIMULATION = "cancel_simulation"
VIEW_RESULTS = "view_results"

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({SUBMIT_SIMULATION, CANCEL_SIMULATION, VIEW_RESULTS}),
    "planner": frozenset({SUBMIT_SIMULATION, CANCEL_SIMULATION, VIEW_RESULTS}),
    "viewer": frozenset({VIEW_RESULTS}),
}


def capabilities_for(roles: Iterable[str]) -> FrozenSet[str]:
    granted = set()
    for role in roles:
        granted |= ROLE_CAPABILITIES.get(str(role).lower(), frozenset())
    return frozenset(granted)


def require_capability(roles: Iterable[str], capability: str) -> None:
    roles = list(roles)
    if capability not in capabilities_for(roles):
        raise PermissionDenied(f"Roles {sorted(roles)} lack the {capability!r} capability")


__all__ = [
    "CANCEL_SIMULATION",
    "ROLE_CAPABILITIES",
    "SUBMIT_SIMULATION",
    "VIEW_RESULTS",
    "capabilities_for",
    "require_capability",
]
