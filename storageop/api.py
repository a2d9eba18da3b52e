"""Operator resource model: conditions, spec, status and an in-memory operator client."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable

AVAILABLE = "Available"
PROGRESSING = "Progressing"
DEGRADED = "Degraded"
UPGRADEABLE = "Upgradeable"


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ManagementState(str, Enum):
    MANAGED = "Managed"
    UNMANAGED = "Unmanaged"
    REMOVED = "Removed"
    FORCE = "Force"


@dataclass
class OperatorCondition:
    """A single typed condition reported in an operator status."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


@dataclass
class OperatorSpec:
    """Desired state of an operator."""

    management_state: ManagementState = ManagementState.MANAGED
    log_level: str = "Normal"
    operator_log_level: str = "Normal"
    observed_config: dict = field(default_factory=dict)


@dataclass
class OperatorStatus:
    """Observed state of an operator."""

    conditions: list[OperatorCondition] = field(default_factory=list)
    observed_generation: int = 0
    # Keyed by (group, resource, namespace, name); value is the last seen generation.
    generations: dict[tuple[str, str, str, str], int] = field(default_factory=dict)

    def condition(self, cond_type: str) -> OperatorCondition | None:
        """Return the condition of the given type, if present."""
        return next((c for c in self.conditions if c.type == cond_type), None)


UpdateStatusFunc = Callable[[OperatorStatus], None]


def set_condition(conditions: list[OperatorCondition], condition: OperatorCondition) -> None:
    """Add or update a condition in place, tracking when its status last changed."""
    transition = condition.last_transition_time or datetime.now(timezone.utc)
    for existing in conditions:
        if existing.type == condition.type:
            if existing.status != condition.status:
                existing.status = condition.status
                existing.last_transition_time = transition
            existing.reason = condition.reason
            existing.message = condition.message
            return
    added = copy.copy(condition)
    added.last_transition_time = transition
    conditions.append(added)


def remove_condition(conditions: list[OperatorCondition], cond_type: str) -> None:
    """Remove every condition of the given type in place."""
    conditions[:] = [c for c in conditions if c.type != cond_type]


def is_condition_present_and_equal(
    conditions: Iterable[OperatorCondition], cond_type: str, status: ConditionStatus
) -> bool:
    """Tell whether a condition of the given type exists with the given status."""
    return any(c.type == cond_type and c.status == status for c in conditions)


def update_condition_fn(condition: OperatorCondition) -> UpdateStatusFunc:
    """Return a status update that sets the given condition."""

    def update(status: OperatorStatus) -> None:
        set_condition(status.conditions, condition)

    return update


def remove_condition_fn(cond_type: str) -> UpdateStatusFunc:
    """Return a status update that removes conditions of the given type."""

    def update(status: OperatorStatus) -> None:
        remove_condition(status.conditions, cond_type)

    return update


_VERBOSITY = {
    "Normal": 2,
    "Debug": 4,
    "Trace": 6,
    "TraceAll": 8,
}


def log_level_to_verbosity(log_level: str) -> int:
    """Map an operator log level name to a numeric verbosity; unknown levels map to Normal."""
    return _VERBOSITY.get(log_level, _VERBOSITY["Normal"])


class InMemoryOperatorClient:
    """Holds one operator resource in memory and applies status updates to it."""

    def __init__(
        self,
        spec: OperatorSpec | None = None,
        status: OperatorStatus | None = None,
        *,
        exists: bool = True,
    ) -> None:
        self.spec = spec if spec is not None else OperatorSpec()
        self.status = status if status is not None else OperatorStatus()
        self.exists = exists
        self.resource_version = 1
        self._lock = threading.Lock()

    def get_operator_state(self) -> tuple[OperatorSpec, OperatorStatus, str]:
        """Return copies of the spec and status and the current resource version."""
        with self._lock:
            self._ensure_exists()
            return copy.deepcopy(self.spec), copy.deepcopy(self.status), str(self.resource_version)

    def update_status(self, *args: UpdateStatusFunc) -> tuple[OperatorStatus, bool]:
        """Apply update functions to the status; return the new status and whether it changed."""
        with self._lock:
            self._ensure_exists()
            updated = copy.deepcopy(self.status)
            for update in args:
                update(updated)
            if updated == self.status:
                return copy.deepcopy(self.status), False
            self.status = updated
            self.resource_version += 1
            return copy.deepcopy(updated), True

    def _ensure_exists(self) -> None:
        if not self.exists:
            raise NotFoundError("operator resource not found")