"""Tenant phases, component status aggregation and status conditions."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class TenantPhase(str, Enum):
    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    FAILED = "Failed"
    TERMINATING = "Terminating"


class ComponentPhase(str, Enum):
    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    RUNNING = "Running"
    DEGRADED = "Degraded"
    FAILED = "Failed"


# Forward order of the lifecycle; Terminating may interrupt any of them.
_PHASE_ORDER = [
    TenantPhase.PENDING,
    TenantPhase.PROVISIONING,
    TenantPhase.RUNNING,
]


@dataclass
class ComponentStatus:
    """Observed status of one sub-resource, recomputed on every pass."""

    phase: ComponentPhase
    message: str
    ready_replicas: int = 0
    total_replicas: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "readyReplicas": self.ready_replicas,
            "totalReplicas": self.total_replicas,
        }

    @property
    def running(self) -> bool:
        return self.phase == ComponentPhase.RUNNING


def aggregate(
    component: str,
    ready: int,
    total: int,
    waiting: ComponentPhase = ComponentPhase.PROVISIONING,
) -> ComponentStatus:
    """Derive a component's status from its replica counts.

    Args:
        component: Human-readable component name used in the message
        ready: Number of ready replicas observed
        total: Number of replicas the workload should run
        waiting: Phase reported while no replica is ready yet
    """
    ready = ready or 0
    total = total or 0

    if ready == 0:
        return ComponentStatus(waiting, f"{component} is being provisioned", ready, total)
    if ready < total:
        return ComponentStatus(
            ComponentPhase.DEGRADED,
            f"{component} is degraded: {ready}/{total} replicas ready",
            ready,
            total,
        )
    return ComponentStatus(ComponentPhase.RUNNING, f"{component} is running", ready, total)


def observe_workload(component: str, workload: Dict[str, Any], created: bool = False) -> ComponentStatus:
    """Aggregate the status of a live Deployment or StatefulSet document."""
    ready = (workload.get("status") or {}).get("readyReplicas") or 0
    total = (workload.get("spec") or {}).get("replicas") or 0
    waiting = ComponentPhase.PENDING if created else ComponentPhase.PROVISIONING
    return aggregate(component, ready, total, waiting)


def can_transition(current: Optional[str], target: TenantPhase) -> bool:
    """Check that moving from ``current`` to ``target`` keeps phases monotonic."""
    if target == TenantPhase.TERMINATING:
        return True
    if not current:
        return target == TenantPhase.PENDING
    current_phase = TenantPhase(current)
    if current_phase in (TenantPhase.TERMINATING, TenantPhase.FAILED):
        return False
    if target == TenantPhase.FAILED:
        return True
    return _PHASE_ORDER.index(target) == _PHASE_ORDER.index(current_phase) + 1


def set_phase(status: Dict[str, Any], target: TenantPhase) -> None:
    """Set ``status.phase``, refusing out-of-order transitions."""
    current = status.get("phase")
    if current == target.value:
        return
    if not can_transition(current, target):
        raise ValueError(f"Illegal tenant phase transition {current!r} -> {target.value!r}")
    status["phase"] = target.value


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    status: Dict[str, Any],
    type_: str,
    value: bool,
    reason: str,
    message: str = "",
) -> bool:
    """Upsert a condition; returns True when anything changed.

    ``lastTransitionTime`` only moves when the condition status flips.
    """
    conditions: List[Dict[str, Any]] = status.setdefault("conditions", [])
    wanted = "True" if value else "False"

    for condition in conditions:
        if condition.get("type") != type_:
            continue
        changed = False
        if condition.get("status") != wanted:
            condition["status"] = wanted
            condition["lastTransitionTime"] = _now()
            changed = True
        if condition.get("reason") != reason:
            condition["reason"] = reason
            changed = True
        if condition.get("message", "") != message:
            condition["message"] = message
            changed = True
        return changed

    conditions.append({
        "type": type_,
        "status": wanted,
        "reason": reason,
        "message": message,
        "lastTransitionTime": _now(),
    })
    return True


def get_condition(status: Dict[str, Any], type_: str) -> Optional[Dict[str, Any]]:
    for condition in status.get("conditions") or []:
        if condition.get("type") == type_:
            return condition
    return None
