"""Idempotent create-or-update-if-changed for tenant sub-resources.

``converge`` is the single place where sub-resources are written. Each kind
carries a ``KindSpec`` naming the fields the operator owns; only those are
compared against a freshly read copy and only differing ones are written back.
Everything else on the live object (server defaults, immutable fields such as
volume claim templates or a Service's clusterIP) is left untouched.
"""

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from kubernetes.utils import parse_quantity

from .errors import NotFoundError
from .store import ResourceStore

logger = logging.getLogger(__name__)

Path = Tuple[Union[str, int], ...]

_MISSING = object()


class Outcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


# =============================================================================
# Comparators
# =============================================================================

def _is_empty(value: Any) -> bool:
    return value is None or value is _MISSING or value in ({}, [], "")


def subset_equal(desired: Any, live: Any) -> bool:
    """True if everything set in ``desired`` is present and equal in ``live``.

    Keys only present on the live side are server defaults and are ignored.
    Lists of named items are matched by name regardless of order.
    """
    if _is_empty(desired):
        return _is_empty(live)
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return False
        return all(subset_equal(value, live.get(key, _MISSING)) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(live, list) or len(desired) != len(live):
            return False
        if all(isinstance(item, dict) and "name" in item for item in desired):
            by_name = {item.get("name"): item for item in live if isinstance(item, dict)}
            return all(subset_equal(item, by_name.get(item["name"], _MISSING)) for item in desired)
        return all(subset_equal(a, b) for a, b in zip(desired, live))
    return desired == live


def _quantity(value: Any):
    try:
        return parse_quantity(value)
    except (ValueError, TypeError):
        return value


def quantities_equal(desired: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]) -> bool:
    """Compare a flat resource list by quantity value ("200m" == "0.2")."""
    desired = desired if isinstance(desired, dict) else {}
    live = live if isinstance(live, dict) else {}
    if set(desired) != set(live):
        return False
    return all(_quantity(desired[key]) == _quantity(live[key]) for key in desired)


def resources_equal(desired: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]) -> bool:
    """Compare container resource requirements section by section."""
    desired = desired if isinstance(desired, dict) else {}
    live = live if isinstance(live, dict) else {}
    sections = {"requests", "limits"}
    return all(quantities_equal(desired.get(section), live.get(section)) for section in sections)


def _env_key(entry: Dict[str, Any]) -> Tuple:
    value_from = entry.get("valueFrom") or {}
    refs = []
    for ref_type in ("configMapKeyRef", "secretKeyRef"):
        ref = value_from.get(ref_type)
        if ref:
            refs.append((ref_type, ref.get("name"), ref.get("key"), bool(ref.get("optional"))))
    others = sorted(
        (key, repr(value)) for key, value in value_from.items()
        if key not in ("configMapKeyRef", "secretKeyRef") and value
    )
    return (entry.get("value") or "", tuple(refs), tuple(others))


def env_equal(desired: Optional[List[Dict[str, Any]]], live: Optional[List[Dict[str, Any]]]) -> bool:
    """Order-insensitive comparison of container environment lists."""
    desired = desired or []
    live = live or []
    if len(desired) != len(live):
        return False
    desired_map = {entry["name"]: _env_key(entry) for entry in desired}
    live_map = {entry.get("name"): _env_key(entry) for entry in live}
    return desired_map == live_map


# =============================================================================
# Per-kind field allow-lists
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """One operator-owned field and how to compare and write it."""

    path: Path
    equal: Callable[[Any, Any], bool] = subset_equal
    merge_keys: bool = False


@dataclass(frozen=True)
class KindSpec:
    kind: str
    fields: Tuple[FieldSpec, ...]


_CONTAINER: Path = ("spec", "template", "spec", "containers", 0)

_WORKLOAD_FIELDS = (
    FieldSpec(("spec", "replicas")),
    FieldSpec(_CONTAINER + ("image",)),
    FieldSpec(_CONTAINER + ("resources",), resources_equal),
    FieldSpec(_CONTAINER + ("env",), env_equal),
)

KIND_SPECS: Dict[str, KindSpec] = {
    "Namespace": KindSpec("Namespace", (
        FieldSpec(("metadata", "labels"), merge_keys=True),
    )),
    "ConfigMap": KindSpec("ConfigMap", (
        FieldSpec(("data",)),
    )),
    "Service": KindSpec("Service", (
        FieldSpec(("spec", "selector")),
        FieldSpec(("spec", "ports")),
    )),
    "Deployment": KindSpec("Deployment", _WORKLOAD_FIELDS),
    "StatefulSet": KindSpec("StatefulSet", _WORKLOAD_FIELDS + (
        FieldSpec(("spec", "template", "spec", "volumes")),
    )),
    "NetworkPolicy": KindSpec("NetworkPolicy", (
        FieldSpec(("spec", "podSelector")),
        FieldSpec(("spec", "policyTypes")),
        FieldSpec(("spec", "ingress")),
        FieldSpec(("spec", "egress")),
    )),
    "ResourceQuota": KindSpec("ResourceQuota", (
        FieldSpec(("spec", "hard"), quantities_equal),
    )),
}


# =============================================================================
# Path helpers
# =============================================================================

def get_path(doc: Any, path: Path) -> Any:
    current = doc
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return _MISSING
            current = current[step]
        else:
            if not isinstance(current, dict) or step not in current:
                return _MISSING
            current = current[step]
    return current


def set_path(doc: Dict[str, Any], path: Path, value: Any) -> None:
    current: Any = doc
    for i, step in enumerate(path[:-1]):
        nxt = path[i + 1]
        if isinstance(step, int):
            while len(current) <= step:
                current.append({})
            current = current[step]
        else:
            if current.get(step) is None:
                current[step] = [] if isinstance(nxt, int) else {}
            current = current[step]
    last = path[-1]
    if isinstance(last, int):
        while len(current) <= last:
            current.append(None)
    current[last] = value


def diff_fields(kind_spec: KindSpec, desired: Dict[str, Any], live: Dict[str, Any]) -> List[FieldSpec]:
    """Return the operator-owned fields whose live value drifted."""
    drifted = []
    for field in kind_spec.fields:
        wanted = get_path(desired, field.path)
        if wanted is _MISSING:
            continue
        actual = get_path(live, field.path)
        if not field.equal(wanted, None if actual is _MISSING else actual):
            drifted.append(field)
    return drifted


def merge_fields(fields: List[FieldSpec], desired: Dict[str, Any], live: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(live)
    for field in fields:
        wanted = copy.deepcopy(get_path(desired, field.path))
        if field.merge_keys:
            current = get_path(merged, field.path)
            combined = dict(current) if isinstance(current, dict) else {}
            combined.update(wanted)
            wanted = combined
        set_path(merged, field.path, wanted)
    return merged


# =============================================================================
# Convergence
# =============================================================================

async def converge(store: ResourceStore, desired: Dict[str, Any]) -> Tuple[Outcome, Dict[str, Any]]:
    """Bring one resource to its desired shape.

    Returns the outcome together with the resulting live document.
    """
    kind = desired["kind"]
    name = desired["metadata"]["name"]
    namespace = desired["metadata"].get("namespace")
    kind_spec = KIND_SPECS[kind]

    try:
        live = await store.get(kind, name, namespace)
    except NotFoundError:
        created = await store.create(copy.deepcopy(desired))
        logger.info(f"Created {kind} {namespace or ''}/{name}")
        return Outcome.CREATED, created

    drifted = diff_fields(kind_spec, desired, live)
    if not drifted:
        return Outcome.UNCHANGED, live

    merged = merge_fields(drifted, desired, live)
    updated = await store.update(merged)
    changed = ", ".join(".".join(str(step) for step in field.path) for field in drifted)
    logger.info(f"Updated {kind} {namespace or ''}/{name} ({changed})")
    return Outcome.UPDATED, updated


async def delete_if_present(store: ResourceStore, kind: str, name: str, namespace: Optional[str] = None) -> bool:
    """Delete a resource; a missing resource is not an error."""
    try:
        await store.get(kind, name, namespace)
        await store.delete(kind, name, namespace)
    except NotFoundError:
        return False
    logger.info(f"Deleted {kind} {namespace or ''}/{name}")
    return True
