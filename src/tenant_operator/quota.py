"""Tenant-wide ResourceQuota derived from ``spec.resources``."""

from typing import Any, Dict, Optional

from .convergence import Outcome, converge, delete_if_present
from .resources import build_labels, build_metadata
from .store import ResourceStore

QUOTA_NAME = "tenant-quota"


def build_quota_hard(resources: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Map the spec limit/request pairs onto ResourceQuota ``hard`` keys."""
    resources = resources or {}
    cpu = resources.get("cpu") or {}
    memory = resources.get("memory") or {}
    storage = resources.get("storage") or {}

    hard = {
        "requests.cpu": cpu.get("request"),
        "limits.cpu": cpu.get("limit"),
        "requests.memory": memory.get("request"),
        "limits.memory": memory.get("limit"),
        "requests.storage": storage.get("request") or storage.get("limit"),
    }
    return {key: value for key, value in hard.items() if value}


def build_resource_quota(tenant: Dict[str, Any], namespace: str) -> Optional[Dict[str, Any]]:
    """Build the quota document, or None when the spec sets no tenant limits."""
    tenant_name = tenant["metadata"]["name"]
    hard = build_quota_hard(tenant.get("spec", {}).get("resources"))
    if not hard:
        return None
    return {
        "apiVersion": "v1",
        "kind": "ResourceQuota",
        "metadata": build_metadata(QUOTA_NAME, namespace, build_labels(tenant_name, "quota"), tenant),
        "spec": {"hard": hard},
    }


async def reconcile_quota(store: ResourceStore, tenant: Dict[str, Any], namespace: str) -> Optional[Outcome]:
    desired = build_resource_quota(tenant, namespace)
    if desired is None:
        await delete_if_present(store, "ResourceQuota", QUOTA_NAME, namespace)
        return None
    outcome, _ = await converge(store, desired)
    return outcome
