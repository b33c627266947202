"""Endpoint registry reconciliation: deployment and service."""

from typing import Any, Dict

from . import constants as C
from .convergence import Outcome, converge
from .resources import (
    build_http_deployment,
    build_http_service,
    build_labels,
    build_resource_requirements,
    build_selector,
    image_for,
    replicas_for,
)
from .server import server_url
from .status import ComponentStatus, observe_workload
from .store import ResourceStore

COMPONENT = "registry"


def registry_name(tenant_name: str) -> str:
    return f"{tenant_name}-registry"


def build_registry_deployment(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    tenant_name = tenant["metadata"]["name"]
    registry_spec = tenant.get("spec", {}).get("registry") or {}
    container = {
        "name": "registry",
        "image": image_for(registry_spec, C.REGISTRY_IMAGE),
        "port": C.REGISTRY_PORT,
        "env": [
            {"name": "PORT", "value": str(C.REGISTRY_PORT)},
            {"name": "TENANT_ID", "value": tenant_name},
            {"name": "BASE_DOMAIN", "value": registry_spec.get("baseDomain") or C.DEFAULT_BASE_DOMAIN},
            {"name": "SERVER_URL", "value": server_url(tenant_name)},
        ],
        "resources": build_resource_requirements(
            registry_spec.get("resources"),
            C.REGISTRY_CPU_REQUEST,
            C.REGISTRY_MEMORY_REQUEST,
            C.REGISTRY_CPU_LIMIT,
            C.REGISTRY_MEMORY_LIMIT,
        ),
    }
    return build_http_deployment(
        registry_name(tenant_name),
        namespace,
        build_labels(tenant_name, COMPONENT, C.APP_REGISTRY),
        build_selector(tenant_name, C.APP_REGISTRY),
        replicas_for(registry_spec),
        container,
        tenant,
    )


def build_registry_service(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    tenant_name = tenant["metadata"]["name"]
    return build_http_service(
        registry_name(tenant_name),
        namespace,
        build_labels(tenant_name, COMPONENT, C.APP_REGISTRY),
        build_selector(tenant_name, C.APP_REGISTRY),
        C.REGISTRY_PORT,
        tenant,
    )


async def reconcile_registry(store: ResourceStore, tenant: Dict[str, Any], namespace: str) -> ComponentStatus:
    await converge(store, build_registry_service(tenant, namespace))
    outcome, workload = await converge(store, build_registry_deployment(tenant, namespace))
    return observe_workload("Registry", workload, created=outcome == Outcome.CREATED)
