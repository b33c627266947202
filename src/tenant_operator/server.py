"""API service reconciliation: deployment and service."""

from typing import Any, Dict, List

from . import constants as C
from .cache import redis_url
from .convergence import Outcome, converge
from .resources import (
    build_http_deployment,
    build_http_service,
    build_labels,
    build_resource_requirements,
    build_selector,
    image_for,
    merge_env,
    replicas_for,
)
from .status import ComponentStatus, observe_workload
from .store import ResourceStore

COMPONENT = "server"


def server_name(tenant_name: str) -> str:
    return f"{tenant_name}-server"


def server_url(tenant_name: str) -> str:
    return f"http://{server_name(tenant_name)}:{C.SERVER_PORT}"


def build_server_env(tenant: Dict[str, Any], identity_url: str = C.IDENTITY_SERVICE_URL) -> List[Dict[str, Any]]:
    """Fixed baseline environment merged with the spec overrides."""
    tenant_name = tenant["metadata"]["name"]
    server_spec = tenant.get("spec", {}).get("server") or {}
    baseline = [
        {"name": "NODE_ENV", "value": "production"},
        {"name": "PORT", "value": str(C.SERVER_PORT)},
        {"name": "REDIS_URL", "value": redis_url(tenant_name)},
        {"name": "LOG_LEVEL", "value": "info"},
        {"name": "TENANT_ID", "value": tenant_name},
        {"name": "AUTH_URL", "value": identity_url},
    ]
    return merge_env(baseline, server_spec.get("env"))


def build_server_deployment(
    tenant: Dict[str, Any], namespace: str, identity_url: str = C.IDENTITY_SERVICE_URL
) -> Dict[str, Any]:
    tenant_name = tenant["metadata"]["name"]
    server_spec = tenant.get("spec", {}).get("server") or {}
    container = {
        "name": "server",
        "image": image_for(server_spec, C.SERVER_IMAGE),
        "port": C.SERVER_PORT,
        "env": build_server_env(tenant, identity_url),
        "resources": build_resource_requirements(
            server_spec.get("resources"),
            C.SERVER_CPU_REQUEST,
            C.SERVER_MEMORY_REQUEST,
            C.SERVER_CPU_LIMIT,
            C.SERVER_MEMORY_LIMIT,
        ),
    }
    return build_http_deployment(
        server_name(tenant_name),
        namespace,
        build_labels(tenant_name, COMPONENT, C.APP_SERVER),
        build_selector(tenant_name, C.APP_SERVER),
        replicas_for(server_spec),
        container,
        tenant,
    )


def build_server_service(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    tenant_name = tenant["metadata"]["name"]
    return build_http_service(
        server_name(tenant_name),
        namespace,
        build_labels(tenant_name, COMPONENT, C.APP_SERVER),
        build_selector(tenant_name, C.APP_SERVER),
        C.SERVER_PORT,
        tenant,
    )


async def reconcile_server(
    store: ResourceStore, tenant: Dict[str, Any], namespace: str, identity_url: str = C.IDENTITY_SERVICE_URL
) -> ComponentStatus:
    """Converge the API service and report its status."""
    await converge(store, build_server_service(tenant, namespace))
    outcome, workload = await converge(store, build_server_deployment(tenant, namespace, identity_url))
    return observe_workload("Server", workload, created=outcome == Outcome.CREATED)
