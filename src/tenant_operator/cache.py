"""Cache service (Redis) reconciliation: config map, headless service, stateful set."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from kubernetes.utils import parse_quantity

from . import constants as C
from .convergence import Outcome, converge
from .resources import (
    build_labels,
    build_metadata,
    build_resource_requirements,
    build_selector,
    image_for,
    replicas_for,
)
from .status import ComponentStatus, observe_workload
from .store import ResourceStore

logger = logging.getLogger(__name__)

COMPONENT = "redis"
CONFIG_KEY = "redis.conf"
DATA_VOLUME = "redis-data"
CONFIG_VOLUME = "redis-config"

_CONFIG_DEFAULTS: List[Tuple[str, str]] = [
    ("port", str(C.REDIS_PORT)),
    ("bind", "0.0.0.0"),
    ("protected-mode", "yes"),
    ("daemonize", "no"),
    ("maxmemory-policy", "allkeys-lru"),
    ("appendonly", "yes"),
    ("appendfsync", "everysec"),
    ("loglevel", "notice"),
    ("logfile", '""'),
]


def config_map_name(tenant_name: str) -> str:
    return f"{tenant_name}-redis-config"


def service_name(tenant_name: str) -> str:
    return f"{tenant_name}-redis"


def redis_url(tenant_name: str) -> str:
    return f"redis://{service_name(tenant_name)}:{C.REDIS_PORT}"


def render_redis_config(memory_limit: str, overrides: Optional[Dict[str, Any]] = None) -> str:
    """Render redis.conf from the fixed defaults and spec overrides.

    ``maxmemory`` follows the container memory limit, in bytes. Overrides are
    applied in sorted key order so the rendered document is stable; an
    override for a key that has a default replaces that line in place.
    """
    lines = list(_CONFIG_DEFAULTS)
    lines.append(("maxmemory", str(int(parse_quantity(memory_limit)))))

    positions = {key: i for i, (key, _) in enumerate(lines)}
    for key in sorted(overrides or {}):
        value = str(overrides[key])
        if key in positions:
            lines[positions[key]] = (key, value)
        else:
            positions[key] = len(lines)
            lines.append((key, value))

    return "\n".join(f"{key} {value}" for key, value in lines) + "\n"


def _redis_resources(redis_spec: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
    return build_resource_requirements(
        redis_spec.get("resources"),
        C.REDIS_CPU_REQUEST,
        C.REDIS_MEMORY_REQUEST,
        C.REDIS_CPU_LIMIT,
        C.REDIS_MEMORY_LIMIT,
    )


def build_redis_configmap(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    """Build the ConfigMap holding redis.conf."""
    tenant_name = tenant["metadata"]["name"]
    redis_spec = tenant.get("spec", {}).get("redis") or {}
    resources = _redis_resources(redis_spec)

    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": build_metadata(
            config_map_name(tenant_name), namespace, build_labels(tenant_name, COMPONENT, C.APP_REDIS), tenant
        ),
        "data": {
            CONFIG_KEY: render_redis_config(resources["limits"]["memory"], redis_spec.get("config")),
        },
    }


def build_redis_service(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    """Build the headless Service fronting the Redis pods."""
    tenant_name = tenant["metadata"]["name"]
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": build_metadata(
            service_name(tenant_name), namespace, build_labels(tenant_name, COMPONENT, C.APP_REDIS), tenant
        ),
        "spec": {
            "clusterIP": "None",
            "selector": build_selector(tenant_name, C.APP_REDIS),
            "ports": [{
                "name": "redis",
                "port": C.REDIS_PORT,
                "targetPort": "redis",
                "protocol": "TCP",
            }],
        },
    }


def build_redis_statefulset(tenant: Dict[str, Any], namespace: str) -> Dict[str, Any]:
    """Build the Redis StatefulSet with one volume claim template."""
    tenant_name = tenant["metadata"]["name"]
    redis_spec = tenant.get("spec", {}).get("redis") or {}
    labels = build_labels(tenant_name, COMPONENT, C.APP_REDIS)
    storage = redis_spec.get("storage") or C.REDIS_STORAGE

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": build_metadata(service_name(tenant_name), namespace, labels, tenant),
        "spec": {
            "serviceName": service_name(tenant_name),
            "replicas": replicas_for(redis_spec),
            "selector": {"matchLabels": build_selector(tenant_name, C.APP_REDIS)},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [{
                        "name": "redis",
                        "image": image_for(redis_spec, C.REDIS_IMAGE),
                        "imagePullPolicy": "IfNotPresent",
                        "command": ["redis-server", f"/etc/redis/{CONFIG_KEY}"],
                        "ports": [{"name": "redis", "containerPort": C.REDIS_PORT, "protocol": "TCP"}],
                        "resources": _redis_resources(redis_spec),
                        "volumeMounts": [
                            {"name": DATA_VOLUME, "mountPath": "/data"},
                            {"name": CONFIG_VOLUME, "mountPath": "/etc/redis"},
                        ],
                        "livenessProbe": {
                            "tcpSocket": {"port": "redis"},
                            "initialDelaySeconds": 15,
                            "periodSeconds": 20,
                        },
                        "readinessProbe": {
                            "exec": {"command": ["redis-cli", "ping"]},
                            "initialDelaySeconds": 5,
                            "periodSeconds": 10,
                        },
                    }],
                    "volumes": [{
                        "name": CONFIG_VOLUME,
                        "configMap": {
                            "name": config_map_name(tenant_name),
                            "items": [{"key": CONFIG_KEY, "path": CONFIG_KEY}],
                        },
                    }],
                },
            },
            "volumeClaimTemplates": [{
                "metadata": {"name": DATA_VOLUME, "labels": labels},
                "spec": {
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": storage}},
                },
            }],
        },
    }


async def reconcile_redis(store: ResourceStore, tenant: Dict[str, Any], namespace: str) -> ComponentStatus:
    """Converge the cache service and report its status."""
    await converge(store, build_redis_configmap(tenant, namespace))
    await converge(store, build_redis_service(tenant, namespace))
    outcome, workload = await converge(store, build_redis_statefulset(tenant, namespace))
    if outcome == Outcome.CREATED:
        logger.info(f"Redis for tenant {tenant['metadata']['name']} created in {namespace}")
    return observe_workload("Redis", workload, created=outcome == Outcome.CREATED)
