"""Resource builders shared by the tenant sub-resource reconcilers."""

from typing import Any, Dict, List, Optional

from . import constants as C


def namespace_name(tenant_name: str) -> str:
    """Deterministic namespace name for a tenant."""
    return f"{C.NAMESPACE_PREFIX}{tenant_name}"


def build_labels(tenant_name: str, component: str, app: Optional[str] = None) -> Dict[str, str]:
    """Build standard labels for a tenant resource."""
    labels = {
        C.LABEL_TENANT: tenant_name,
        C.LABEL_COMPONENT: component,
        C.LABEL_MANAGED_BY: C.OPERATOR_NAME,
    }
    if app:
        labels[C.LABEL_APP] = app
    return labels


def build_selector(tenant_name: str, app: str) -> Dict[str, str]:
    """Stable pod selector; never includes labels that may change."""
    return {
        C.LABEL_APP: app,
        C.LABEL_TENANT: tenant_name,
    }


def build_owner_reference(owner: Dict[str, Any]) -> Dict[str, Any]:
    """Build owner reference for garbage collection."""
    return {
        "apiVersion": f"{C.API_GROUP}/{C.API_VERSION}",
        "kind": C.KIND,
        "name": owner["metadata"]["name"],
        "uid": owner["metadata"]["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_metadata(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "name": name,
        "namespace": namespace,
        "labels": labels,
        "ownerReferences": [build_owner_reference(owner)],
    }


def build_namespace(tenant_name: str, owner: Dict[str, Any]) -> Dict[str, Any]:
    """Build the Namespace isolating one tenant."""
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": namespace_name(tenant_name),
            "labels": {
                C.LABEL_TENANT: tenant_name,
                C.LABEL_MANAGED_BY: C.OPERATOR_NAME,
            },
            "ownerReferences": [build_owner_reference(owner)],
        },
    }


def build_resource_requirements(
    resources: Optional[Dict[str, Any]],
    cpu_request: str,
    memory_request: str,
    cpu_limit: str,
    memory_limit: str,
) -> Dict[str, Dict[str, str]]:
    """Container requests/limits with each of the four values optional in the spec."""
    resources = resources or {}
    cpu = resources.get("cpu") or {}
    memory = resources.get("memory") or {}
    return {
        "requests": {
            "cpu": cpu.get("request") or cpu_request,
            "memory": memory.get("request") or memory_request,
        },
        "limits": {
            "cpu": cpu.get("limit") or cpu_limit,
            "memory": memory.get("limit") or memory_limit,
        },
    }


def replicas_for(component_spec: Optional[Dict[str, Any]]) -> int:
    replicas = (component_spec or {}).get("replicas")
    if not replicas or replicas < 1:
        return C.DEFAULT_REPLICAS
    return int(replicas)


def image_for(component_spec: Optional[Dict[str, Any]], default: str) -> str:
    return (component_spec or {}).get("image") or default


def build_env_var(spec_env: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a spec environment entry into a container env entry.

    A literal value wins over a reference. References keep their ``optional``
    flag so a missing config map/secret or key does not block the pod.
    """
    env: Dict[str, Any] = {"name": spec_env["name"]}
    value_from = spec_env.get("valueFrom")

    if spec_env.get("value") or not value_from:
        env["value"] = spec_env.get("value", "")
        return env

    source: Dict[str, Any] = {}
    for ref_type in ("configMapKeyRef", "secretKeyRef"):
        ref = value_from.get(ref_type)
        if not ref:
            continue
        selector = {"name": ref["name"], "key": ref["key"]}
        if ref.get("optional") is not None:
            selector["optional"] = bool(ref["optional"])
        source[ref_type] = selector
    env["valueFrom"] = source
    return env


def merge_env(baseline: List[Dict[str, Any]], overrides: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Merge user overrides into the baseline environment.

    An override with a baseline name replaces that entry in place; new names
    are appended in the order given.
    """
    env = [dict(item) for item in baseline]
    positions = {item["name"]: i for i, item in enumerate(env)}
    for override in overrides or []:
        entry = build_env_var(override)
        if entry["name"] in positions:
            env[positions[entry["name"]]] = entry
        else:
            positions[entry["name"]] = len(env)
            env.append(entry)
    return env


def build_http_probe(port: str, initial_delay: int, period: int) -> Dict[str, Any]:
    return {
        "httpGet": {"path": C.HEALTH_PATH, "port": port},
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
        "timeoutSeconds": 5,
        "successThreshold": 1,
        "failureThreshold": 3,
    }


def build_http_service(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    selector: Dict[str, str],
    port: int,
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    """Build a load-balanced ClusterIP Service exposing the ``http`` port."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": build_metadata(name, namespace, labels, owner),
        "spec": {
            "type": "ClusterIP",
            "selector": selector,
            "ports": [{
                "name": "http",
                "port": port,
                "targetPort": "http",
                "protocol": "TCP",
            }],
        },
    }


def build_http_deployment(
    name: str,
    namespace: str,
    labels: Dict[str, str],
    selector: Dict[str, str],
    replicas: int,
    container: Dict[str, Any],
    owner: Dict[str, Any],
) -> Dict[str, Any]:
    """Build a Deployment running one HTTP container with a scratch /tmp."""
    container = dict(container)
    port = container.pop("port")
    container.update({
        "imagePullPolicy": "IfNotPresent",
        "ports": [{"name": "http", "containerPort": port, "protocol": "TCP"}],
        "volumeMounts": [{"name": "tmp-volume", "mountPath": "/tmp"}],
        "readinessProbe": build_http_probe("http", 5, 10),
        "livenessProbe": build_http_probe("http", 15, 20),
    })
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": build_metadata(name, namespace, labels, owner),
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": selector},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [container],
                    "volumes": [{"name": "tmp-volume", "emptyDir": {}}],
                },
            },
        },
    }
