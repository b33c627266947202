"""Resource store access for the reconciler.

The reconciler only talks to the cluster through a ``ResourceStore``. A single
``KubernetesStore`` is constructed per process and handed to every
reconciler; tests substitute an in-memory implementation.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import kubernetes
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from . import constants as C
from .errors import ConflictError, NotFoundError, StoreError, TransientError

logger = logging.getLogger(__name__)


class ResourceStore:
    """Get/create/update/delete of resource documents keyed by (kind, namespace, name)."""

    async def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def list(
        self, kind: str, namespace: Optional[str] = None, label_selector: str = ""
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def create(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        """Replace ``resource``; its resourceVersion must still be current."""
        raise NotImplementedError

    async def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        raise NotImplementedError

    async def get_tenant(self, name: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def update_tenant(self, tenant: Dict[str, Any]) -> Dict[str, Any]:
        """Persist metadata and spec of a Tenant (finalizers live here)."""
        raise NotImplementedError

    async def update_tenant_status(self, tenant: Dict[str, Any]) -> Dict[str, Any]:
        """Persist the status subresource of a Tenant."""
        raise NotImplementedError


@dataclass(frozen=True)
class _KindApi:
    """Where the typed client keeps the methods for one kind."""

    api: str
    suffix: str
    namespaced: bool = True

    def method(self, clients: Dict[str, Any], verb: str):
        prefix = "namespaced_" if self.namespaced else ""
        return getattr(clients[self.api], f"{verb}_{prefix}{self.suffix}")


_KINDS: Dict[str, _KindApi] = {
    "Namespace": _KindApi("core", "namespace", namespaced=False),
    "ConfigMap": _KindApi("core", "config_map"),
    "Service": _KindApi("core", "service"),
    "ResourceQuota": _KindApi("core", "resource_quota"),
    "Deployment": _KindApi("apps", "deployment"),
    "StatefulSet": _KindApi("apps", "stateful_set"),
    "NetworkPolicy": _KindApi("networking", "network_policy"),
}


def get_k8s_clients() -> Dict[str, Any]:
    """Get Kubernetes API clients."""
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()

    api_client = client.ApiClient()
    return {
        "api": api_client,
        "core": client.CoreV1Api(api_client),
        "apps": client.AppsV1Api(api_client),
        "networking": client.NetworkingV1Api(api_client),
        "custom": client.CustomObjectsApi(api_client),
    }


def _translate(e: ApiException, what: str) -> Exception:
    """Map an API failure onto the reconciliation error taxonomy."""
    if e.status == 404:
        return NotFoundError(f"{what} not found")
    if e.status == 409:
        return ConflictError(f"{what} conflict: {e.reason}")
    if e.status in (429, 500, 502, 503, 504):
        return TransientError(f"{what} temporarily unavailable: {e.status} {e.reason}")
    return StoreError(f"{what} failed: {e.status} {e.reason}", status=e.status)


class KubernetesStore(ResourceStore):
    """``ResourceStore`` backed by the official Kubernetes client.

    The client is blocking, so every call is pushed to a worker thread. A
    cancelled invocation leaves at most the single in-flight request running
    to completion, which is atomic per resource.
    """

    def __init__(self, clients: Optional[Dict[str, Any]] = None, request_timeout: float = C.API_REQUEST_TIMEOUT):
        self.clients = clients or get_k8s_clients()
        self.request_timeout = request_timeout

    def _kind(self, kind: str) -> _KindApi:
        try:
            return _KINDS[kind]
        except KeyError:
            raise StoreError(f"Unsupported kind {kind}") from None

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.clients["api"].sanitize_for_serialization(obj)

    async def _call(self, what: str, fn, *args, **kwargs) -> Any:
        kwargs["_request_timeout"] = self.request_timeout
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ApiException as e:
            raise _translate(e, what) from e
        except (TransportError, ConnectionError, TimeoutError) as e:
            logger.warning(f"Kubernetes API request for {what} failed: {e}")
            raise TransientError(f"{what} failed: {e}") from e

    async def get(self, kind, name, namespace=None):
        api = self._kind(kind)
        args = (name, namespace) if api.namespaced else (name,)
        obj = await self._call(f"{kind} {namespace}/{name}", api.method(self.clients, "read"), *args)
        return self._to_dict(obj)

    async def list(self, kind, namespace=None, label_selector=""):
        api = self._kind(kind)
        args = (namespace,) if api.namespaced else ()
        result = await self._call(
            f"{kind} list in {namespace}",
            api.method(self.clients, "list"),
            *args,
            label_selector=label_selector,
        )
        return self._to_dict(result).get("items") or []

    async def create(self, resource):
        kind = resource["kind"]
        name = resource["metadata"]["name"]
        namespace = resource["metadata"].get("namespace")
        api = self._kind(kind)
        args = (namespace, resource) if api.namespaced else (resource,)
        obj = await self._call(f"Create {kind} {namespace}/{name}", api.method(self.clients, "create"), *args)
        return self._to_dict(obj)

    async def update(self, resource):
        kind = resource["kind"]
        name = resource["metadata"]["name"]
        namespace = resource["metadata"].get("namespace")
        api = self._kind(kind)
        args = (name, namespace, resource) if api.namespaced else (name, resource)
        obj = await self._call(f"Update {kind} {namespace}/{name}", api.method(self.clients, "replace"), *args)
        return self._to_dict(obj)

    async def delete(self, kind, name, namespace=None):
        api = self._kind(kind)
        args = (name, namespace) if api.namespaced else (name,)
        await self._call(
            f"Delete {kind} {namespace}/{name}",
            api.method(self.clients, "delete"),
            *args,
            body=client.V1DeleteOptions(propagation_policy="Background"),
        )

    async def get_tenant(self, name):
        return await self._call(
            f"Tenant {name}",
            self.clients["custom"].get_cluster_custom_object,
            C.API_GROUP, C.API_VERSION, C.PLURAL, name,
        )

    async def update_tenant(self, tenant):
        name = tenant["metadata"]["name"]
        return await self._call(
            f"Update Tenant {name}",
            self.clients["custom"].replace_cluster_custom_object,
            C.API_GROUP, C.API_VERSION, C.PLURAL, name, tenant,
        )

    async def update_tenant_status(self, tenant):
        name = tenant["metadata"]["name"]
        return await self._call(
            f"Update Tenant {name} status",
            self.clients["custom"].replace_cluster_custom_object_status,
            C.API_GROUP, C.API_VERSION, C.PLURAL, name, tenant,
        )
