"""Pytest configuration and shared fixtures."""

import copy
import itertools
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import yaml

from tenant_operator import constants as C
from tenant_operator.errors import ConflictError, IdentityServiceError, NotFoundError
from tenant_operator.reconciler import Result, TenantReconciler
from tenant_operator.store import ResourceStore

FIXTURES = Path(__file__).parent / "fixtures"

WORKLOAD_KINDS = ("Deployment", "StatefulSet")


class InMemoryStore(ResourceStore):
    """Resource store double modelling the parts of the API server the operator relies on.

    - resourceVersion checks on every update
    - the Tenant status subresource is written separately from metadata/spec
    - a Tenant with finalizers is only marked for deletion
    - deleting an owner or a namespace removes its dependents
    - with ``terminating_namespaces`` set, a deleted namespace lingers in the
      Terminating phase until ``purge_namespace`` and a second delete is rejected
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, Optional[str], str], Dict[str, Any]] = {}
        self.tenants: Dict[str, Dict[str, Any]] = {}
        self.writes: List[Tuple[str, str, str]] = []
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)
        self.terminating_namespaces = False
        self.tenant_update_conflicts = 0

    # -- helpers --------------------------------------------------------------

    def _version(self) -> str:
        return str(next(self._versions))

    @staticmethod
    def _key(kind: str, name: str, namespace: Optional[str]) -> Tuple[str, Optional[str], str]:
        return (kind, None if kind == "Namespace" else namespace, name)

    def _check_version(self, current: Dict[str, Any], incoming: Dict[str, Any], what: str) -> None:
        incoming_version = incoming["metadata"].get("resourceVersion")
        if incoming_version and incoming_version != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"{what} was modified")

    def _cascade(self, uid: str) -> None:
        for key, obj in list(self.objects.items()):
            if key not in self.objects:
                continue
            owners = obj["metadata"].get("ownerReferences") or []
            if any(ref.get("uid") == uid for ref in owners):
                self._remove(key)

    def _remove(self, key: Tuple[str, Optional[str], str]) -> None:
        obj = self.objects.pop(key)
        if key[0] == "Namespace":
            for other in [k for k in self.objects if k[1] == key[2]]:
                self.objects.pop(other, None)
        self._cascade(obj["metadata"]["uid"])

    def _reap_tenant(self, name: str) -> None:
        tenant = self.tenants.pop(name)
        self._cascade(tenant["metadata"]["uid"])

    # -- ResourceStore --------------------------------------------------------

    async def get(self, kind, name, namespace=None):
        obj = self.objects.get(self._key(kind, name, namespace))
        if obj is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        return copy.deepcopy(obj)

    async def list(self, kind, namespace=None, label_selector=""):
        wanted = dict(term.split("=", 1) for term in label_selector.split(",") if term)
        items = []
        for (obj_kind, obj_namespace, _), obj in sorted(self.objects.items(), key=lambda item: item[0][2]):
            if obj_kind != kind or (namespace and obj_namespace != namespace):
                continue
            labels = obj["metadata"].get("labels") or {}
            if all(labels.get(k) == v for k, v in wanted.items()):
                items.append(copy.deepcopy(obj))
        return items

    async def create(self, resource):
        kind = resource["kind"]
        meta = resource["metadata"]
        key = self._key(kind, meta["name"], meta.get("namespace"))
        if key in self.objects:
            raise ConflictError(f"{kind} {meta['name']} already exists")
        if kind != "Namespace" and ("Namespace", None, meta.get("namespace")) not in self.objects:
            raise NotFoundError(f"namespace {meta.get('namespace')} not found")

        obj = copy.deepcopy(resource)
        obj["metadata"]["uid"] = f"uid-{next(self._uids)}"
        obj["metadata"]["resourceVersion"] = self._version()
        if kind == "Namespace":
            obj["status"] = {"phase": "Active"}
            obj["metadata"].setdefault("labels", {})[C.LABEL_NAMESPACE_NAME] = meta["name"]
        if kind in WORKLOAD_KINDS:
            obj["status"] = {"replicas": obj["spec"].get("replicas", 1)}
        if kind == "Service" and obj["spec"].get("clusterIP") is None:
            obj["spec"]["clusterIP"] = "10.0.0.1"

        self.objects[key] = obj
        self.writes.append(("create", kind, meta["name"]))
        return copy.deepcopy(obj)

    async def update(self, resource):
        kind = resource["kind"]
        meta = resource["metadata"]
        key = self._key(kind, meta["name"], meta.get("namespace"))
        current = self.objects.get(key)
        if current is None:
            raise NotFoundError(f"{kind} {meta['name']} not found")
        self._check_version(current, resource, f"{kind} {meta['name']}")

        obj = copy.deepcopy(resource)
        obj["status"] = copy.deepcopy(current.get("status"))
        obj["metadata"]["uid"] = current["metadata"]["uid"]
        obj["metadata"]["resourceVersion"] = self._version()
        self.objects[key] = obj
        self.writes.append(("update", kind, meta["name"]))
        return copy.deepcopy(obj)

    async def delete(self, kind, name, namespace=None):
        key = self._key(kind, name, namespace)
        if key not in self.objects:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        self.writes.append(("delete", kind, name))
        if kind == "Namespace" and self.terminating_namespaces:
            namespace_obj = self.objects[key]
            if namespace_obj["metadata"].get("deletionTimestamp"):
                raise ConflictError("The system is ensuring all content is removed from this namespace")
            namespace_obj["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
            namespace_obj["status"] = {"phase": "Terminating"}
            namespace_obj["metadata"]["resourceVersion"] = self._version()
            return
        self._remove(key)

    async def get_tenant(self, name):
        if name not in self.tenants:
            raise NotFoundError(f"Tenant {name} not found")
        return copy.deepcopy(self.tenants[name])

    async def update_tenant(self, tenant):
        name = tenant["metadata"]["name"]
        current = self.tenants.get(name)
        if current is None:
            raise NotFoundError(f"Tenant {name} not found")
        if self.tenant_update_conflicts:
            self.tenant_update_conflicts -= 1
            raise ConflictError(f"Tenant {name} was modified")
        self._check_version(current, tenant, f"Tenant {name}")

        updated = copy.deepcopy(tenant)
        updated["status"] = copy.deepcopy(current.get("status"))
        updated["metadata"]["deletionTimestamp"] = current["metadata"].get("deletionTimestamp")
        updated["metadata"]["resourceVersion"] = self._version()
        self.tenants[name] = updated
        self.writes.append(("update", "Tenant", name))

        if updated["metadata"].get("deletionTimestamp") and not updated["metadata"].get("finalizers"):
            self._reap_tenant(name)
        return copy.deepcopy(updated)

    async def update_tenant_status(self, tenant):
        name = tenant["metadata"]["name"]
        current = self.tenants.get(name)
        if current is None:
            raise NotFoundError(f"Tenant {name} not found")
        self._check_version(current, tenant, f"Tenant {name}")

        current["status"] = copy.deepcopy(tenant.get("status"))
        current["metadata"]["resourceVersion"] = self._version()
        self.writes.append(("status", "Tenant", name))
        return copy.deepcopy(current)

    # -- test controls --------------------------------------------------------

    def add_tenant(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        tenant = copy.deepcopy(manifest)
        tenant.setdefault("apiVersion", f"{C.API_GROUP}/{C.API_VERSION}")
        tenant.setdefault("kind", C.KIND)
        tenant.setdefault("spec", {})
        tenant["metadata"]["uid"] = f"uid-{next(self._uids)}"
        tenant["metadata"]["resourceVersion"] = self._version()
        self.tenants[tenant["metadata"]["name"]] = tenant
        return tenant

    def request_deletion(self, name: str) -> None:
        tenant = self.tenants[name]
        if not tenant["metadata"].get("finalizers"):
            self._reap_tenant(name)
            return
        tenant["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        tenant["metadata"]["resourceVersion"] = self._version()

    def set_ready(self, kind: str, name: str, namespace: str, ready: Optional[int] = None) -> None:
        """Simulate pods becoming ready for a workload."""
        obj = self.objects[self._key(kind, name, namespace)]
        replicas = obj["spec"].get("replicas", 1)
        obj.setdefault("status", {})["readyReplicas"] = replicas if ready is None else ready
        obj["metadata"]["resourceVersion"] = self._version()

    def mutate(self, kind: str, name: str, namespace: Optional[str], change: Callable[[Dict[str, Any]], None]) -> None:
        """Apply an out-of-band edit, as a user with kubectl would."""
        obj = self.objects[self._key(kind, name, namespace)]
        change(obj)
        obj["metadata"]["resourceVersion"] = self._version()

    def purge_namespace(self, name: str) -> None:
        """Finish an asynchronous namespace deletion."""
        self._remove(self._key("Namespace", name, None))

    def find(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return self.objects.get(self._key(kind, name, namespace))


class FakeIdentityService:
    """In-memory identity service with the client surface the operator uses."""

    base_url = "http://auth:3000"

    def __init__(self):
        self.tenants = set()
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.fail_list = False
        self.fail_register = False
        self.fail_deregister = False

    async def list_tenants(self):
        if self.fail_list:
            raise IdentityServiceError("identity service unreachable")
        return sorted(self.tenants)

    async def tenant_exists(self, tenant_id):
        return tenant_id in await self.list_tenants()

    async def register(self, tenant_id):
        if self.fail_register:
            raise IdentityServiceError("POST /api/tenants returned 500", status=500, body="boom")
        self.tenants.add(tenant_id)
        self.created.append(tenant_id)

    async def deregister(self, tenant_id):
        if self.fail_deregister:
            raise IdentityServiceError("identity service unreachable")
        self.tenants.discard(tenant_id)
        self.deleted.append(tenant_id)

    async def close(self):
        pass


@pytest.fixture
def tenant_manifest():
    """Sample Tenant with every optional section populated."""
    with open(FIXTURES / "tenant.yaml") as f:
        return yaml.safe_load(f)


@pytest.fixture
def minimal_tenant():
    return {
        "apiVersion": f"{C.API_GROUP}/{C.API_VERSION}",
        "kind": C.KIND,
        "metadata": {"name": "demo", "uid": "tenant-uid"},
        "spec": {},
    }


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def identity():
    return FakeIdentityService()


@pytest.fixture
def reconciler(store, identity):
    return TenantReconciler(store, identity, resync_interval=30)


@pytest.fixture
def drive(store, reconciler):
    """Run the reconciler until it stops asking for an immediate re-invocation.

    Returns the final result and every phase observed along the way.
    """

    async def run(name: str, max_steps: int = 20) -> Tuple[Result, List[str]]:
        phases: List[str] = []
        for _ in range(max_steps):
            result = await reconciler.reconcile(name)
            tenant = store.tenants.get(name)
            phase = ((tenant or {}).get("status") or {}).get("phase")
            if phase and (not phases or phases[-1] != phase):
                phases.append(phase)
            if not result.requeue:
                return result, phases
        raise AssertionError(f"Tenant {name} did not settle within {max_steps} invocations")

    return run


@pytest.fixture
def ready_all(store):
    """Mark every workload of a tenant as fully ready."""

    def run(tenant_name: str) -> None:
        namespace = f"{C.NAMESPACE_PREFIX}{tenant_name}"
        store.set_ready("StatefulSet", f"{tenant_name}-redis", namespace)
        store.set_ready("Deployment", f"{tenant_name}-server", namespace)
        store.set_ready("Deployment", f"{tenant_name}-registry", namespace)

    return run
