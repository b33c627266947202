"""Finalizer management and the tenant finalization sequence."""

import logging
from typing import Any, Dict

from . import constants as C
from .errors import IdentityServiceError, NotFoundError
from .identity import IdentityServiceClient
from .resources import namespace_name
from .status import TenantPhase, set_phase
from .store import ResourceStore

logger = logging.getLogger(__name__)


def is_deleting(tenant: Dict[str, Any]) -> bool:
    return bool(tenant["metadata"].get("deletionTimestamp"))


def has_finalizer(tenant: Dict[str, Any]) -> bool:
    return C.FINALIZER in (tenant["metadata"].get("finalizers") or [])


def add_finalizer(tenant: Dict[str, Any]) -> bool:
    """Attach the finalizer token; returns True if the tenant changed."""
    finalizers = tenant["metadata"].setdefault("finalizers", [])
    if C.FINALIZER in finalizers:
        return False
    finalizers.append(C.FINALIZER)
    return True


def remove_finalizer(tenant: Dict[str, Any]) -> bool:
    finalizers = tenant["metadata"].get("finalizers") or []
    if C.FINALIZER not in finalizers:
        return False
    tenant["metadata"]["finalizers"] = [f for f in finalizers if f != C.FINALIZER]
    return True


async def delete_namespace(store: ResourceStore, namespace: str) -> None:
    """Request deletion of the tenant namespace.

    Namespaces are removed asynchronously and the API server rejects a second
    delete while content is being purged, so a namespace already marked for
    deletion counts as deleted.
    """
    try:
        live = await store.get("Namespace", namespace)
    except NotFoundError:
        logger.info(f"Namespace {namespace} already gone")
        return

    if live["metadata"].get("deletionTimestamp") or (live.get("status") or {}).get("phase") == "Terminating":
        logger.info(f"Namespace {namespace} is already terminating")
        return

    try:
        await store.delete("Namespace", namespace)
    except NotFoundError:
        return
    logger.info(f"Deleted Namespace {namespace}")


async def finalize(store: ResourceStore, identity: IdentityServiceClient, tenant: Dict[str, Any]) -> bool:
    """Run one step of the finalization sequence.

    The first call only moves the tenant to Terminating. The next one deletes
    the namespace (owned resources cascade with it), deregisters the tenant
    from the identity service and finally releases the finalizer.

    Returns True once the finalizer has been removed.
    """
    name = tenant["metadata"]["name"]
    status = tenant.setdefault("status", {})

    if status.get("phase") != TenantPhase.TERMINATING.value:
        set_phase(status, TenantPhase.TERMINATING)
        await store.update_tenant_status(tenant)
        logger.info(f"Tenant {name} is terminating")
        return False

    namespace = status.get("namespace") or namespace_name(name)
    await delete_namespace(store, namespace)

    try:
        await identity.deregister(name)
    except IdentityServiceError as e:
        logger.error(f"Failed to deregister tenant {name} from identity service: {e}")

    if remove_finalizer(tenant):
        await store.update_tenant(tenant)
    logger.info(f"Finalized tenant {name}")
    return True
