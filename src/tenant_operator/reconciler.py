"""Tenant reconcile loop.

Each invocation reads the tenant afresh and advances it by at most one
persisted lifecycle step:

    unset -> Pending -> (finalizer) -> Provisioning -> (namespace recorded)
          -> components + identity record -> Running

A deletion request interrupts the sequence at any point and hands over to
the finalization sequence.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import constants as C
from .cache import reconcile_redis
from .errors import IdentityServiceError, NotFoundError, ReconcileError
from .finalizer import add_finalizer, finalize, has_finalizer, is_deleting
from .identity import IdentityServiceClient, sync_tenant
from .namespace import reconcile_namespace
from .network import reconcile_network_policies
from .quota import reconcile_quota
from .registry import reconcile_registry
from .server import reconcile_server
from .status import (
    ComponentPhase,
    ComponentStatus,
    TenantPhase,
    set_condition,
    set_phase,
)
from .store import ResourceStore

logger = logging.getLogger(__name__)

CONDITION_READY = "Ready"
CONDITION_IDENTITY = "IdentityRegistered"


@dataclass
class Result:
    """What the caller should do after an invocation."""

    requeue: bool = False
    requeue_after: Optional[float] = None


class TenantReconciler:
    """Drives one tenant towards its declared state."""

    def __init__(
        self,
        store: ResourceStore,
        identity: IdentityServiceClient,
        resync_interval: float = C.RESYNC_INTERVAL,
    ):
        self.store = store
        self.identity = identity
        self.resync_interval = resync_interval

    async def _set_phase(self, tenant: Dict[str, Any], phase: TenantPhase) -> Result:
        previous = tenant["status"].get("phase")
        set_phase(tenant["status"], phase)
        await self.store.update_tenant_status(tenant)
        logger.info(f"Tenant {tenant['metadata']['name']} phase {previous or '<unset>'} -> {phase.value}")
        return Result(requeue=True)

    async def reconcile(self, name: str) -> Result:
        try:
            tenant = await self.store.get_tenant(name)
        except NotFoundError:
            logger.info(f"Tenant {name} not found, nothing to do")
            return Result()

        status = tenant.get("status") or {}
        tenant["status"] = status

        if not status.get("phase"):
            if is_deleting(tenant) and not has_finalizer(tenant):
                return Result()
            return await self._set_phase(tenant, TenantPhase.PENDING)

        if not is_deleting(tenant) and not has_finalizer(tenant):
            add_finalizer(tenant)
            await self.store.update_tenant(tenant)
            logger.info(f"Added finalizer to tenant {name}")
            return Result(requeue=True)

        if is_deleting(tenant):
            if not has_finalizer(tenant):
                return Result()
            done = await finalize(self.store, self.identity, tenant)
            return Result() if done else Result(requeue=True)

        if status["phase"] == TenantPhase.PENDING.value:
            return await self._set_phase(tenant, TenantPhase.PROVISIONING)

        _, namespace = await reconcile_namespace(self.store, tenant)
        if status.get("namespace") != namespace:
            status["namespace"] = namespace
            await self.store.update_tenant_status(tenant)
            logger.info(f"Tenant {name} assigned namespace {namespace}")
            return Result(requeue=True)

        return await self._reconcile_components(tenant, namespace)

    async def _reconcile_components(self, tenant: Dict[str, Any], namespace: str) -> Result:
        name = tenant["metadata"]["name"]
        status = tenant["status"]
        observed = copy.deepcopy(status)

        components = {
            "redisStatus": await reconcile_redis(self.store, tenant, namespace),
            "serverStatus": await reconcile_server(self.store, tenant, namespace, self.identity.base_url),
            "registryStatus": await reconcile_registry(self.store, tenant, namespace),
        }
        await reconcile_quota(self.store, tenant, namespace)
        await reconcile_network_policies(self.store, tenant, namespace)

        for key, component in components.items():
            status[key] = component.to_dict()
        self._set_ready_condition(status, list(components.values()))

        try:
            created = await sync_tenant(self.identity, name)
        except IdentityServiceError as e:
            set_condition(status, CONDITION_IDENTITY, False, "RegistrationFailed", str(e))
            if status != observed:
                await self._persist_best_effort(tenant)
            raise
        set_condition(status, CONDITION_IDENTITY, True, "Registered", "Tenant is registered with the identity service")
        if created:
            logger.info(f"Created identity record for tenant {name}")

        all_running = all(component.running for component in components.values())
        if all_running and status["phase"] == TenantPhase.PROVISIONING.value:
            set_phase(status, TenantPhase.RUNNING)
            logger.info(f"Tenant {name} phase {TenantPhase.PROVISIONING.value} -> {TenantPhase.RUNNING.value}")

        if status != observed:
            await self.store.update_tenant_status(tenant)

        return Result(requeue_after=self.resync_interval)

    def _set_ready_condition(self, status: Dict[str, Any], components: List[ComponentStatus]) -> None:
        waiting = [c for c in components if not c.running]
        if not waiting:
            set_condition(status, CONDITION_READY, True, "AllComponentsReady", "All components are running")
            return
        starting = any(c.phase in (ComponentPhase.PENDING, ComponentPhase.PROVISIONING) for c in waiting)
        set_condition(
            status,
            CONDITION_READY,
            False,
            "Provisioning" if starting else "ComponentsNotReady",
            "; ".join(c.message for c in waiting),
        )

    async def _persist_best_effort(self, tenant: Dict[str, Any]) -> None:
        try:
            await self.store.update_tenant_status(tenant)
        except ReconcileError as e:
            logger.warning(f"Could not record status of tenant {tenant['metadata']['name']}: {e}")
