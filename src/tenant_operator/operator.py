"""Main Kopf operator for Tenant resources."""

import logging

import kopf

from . import constants as C
from .controller import TenantController
from .errors import ReconcileError
from .identity import IdentityServiceClient
from .reconciler import Result, TenantReconciler
from .store import KubernetesStore

logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    """Configure kopf and build the per-process store, identity client and controller."""
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=C.API_GROUP)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(prefix=C.API_GROUP)
    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = C.API_REQUEST_TIMEOUT
    settings.batching.worker_limit = C.MAX_CONCURRENT_RECONCILES
    settings.execution.max_workers = C.MAX_CONCURRENT_RECONCILES

    store = KubernetesStore()
    identity = IdentityServiceClient(C.IDENTITY_SERVICE_URL, C.IDENTITY_SERVICE_TIMEOUT)
    memo.identity = identity
    memo.controller = TenantController(TenantReconciler(store, identity))

    logger.info(
        f"Tenant operator started (workers={C.MAX_CONCURRENT_RECONCILES}, "
        f"resync={C.RESYNC_INTERVAL}s, identity={C.IDENTITY_SERVICE_URL})"
    )


@kopf.on.cleanup()
async def shutdown(memo: kopf.Memo, **kwargs):
    identity = getattr(memo, "identity", None)
    if identity is not None:
        await identity.close()


async def run_reconcile(controller: TenantController, name: str) -> Result:
    """Run one invocation, turning a requeue or a failure into a kopf retry."""
    try:
        result = await controller.run(name)
    except ReconcileError as e:
        logger.warning(f"Reconciliation of tenant {name} failed: {e}")
        raise kopf.TemporaryError(str(e), delay=e.delay) from e

    if result.requeue:
        raise kopf.TemporaryError(f"Tenant {name} advanced a step", delay=C.REQUEUE_DELAY)
    return result


@kopf.on.resume(C.API_GROUP, C.API_VERSION, C.PLURAL, retries=C.MAX_RETRIES, backoff=C.RETRY_BACKOFF)
@kopf.on.create(C.API_GROUP, C.API_VERSION, C.PLURAL, retries=C.MAX_RETRIES, backoff=C.RETRY_BACKOFF)
@kopf.on.update(C.API_GROUP, C.API_VERSION, C.PLURAL, retries=C.MAX_RETRIES, backoff=C.RETRY_BACKOFF)
async def reconcile_tenant(name, memo: kopf.Memo, **kwargs):
    """Reconcile a Tenant on creation, change or operator restart."""
    logger.info(f"Reconciling Tenant {name}")
    await run_reconcile(memo.controller, name)


# Not retry-bounded: the tenant keeps neurallog.io/finalizer until this succeeds.
# The handler is optional, but kopf still adds its own finalizer for the timer
# below, and that finalizer is what makes kopf deliver the deletion here.
@kopf.on.delete(C.API_GROUP, C.API_VERSION, C.PLURAL, optional=True, backoff=C.RETRY_BACKOFF)
async def delete_tenant(name, memo: kopf.Memo, **kwargs):
    """Handle Tenant deletion.

    The tenant carries its own finalizer; this handler only drives the
    finalization sequence until that finalizer is released.
    """
    logger.info(f"Tenant {name} deletion requested")
    await run_reconcile(memo.controller, name)


@kopf.timer(C.API_GROUP, C.API_VERSION, C.PLURAL, interval=C.RESYNC_INTERVAL, backoff=C.RETRY_BACKOFF)
async def resync_tenant(name, memo: kopf.Memo, **kwargs):
    """Periodic re-reconciliation correcting out-of-band drift."""
    await run_reconcile(memo.controller, name)


def main():
    """Entry point for the operator."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # Kopf takes over from here
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
