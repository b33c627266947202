"""Tenant namespace reconciliation."""

import logging
from typing import Any, Dict, Tuple

from .convergence import Outcome, converge
from .errors import TransientError
from .resources import build_namespace
from .store import ResourceStore

logger = logging.getLogger(__name__)


async def reconcile_namespace(store: ResourceStore, tenant: Dict[str, Any]) -> Tuple[Outcome, str]:
    """Ensure the tenant namespace exists with the managed labels.

    Raises ``TransientError`` while a previous namespace of the same name is
    still being torn down.
    """
    desired = build_namespace(tenant["metadata"]["name"], tenant)
    name = desired["metadata"]["name"]

    outcome, live = await converge(store, desired)

    phase = (live.get("status") or {}).get("phase")
    if phase == "Terminating":
        logger.info(f"Namespace {name} is still terminating, retrying later")
        raise TransientError(f"Namespace {name} is terminating, not yet ready")

    return outcome, name
