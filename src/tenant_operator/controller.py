"""Invocation scheduling for the reconcile loop.

Invocations for one tenant never overlap, distinct tenants run concurrently
up to the worker limit, and every invocation is bounded by a deadline.
"""

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict

from . import constants as C
from .errors import DeadlineExceeded
from .reconciler import Result, TenantReconciler

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped when nobody holds or waits for it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TenantController:
    """Serializes, bounds and times out calls to ``TenantReconciler.reconcile``."""

    def __init__(
        self,
        reconciler: TenantReconciler,
        max_concurrent: int = C.MAX_CONCURRENT_RECONCILES,
        timeout: float = C.RECONCILE_TIMEOUT,
    ):
        self.reconciler = reconciler
        self.timeout = timeout
        self.locks = KeyedLocks()
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def run(self, name: str) -> Result:
        async with self.locks.hold(name):
            async with self.semaphore:
                try:
                    return await asyncio.wait_for(self.reconciler.reconcile(name), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Reconciliation of tenant {name} abandoned after {self.timeout}s")
                    raise DeadlineExceeded(f"Reconciliation of tenant {name} exceeded {self.timeout}s") from None
