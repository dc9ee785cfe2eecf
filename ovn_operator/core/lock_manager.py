"""
Per-cluster lock manager

Guarantees that no two reconciliation passes operate on the same
OVNDBCluster at once, while distinct clusters reconcile concurrently.

Features:
- One asyncio.Lock per cluster key, created on demand
- Lock ownership tracking (holder and operation)
- Non-blocking acquisition for callers that would rather skip than wait
- Idle locks are dropped so the table does not grow with deleted clusters

Across operator replicas, exclusion is provided by leader election; this
manager covers the passes running inside one process.

Usage:
    >>> lock_mgr = ClusterLockManager()
    >>> async with lock_mgr.hold("openstack/ovndbcluster-nb", "worker-1", "pass-abc"):
    ...     await reconcile()
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ClusterLockManager:
    """
    In-process lock manager keyed by cluster identity.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, Dict[str, Any]] = {}
        self._waiters: Dict[str, int] = {}

    def _get_lock(self, cluster_key: str) -> asyncio.Lock:
        lock = self._locks.get(cluster_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[cluster_key] = lock
        return lock

    async def acquire_lock(
        self,
        cluster_key: str,
        holder_id: str,
        operation_id: str,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Acquire the exclusive lock for a cluster.

        Args:
            cluster_key: "<namespace>/<name>" of the cluster
            holder_id: ID of the worker acquiring the lock
            operation_id: ID of the pass requiring the lock
            timeout: Seconds to wait; None waits forever, 0 does not wait

        Returns:
            True if the lock was acquired, False on timeout
        """
        lock = self._get_lock(cluster_key)

        if timeout == 0:
            if lock.locked():
                logger.debug(
                    "cluster_lock_busy",
                    cluster=cluster_key,
                    holder_id=holder_id,
                    existing_lock=self._holders.get(cluster_key),
                )
                return False
            await lock.acquire()
        else:
            self._waiters[cluster_key] = self._waiters.get(cluster_key, 0) + 1
            try:
                if timeout is None:
                    await lock.acquire()
                else:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "cluster_lock_wait_timeout",
                    cluster=cluster_key,
                    holder_id=holder_id,
                    operation_id=operation_id,
                    timeout=timeout,
                )
                return False
            finally:
                self._waiters[cluster_key] -= 1

        self._holders[cluster_key] = {
            "holder_id": holder_id,
            "operation_id": operation_id,
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.debug(
            "cluster_lock_acquired",
            cluster=cluster_key,
            holder_id=holder_id,
            operation_id=operation_id,
        )
        return True

    def release_lock(self, cluster_key: str, holder_id: str) -> bool:
        """
        Release the lock on a cluster.

        Only the holder that acquired the lock can release it.

        Returns:
            True if released, False if the lock is not held by holder_id
        """
        holder = self._holders.get(cluster_key)
        if holder is None:
            logger.warning("cluster_lock_release_no_lock", cluster=cluster_key, holder_id=holder_id)
            return False

        if holder["holder_id"] != holder_id:
            logger.error(
                "cluster_lock_release_wrong_owner",
                cluster=cluster_key,
                holder_id=holder_id,
                actual_owner=holder["holder_id"],
            )
            return False

        del self._holders[cluster_key]
        self._locks[cluster_key].release()

        if not self._waiters.get(cluster_key):
            self._locks.pop(cluster_key, None)
            self._waiters.pop(cluster_key, None)

        logger.debug(
            "cluster_lock_released",
            cluster=cluster_key,
            holder_id=holder_id,
            operation_id=holder["operation_id"],
        )
        return True

    def get_lock_info(self, cluster_key: str) -> Optional[Dict[str, Any]]:
        """Information about the current holder, or None if unlocked."""
        holder = self._holders.get(cluster_key)
        return dict(holder) if holder else None

    def is_locked(self, cluster_key: str) -> bool:
        lock = self._locks.get(cluster_key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self, cluster_key: str, holder_id: str, operation_id: str
    ) -> AsyncIterator[None]:
        """Hold the cluster lock for the duration of the block."""
        await self.acquire_lock(cluster_key, holder_id, operation_id)
        try:
            yield
        finally:
            self.release_lock(cluster_key, holder_id)
