"""
Reconciliation worker for OVNDBCluster objects.

Level-triggered: every interval (or sooner, when triggered) it lists all
clusters and runs one pass for each, patching status only when the pass
changed it. Clusters whose last pass hit a platform failure sit out until
their backoff expires.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Set

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.core.reconciler import OVNDBClusterReconciler
from ovn_operator.exceptions import OVNOperatorException
from ovn_operator.services.cluster_repository import ClusterRepository, parse_cluster
from ovn_operator.utils.clock import utcnow
from ovn_operator.utils.retry import RequeueBackoff

logger = get_logger(__name__)


def object_key(obj: Mapping[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    return f"{metadata.get('namespace', 'default')}/{metadata.get('name', '')}"


class ReconciliationWorker:
    """
    Drives every OVNDBCluster toward its declaration.

    Features:
    - Periodic reconciliation (configurable interval)
    - Early wake-up through trigger() on external change notifications
    - Bounded concurrency across clusters
    - Per-cluster exponential requeue backoff with jitter
    - Graceful shutdown
    """

    def __init__(
        self,
        repository: ClusterRepository,
        reconciler: OVNDBClusterReconciler,
        reconcile_interval: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        backoff: Optional[RequeueBackoff] = None,
    ):
        self.repository = repository
        self.reconciler = reconciler
        self.reconcile_interval = reconcile_interval or settings.reconcile_interval
        self.backoff = backoff or RequeueBackoff(
            settings.requeue_initial_delay, settings.requeue_max_delay
        )
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.max_concurrent_reconciles)
        self._wake = asyncio.Event()
        self._known: Set[str] = set()
        self._sleep_task: Optional[asyncio.Task] = None
        self.running = False
        self.last_cycle_at: Optional[datetime] = None

    async def start(self):
        """Start reconciliation worker (runs until stopped)."""
        self.running = True

        logger.info(
            "reconciliation_worker_started",
            interval_seconds=self.reconcile_interval,
        )

        while self.running:
            try:
                await self.reconcile_all_clusters()

                delay = self._next_delay()
                logger.debug("reconciliation_cycle_completed", next_run_in_seconds=delay)
                try:
                    self._sleep_task = asyncio.create_task(self._wait(delay))
                    await self._sleep_task
                except asyncio.CancelledError:
                    logger.info("reconciliation_sleep_cancelled")
                    break
                finally:
                    self._sleep_task = None

            except asyncio.CancelledError:
                logger.info("reconciliation_worker_cancelled")
                break
            except Exception as e:
                logger.error(
                    "reconciliation_cycle_error",
                    error=str(e),
                    exc_info=True,
                )
                if not self.running:
                    break
                try:
                    self._sleep_task = asyncio.create_task(self._wait(self.reconcile_interval))
                    await self._sleep_task
                except asyncio.CancelledError:
                    logger.info("reconciliation_error_sleep_cancelled")
                    break
                finally:
                    self._sleep_task = None

        self.running = False
        logger.info("reconciliation_worker_stopped")

    async def stop(self):
        """Stop reconciliation worker gracefully."""
        logger.info("stopping_reconciliation_worker")
        self.running = False

        if self._sleep_task and not self._sleep_task.done():
            self._sleep_task.cancel()
            try:
                await self._sleep_task
            except asyncio.CancelledError:
                pass

    def trigger(self, cluster_key: Optional[str] = None) -> None:
        """
        Wake the worker for an immediate cycle.

        A cluster named here skips any pending backoff.
        """
        if cluster_key:
            self.backoff.reset(cluster_key)
        logger.info("reconciliation_triggered", cluster=cluster_key)
        self._wake.set()

    async def reconcile_all_clusters(self) -> Dict[str, bool]:
        """
        Run one pass for every cluster that is not in backoff.

        Returns:
            Mapping of cluster key to whether a pass ran and succeeded
        """
        objects = await self.repository.list_objects()
        keys = {object_key(obj) for obj in objects}

        for gone in self._known - keys:
            self.backoff.reset(gone)
        self._known = keys

        due = [obj for obj in objects if self.backoff.is_due(object_key(obj))]
        if len(due) < len(objects):
            logger.debug("clusters_in_backoff", skipped=len(objects) - len(due))

        outcomes = await asyncio.gather(*(self._reconcile_object(obj) for obj in due))
        self.last_cycle_at = utcnow()
        return {object_key(obj): ok for obj, ok in zip(due, outcomes)}

    async def _reconcile_object(self, obj: Mapping[str, Any]) -> bool:
        key = object_key(obj)
        async with self._semaphore:
            try:
                cluster = parse_cluster(obj)
                result = await self.reconciler.reconcile(cluster)

                if result.status != cluster.status:
                    await self.repository.patch_status(cluster, result.status)

                if result.requeue:
                    delay = self.backoff.record_failure(key)
                    logger.warning(
                        "cluster_requeued_with_backoff",
                        cluster=key,
                        delay_seconds=round(delay, 2),
                        failures=self.backoff.failures(key),
                        error=result.error.message if result.error else None,
                    )
                    return False

                self.backoff.reset(key)
                return True

            except OVNOperatorException as e:
                delay = self.backoff.record_failure(key)
                logger.error(
                    "cluster_reconcile_failed",
                    cluster=key,
                    error=e.message,
                    details=e.details,
                    delay_seconds=round(delay, 2),
                )
                return False
            except Exception as e:
                delay = self.backoff.record_failure(key)
                logger.error(
                    "cluster_reconcile_unexpected_error",
                    cluster=key,
                    error=str(e),
                    delay_seconds=round(delay, 2),
                    exc_info=True,
                )
                return False

    def _next_delay(self) -> float:
        delay = float(self.reconcile_interval)
        for key in self._known:
            remaining = self.backoff.delay_remaining(key)
            if remaining is not None:
                delay = min(delay, remaining)
        return delay

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        finally:
            self._wake.clear()
