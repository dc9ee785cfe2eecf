"""
Leader election for operator replicas.

Only the lease holder runs the reconciliation worker, so two replicas never
drive the same cluster. The lease is a Redis key set with NX and EX; renewal
and release only touch the key while it still names this instance.
"""
import asyncio
from typing import Optional

from ovn_operator.config.logging import get_logger
from ovn_operator.config.redis import RedisConnection
from ovn_operator.workers.reconciliation_worker import ReconciliationWorker

logger = get_logger(__name__)

LEADER_KEY = "ovn-operator:leader:reconciler"

# Extend the TTL only if we still hold the lease
_RENEW_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""

# Delete the key only if we still hold the lease
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LeaderElection:
    """
    Lease-based leader election on a single Redis key.
    """

    def __init__(self, instance_id: str, lease_duration: int = 30, leader_key: str = LEADER_KEY):
        """
        Args:
            instance_id: Unique identifier of this operator replica
            lease_duration: Lease TTL in seconds
            leader_key: Redis key holding the current leader id
        """
        self.instance_id = instance_id
        self.lease_duration = lease_duration
        self.leader_key = leader_key
        self.is_leader = False

    @property
    def renew_interval(self) -> int:
        return max(1, self.lease_duration // 3)

    async def acquire_leadership(self) -> bool:
        """Take the lease if it is free; True if this instance holds it."""
        redis = await RedisConnection.get_client()

        if await redis.set(self.leader_key, self.instance_id, nx=True, ex=self.lease_duration):
            self._became(True)
            return True

        current_leader = await redis.get(self.leader_key)
        self._became(current_leader == self.instance_id, current_leader)
        return self.is_leader

    async def renew_lease(self) -> bool:
        """Extend the lease TTL; False when the lease was lost meanwhile."""
        if not self.is_leader:
            return False

        redis = await RedisConnection.get_client()
        renewed = await redis.eval(
            _RENEW_SCRIPT, 1, self.leader_key, self.instance_id, self.lease_duration
        )
        if renewed:
            logger.debug("leadership_lease_renewed", instance_id=self.instance_id)
            return True

        self._became(False)
        return False

    async def release_leadership(self) -> None:
        """Give the lease up on shutdown so a standby can take over at once."""
        if not self.is_leader:
            return

        redis = await RedisConnection.get_client()
        if await redis.eval(_RELEASE_SCRIPT, 1, self.leader_key, self.instance_id):
            logger.info("leadership_released", instance_id=self.instance_id)
        self.is_leader = False

    def _became(self, leader: bool, current_leader: Optional[str] = None) -> None:
        if leader and not self.is_leader:
            logger.info("leadership_acquired", instance_id=self.instance_id)
        elif not leader and self.is_leader:
            logger.warning("leadership_lost", instance_id=self.instance_id, leader=current_leader)
        self.is_leader = leader


async def run_with_leadership(election: LeaderElection, worker: ReconciliationWorker) -> None:
    """
    Keep the worker running exactly while this instance holds the lease.

    Runs until cancelled; on cancellation the worker is stopped and the lease
    released.
    """
    worker_task: Optional[asyncio.Task] = None

    try:
        while True:
            try:
                leader = await election.acquire_leadership()
                if leader and election.is_leader:
                    leader = await election.renew_lease()
            except Exception as e:
                logger.error("leader_election_error", instance_id=election.instance_id, error=str(e))
                leader = False

            if leader and (worker_task is None or worker_task.done()):
                logger.info("became_leader_starting_reconciler", instance_id=election.instance_id)
                worker_task = asyncio.create_task(worker.start())
            elif not leader and worker.running:
                logger.info("lost_leadership_stopping_reconciler", instance_id=election.instance_id)
                await worker.stop()

            await asyncio.sleep(election.renew_interval)
    except asyncio.CancelledError:
        if worker.running:
            await worker.stop()
        if worker_task is not None:
            worker_task.cancel()
        try:
            await election.release_leadership()
        except Exception as e:
            logger.warning("leadership_release_failed", instance_id=election.instance_id, error=str(e))
        raise
