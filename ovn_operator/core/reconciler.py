"""
Reconciliation pass for a single OVNDBCluster.

Runs validator -> member set -> endpoints -> config -> aggregation under the
cluster's lock. The stored status is never mutated in place: each pass works
on a copy, and the caller decides whether to persist it.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from ovn_operator.config.logging import get_logger, pass_context
from ovn_operator.core.config_coordinator import ConfigChangeCoordinator, RolloutState
from ovn_operator.core.endpoint_resolver import EndpointResolver
from ovn_operator.core.lock_manager import ClusterLockManager
from ovn_operator.core.member_reconciler import MemberSetReconciler
from ovn_operator.core.status_aggregator import PassObservations, StatusAggregator
from ovn_operator.core.validator import validate_cluster_name, validate_spec
from ovn_operator.exceptions import (
    InvalidSpecError,
    OVNOperatorException,
    PlatformUnavailableError,
)
from ovn_operator.models.conditions import ConditionType
from ovn_operator.models.ovndbcluster import OVNDBCluster, OVNDBClusterStatus
from ovn_operator.services import metrics
from ovn_operator.services.collaborators import (
    NetworkAttachmentResolver,
    RaftMemberClient,
    ReadinessProbe,
    WorkloadClient,
)
from ovn_operator.utils.clock import Clock, utcnow
from ovn_operator.utils.retry import CallPolicy

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """
    Outcome of one pass.

    requeue is set when the pass hit a transient platform failure and should
    be retried with backoff rather than on the next regular tick.
    """

    status: OVNDBClusterStatus
    requeue: bool = False
    error: Optional[OVNOperatorException] = None

    @property
    def ready(self) -> bool:
        return self.status.is_condition_true(ConditionType.READY)


class OVNDBClusterReconciler:
    """
    Drives one OVNDBCluster toward its declaration.

    Collaborators are injected so the pass can run against Kubernetes or
    against in-memory fakes.
    """

    def __init__(
        self,
        workload: WorkloadClient,
        probe: ReadinessProbe,
        resolver: NetworkAttachmentResolver,
        raft: RaftMemberClient,
        policy: Optional[CallPolicy] = None,
        clock: Clock = utcnow,
        lock_manager: Optional[ClusterLockManager] = None,
        grace_seconds: Optional[int] = None,
    ):
        policy = policy or CallPolicy.from_settings()
        self.members = MemberSetReconciler(workload, probe, policy)
        self.endpoints = EndpointResolver(resolver, policy)
        self.config = ConfigChangeCoordinator(raft, policy, clock)
        self.aggregator = StatusAggregator(clock, grace_seconds)
        self.lock_manager = lock_manager or ClusterLockManager()
        self.holder_id = f"reconciler-{uuid.uuid4().hex[:8]}"

    async def reconcile(self, cluster: OVNDBCluster) -> ReconcileResult:
        """
        Run one pass for a cluster.

        Returns:
            ReconcileResult with the new status

        Raises:
            OVNOperatorException: For errors that are not part of normal
                operation (malformed stored state, non-retryable API errors)
        """
        operation_id = uuid.uuid4().hex
        started = time.monotonic()

        with pass_context(cluster.key, operation_id):
            async with self.lock_manager.hold(cluster.key, self.holder_id, operation_id):
                try:
                    result = await self._run(cluster)
                except Exception:
                    metrics.record_pass("error", time.monotonic() - started)
                    logger.exception(
                        "reconcile_pass_failed",
                        cluster=cluster.metadata.name,
                        namespace=cluster.metadata.namespace,
                    )
                    raise

        if isinstance(result.error, InvalidSpecError):
            outcome = "invalid_spec"
        elif result.requeue:
            outcome = "platform_unavailable"
        else:
            outcome = "success"
        metrics.record_pass(outcome, time.monotonic() - started)
        return result

    async def _run(self, cluster: OVNDBCluster) -> ReconcileResult:
        name = cluster.metadata.name
        namespace = cluster.metadata.namespace
        generation = cluster.metadata.generation
        status = cluster.status.model_copy(deep=True)
        observed = PassObservations()

        try:
            validate_cluster_name(name)
            spec = validate_spec(cluster.spec, previous_db_type=status.observed_db_type)
        except InvalidSpecError as e:
            logger.warning(
                "cluster_spec_invalid",
                cluster=name,
                namespace=namespace,
                field=e.field,
                error=e.message,
            )
            observed.invalid_spec = e
            self.aggregator.aggregate(name, namespace, generation, status, observed)
            return ReconcileResult(status=status, error=e)

        observed.spec = spec

        try:
            observed.members = await self.members.reconcile(name, namespace, spec, status)
        except PlatformUnavailableError as e:
            logger.warning(
                "member_set_unavailable",
                cluster=name,
                namespace=namespace,
                operation=e.operation,
                error=e.message,
            )
            observed.platform_error = e
            self.aggregator.aggregate(name, namespace, generation, status, observed)
            return ReconcileResult(status=status, requeue=True, error=e)

        observed.endpoints = await self.endpoints.resolve(
            name, namespace, spec, observed.members.members, status
        )
        observed.config = await self.config.reconcile(
            name, namespace, spec, observed.members, status
        )
        self.aggregator.aggregate(name, namespace, generation, status, observed)

        error = observed.endpoints.transient_error
        if observed.config.state == RolloutState.FAILED:
            error = observed.config.error

        logger.info(
            "reconcile_pass_completed",
            cluster=name,
            namespace=namespace,
            db_type=spec.db_type.value,
            ready_count=status.ready_count,
            desired=spec.replicas,
            created=observed.members.created,
            removed=observed.members.removed,
            config=observed.config.state.value,
        )
        return ReconcileResult(status=status, requeue=error is not None, error=error)
