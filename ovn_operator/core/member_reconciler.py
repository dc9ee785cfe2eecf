"""
Member set reconciliation.

Converges the live member ordinals toward [0, replicas):

- scale-up creates every missing ordinal in one ensure call
- scale-down removes the highest ordinal, at most one per pass, and only when
  the ready survivors still hold a RAFT majority of the pre-removal set
- replicas == 0 is a deliberate teardown and skips the majority check
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ovn_operator.config.logging import get_logger
from ovn_operator.exceptions import (
    PlatformUnavailableError,
    ProbeFailingError,
    QuorumUnsafeError,
)
from ovn_operator.models.ovndbcluster import (
    OVNDBClusterSpec,
    OVNDBClusterStatus,
    SubResource,
)
from ovn_operator.models.workload import Member, MemberStatus
from ovn_operator.services import metrics
from ovn_operator.services.collaborators import ReadinessProbe, WorkloadClient
from ovn_operator.utils.hashing import fingerprint
from ovn_operator.utils.retry import CallPolicy, call_platform

logger = get_logger(__name__)


def quorum(size: int) -> int:
    """Strict majority of a RAFT cluster of the given size."""
    return size // 2 + 1


def removal_check(live: List[Member], victim: Member) -> Tuple[bool, int, int]:
    """
    Decide whether removing victim keeps the cluster able to commit.

    Returns:
        (safe, ready_survivors, required)
    """
    size = len(live)
    ready_survivors = sum(1 for m in live if m.ready and m.ordinal != victim.ordinal)
    # A two-member cluster can only shrink by graceful leave; its survivor
    # must be healthy.
    required = 1 if size == 2 else quorum(size)
    return ready_survivors >= required, ready_survivors, required


@dataclass
class MemberSetResult:
    """Outcome of the member set step of a pass."""

    desired: int
    members: List[Member]
    created: List[int] = field(default_factory=list)
    removed: Optional[int] = None
    quorum_block: Optional[QuorumUnsafeError] = None

    @property
    def live(self) -> List[Member]:
        return [m for m in self.members if not m.terminating]

    @property
    def ready_count(self) -> int:
        return sum(1 for m in self.live if m.ready)

    @property
    def converged(self) -> bool:
        """Exactly the desired ordinals exist and nothing is being removed."""
        return (
            len(self.live) == self.desired
            and len(self.live) == len(self.members)
            and self.removed is None
        )

    @property
    def fully_ready(self) -> bool:
        return self.converged and self.desired > 0 and self.ready_count == self.desired


class MemberSetReconciler:
    """
    Drives the workload collaborator toward the declared replica count.

    Creation and removal go through the workload collaborator only; no other
    component creates or destroys members.
    """

    def __init__(
        self,
        workload: WorkloadClient,
        probe: ReadinessProbe,
        policy: Optional[CallPolicy] = None,
    ):
        self.workload = workload
        self.probe = probe
        self.policy = policy or CallPolicy.from_settings()
        # Probes are refreshed every pass; a failed probe is not worth a retry
        self.probe_policy = self.policy.model_copy(update={"attempts": 1})

    async def reconcile(
        self,
        name: str,
        namespace: str,
        spec: OVNDBClusterSpec,
        status: OVNDBClusterStatus,
    ) -> MemberSetResult:
        """
        Run the member set step for one cluster.

        Records hash["service-config"] in status once the template is applied.

        Raises:
            PlatformUnavailableError: If the workload collaborator is unavailable
        """
        db_type = spec.db_type.value
        template = spec.pod_template()
        template_digest = fingerprint(template)

        observed = await call_platform(
            "workload_get", self.workload.get, name, namespace, policy=self.policy
        )
        observed_ordinals = {s.ordinal for s in observed}
        live_ordinals = [s.ordinal for s in observed if not s.terminating]

        # Never shrink through ensure: extra members are removed one by one below
        replica_count = max(spec.replicas, max(live_ordinals, default=-1) + 1)

        if status.hash.get(SubResource.SERVICE_CONFIG) != template_digest:
            logger.info(
                "pod_template_drift_detected",
                cluster=name,
                namespace=namespace,
                db_type=db_type,
                previous=status.hash.get(SubResource.SERVICE_CONFIG),
                current=template_digest,
            )

        statuses = await call_platform(
            "workload_ensure",
            self.workload.ensure,
            name,
            namespace,
            replica_count,
            template,
            policy=self.policy,
        )
        status.hash[SubResource.SERVICE_CONFIG] = template_digest

        created = sorted(s.ordinal for s in statuses if s.ordinal not in observed_ordinals)
        if created:
            logger.info(
                "members_created",
                cluster=name,
                namespace=namespace,
                db_type=db_type,
                ordinals=created,
            )
            metrics.record_scale(db_type, "up", len(created))

        members = await self._probe_all(namespace, statuses)
        result = MemberSetResult(desired=spec.replicas, members=members, created=created)

        await self._scale_down(name, namespace, spec, result)
        return result

    async def _scale_down(
        self, name: str, namespace: str, spec: OVNDBClusterSpec, result: MemberSetResult
    ) -> None:
        db_type = spec.db_type.value
        live = result.live
        if len(live) <= spec.replicas:
            return

        if result.created:
            logger.debug("scale_down_waits_for_created_members", cluster=name, namespace=namespace)
            return

        terminating = [m.ordinal for m in result.members if m.terminating]
        if terminating:
            logger.info(
                "scale_down_waits_for_terminating_member",
                cluster=name,
                namespace=namespace,
                terminating=terminating,
            )
            return

        victim = max(live, key=lambda m: m.ordinal)

        if spec.replicas > 0:
            safe, ready_survivors, required = removal_check(live, victim)
            if not safe:
                result.quorum_block = QuorumUnsafeError(
                    victim.ordinal, len(live), ready_survivors, required
                )
                logger.warning(
                    "scale_down_deferred_quorum_unsafe",
                    cluster=name,
                    namespace=namespace,
                    db_type=db_type,
                    ordinal=victim.ordinal,
                    members=len(live),
                    ready_survivors=ready_survivors,
                    required=required,
                )
                metrics.record_quorum_block(db_type)
                return
        else:
            logger.info(
                "cluster_teardown_step",
                cluster=name,
                namespace=namespace,
                db_type=db_type,
                ordinal=victim.ordinal,
                remaining=len(live) - 1,
            )

        await call_platform(
            "workload_delete",
            self.workload.delete,
            name,
            namespace,
            victim.ordinal,
            policy=self.policy,
        )
        result.members = [m for m in result.members if m.ordinal != victim.ordinal]
        result.removed = victim.ordinal

        logger.info(
            "member_removed",
            cluster=name,
            namespace=namespace,
            db_type=db_type,
            ordinal=victim.ordinal,
            remaining=len(result.live),
            desired=spec.replicas,
        )
        metrics.record_scale(db_type, "down")

    async def _probe_all(self, namespace: str, statuses: List[MemberStatus]) -> List[Member]:
        ordered = sorted(statuses, key=lambda s: s.ordinal)
        readiness = await asyncio.gather(*(self._probe(namespace, s) for s in ordered))
        return [
            Member(
                ordinal=s.ordinal,
                pod_name=s.pod_name,
                terminating=s.terminating,
                ready=ready,
            )
            for s, ready in zip(ordered, readiness)
        ]

    async def _probe(self, namespace: str, member: MemberStatus) -> bool:
        if member.terminating:
            return False
        try:
            return await call_platform(
                "readiness_probe",
                self.probe.probe,
                namespace,
                member.pod_name,
                policy=self.probe_policy,
            )
        except (PlatformUnavailableError, ProbeFailingError) as e:
            logger.info(
                "member_probe_failing",
                namespace=namespace,
                pod=member.pod_name,
                ordinal=member.ordinal,
                error=e.message,
            )
            return False
