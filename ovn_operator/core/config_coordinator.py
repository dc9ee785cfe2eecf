"""
Config-change coordination for RAFT/OVSDB timers.

electionTimer, inactivityProbe and probeIntervalToActive are pushed to running
members instead of being baked into the pod template, so a timer change never
restarts the cluster. A rollout:

1. detects drift against hash["config"]
2. waits until every desired member is live and ready
3. asks each member for its RAFT role
4. applies the settings to followers in ordinal order and to the leader last
5. records the new fingerprint only when every member accepted it
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ovn_operator.config.logging import get_logger
from ovn_operator.core.member_reconciler import MemberSetResult
from ovn_operator.exceptions import PlatformUnavailableError
from ovn_operator.models.ovndbcluster import OVNDBClusterSpec, OVNDBClusterStatus, SubResource
from ovn_operator.models.workload import Member, RaftRole
from ovn_operator.services import metrics
from ovn_operator.services.collaborators import RaftMemberClient
from ovn_operator.utils.clock import Clock, utcnow
from ovn_operator.utils.hashing import fingerprint
from ovn_operator.utils.retry import CallPolicy, call_platform

logger = get_logger(__name__)


class RolloutState(str, Enum):
    IN_SYNC = "in_sync"
    APPLIED = "applied"
    QUEUED = "queued"
    NO_LEADER = "no_leader"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ConfigApplyStep:
    ordinal: int
    pod_name: str
    role: RaftRole
    applied_at: datetime


@dataclass
class ConfigRolloutResult:
    state: RolloutState
    fingerprint: str
    steps: List[ConfigApplyStep] = field(default_factory=list)
    error: Optional[PlatformUnavailableError] = None

    @property
    def settled(self) -> bool:
        return self.state in (RolloutState.IN_SYNC, RolloutState.APPLIED)


class ConfigChangeCoordinator:
    """
    Applies timer changes member by member, RAFT leader last.
    """

    def __init__(
        self,
        raft: RaftMemberClient,
        policy: Optional[CallPolicy] = None,
        clock: Clock = utcnow,
    ):
        self.raft = raft
        self.policy = policy or CallPolicy.from_settings()
        self.clock = clock

    async def reconcile(
        self,
        name: str,
        namespace: str,
        spec: OVNDBClusterSpec,
        members: MemberSetResult,
        status: OVNDBClusterStatus,
    ) -> ConfigRolloutResult:
        """Roll out drifted timers, or report why the rollout is waiting."""
        raft_settings = spec.raft_settings()
        digest = fingerprint(raft_settings)
        db_type = spec.db_type.value

        if status.hash.get(SubResource.CONFIG) == digest:
            return ConfigRolloutResult(RolloutState.IN_SYNC, digest)

        if spec.replicas == 0:
            return ConfigRolloutResult(RolloutState.SKIPPED, digest)

        if not members.fully_ready:
            logger.info(
                "config_change_queued",
                cluster=name,
                namespace=namespace,
                db_type=db_type,
                ready=members.ready_count,
                desired=members.desired,
            )
            return ConfigRolloutResult(RolloutState.QUEUED, digest)

        live = members.live
        try:
            roles = await asyncio.gather(
                *(
                    call_platform(
                        "raft_role",
                        self.raft.role,
                        namespace,
                        m.pod_name,
                        db_type,
                        policy=self.policy,
                    )
                    for m in live
                )
            )
        except PlatformUnavailableError as e:
            logger.warning(
                "config_change_role_query_failed",
                cluster=name,
                namespace=namespace,
                error=e.message,
            )
            metrics.record_config_rollout(db_type, RolloutState.FAILED.value)
            return ConfigRolloutResult(RolloutState.FAILED, digest, error=e)

        leaders = [m for m, role in zip(live, roles) if role == RaftRole.LEADER]
        if len(leaders) != 1:
            logger.warning(
                "config_change_without_single_leader",
                cluster=name,
                namespace=namespace,
                leaders=[m.pod_name for m in leaders],
            )
            return ConfigRolloutResult(RolloutState.NO_LEADER, digest)

        leader = leaders[0]
        order: List[Member] = [m for m in live if m.ordinal != leader.ordinal] + [leader]
        role_of = {m.ordinal: role for m, role in zip(live, roles)}

        logger.info(
            "config_rollout_started",
            cluster=name,
            namespace=namespace,
            db_type=db_type,
            leader=leader.pod_name,
            order=[m.pod_name for m in order],
            election_timer=raft_settings.election_timer,
            inactivity_probe=raft_settings.inactivity_probe,
            probe_interval_to_active=raft_settings.probe_interval_to_active,
        )

        steps: List[ConfigApplyStep] = []
        for member in order:
            try:
                await call_platform(
                    "raft_apply_settings",
                    self.raft.apply_settings,
                    namespace,
                    member.pod_name,
                    db_type,
                    raft_settings,
                    policy=self.policy,
                )
            except PlatformUnavailableError as e:
                logger.warning(
                    "config_rollout_interrupted",
                    cluster=name,
                    namespace=namespace,
                    pod=member.pod_name,
                    applied=[s.pod_name for s in steps],
                    error=e.message,
                )
                metrics.record_config_rollout(db_type, RolloutState.FAILED.value)
                return ConfigRolloutResult(RolloutState.FAILED, digest, steps=steps, error=e)

            steps.append(
                ConfigApplyStep(
                    ordinal=member.ordinal,
                    pod_name=member.pod_name,
                    role=role_of[member.ordinal],
                    applied_at=self.clock(),
                )
            )

        status.hash[SubResource.CONFIG] = digest
        logger.info(
            "config_rollout_completed",
            cluster=name,
            namespace=namespace,
            db_type=db_type,
            fingerprint=digest,
        )
        metrics.record_config_rollout(db_type, RolloutState.APPLIED.value)
        return ConfigRolloutResult(RolloutState.APPLIED, digest, steps=steps)
