"""
Status aggregation.

Folds what the other components observed during a pass into readyCount and
the fixed set of conditions. Ready is True only when every finer condition
holds; otherwise it carries the most important failing reason.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.core.config_coordinator import ConfigRolloutResult, RolloutState
from ovn_operator.core.endpoint_resolver import EndpointResult
from ovn_operator.core.member_reconciler import MemberSetResult
from ovn_operator.exceptions import InvalidSpecError, PlatformUnavailableError
from ovn_operator.models.conditions import (
    REASON_PRIORITY,
    Condition,
    ConditionReason,
    ConditionStatus,
    ConditionType,
    Severity,
)
from ovn_operator.models.ovndbcluster import OVNDBClusterSpec, OVNDBClusterStatus
from ovn_operator.services import metrics
from ovn_operator.utils.clock import Clock, utcnow

logger = get_logger(__name__)

FINER_CONDITIONS = (
    ConditionType.INPUT_READY,
    ConditionType.DEPLOYMENT_READY,
    ConditionType.DEGRADED,
    ConditionType.ENDPOINTS_READY,
    ConditionType.CONFIG_READY,
)


@dataclass
class PassObservations:
    """Everything a pass learned, handed from the orchestrator to the aggregator."""

    spec: Optional[OVNDBClusterSpec] = None
    invalid_spec: Optional[InvalidSpecError] = None
    platform_error: Optional[PlatformUnavailableError] = None
    members: Optional[MemberSetResult] = None
    endpoints: Optional[EndpointResult] = None
    config: Optional[ConfigRolloutResult] = None

    @property
    def scaled_to_zero(self) -> bool:
        return (
            self.spec is not None
            and self.spec.replicas == 0
            and self.members is not None
            and not self.members.members
        )


def _healthy(condition: Condition) -> bool:
    # Degraded is the only condition where True means trouble
    if condition.type == ConditionType.DEGRADED:
        return condition.status == ConditionStatus.FALSE
    return condition.is_true


class StatusAggregator:
    """
    Computes readyCount and conditions for one cluster.
    """

    def __init__(self, clock: Clock = utcnow, grace_seconds: Optional[int] = None):
        self.clock = clock
        self.grace_seconds = (
            settings.probe_failure_grace_seconds if grace_seconds is None else grace_seconds
        )

    def aggregate(
        self,
        name: str,
        namespace: str,
        generation: int,
        status: OVNDBClusterStatus,
        observed: PassObservations,
    ) -> OVNDBClusterStatus:
        """Write the aggregated view of a pass into status and return it."""
        now = self.clock()
        status.observed_generation = generation

        if observed.invalid_spec is not None:
            # Nothing else ran; the remaining conditions describe the last valid pass
            error = observed.invalid_spec
            status.set_condition(
                self._condition(
                    ConditionType.INPUT_READY,
                    ConditionStatus.FALSE,
                    ConditionReason.INVALID_SPEC,
                    Severity.ERROR,
                    error.message,
                    now,
                )
            )
            status.set_condition(
                self._condition(
                    ConditionType.READY,
                    ConditionStatus.FALSE,
                    ConditionReason.INVALID_SPEC,
                    Severity.ERROR,
                    error.message,
                    now,
                )
            )
            return status

        spec = observed.spec
        status.observed_db_type = spec.db_type
        status.set_condition(
            self._condition(
                ConditionType.INPUT_READY,
                ConditionStatus.TRUE,
                ConditionReason.READY,
                Severity.NONE,
                "Input data complete",
                now,
            )
        )

        if observed.members is not None:
            status.ready_count = observed.members.ready_count

        for condition in (
            self._deployment_condition(status, observed, now),
            self._degraded_condition(observed, now),
            self._endpoints_condition(observed, now),
            self._config_condition(status, observed, now),
        ):
            status.set_condition(condition)

        ready = self._ready_condition(status, observed, now)
        status.set_condition(ready)

        metrics.record_cluster_state(
            namespace, name, spec.db_type.value, status.ready_count, ready.is_true
        )
        logger.debug(
            "cluster_status_aggregated",
            cluster=name,
            namespace=namespace,
            ready=ready.status.value,
            reason=ready.reason.value,
            ready_count=status.ready_count,
        )
        return status

    def _condition(
        self,
        kind: ConditionType,
        status: ConditionStatus,
        reason: ConditionReason,
        severity: Severity,
        message: str,
        now: datetime,
    ) -> Condition:
        return Condition(
            type=kind,
            status=status,
            reason=reason,
            severity=severity,
            message=message,
            last_transition_time=now,
        )

    def _probe_severity(self, status: OVNDBClusterStatus, kind: ConditionType, now: datetime) -> Severity:
        """Info while probes have been failing for less than the grace window."""
        current = status.get_condition(kind)
        if current is None or current.reason != ConditionReason.PROBES_FAILING:
            return Severity.INFO
        elapsed = (now - current.last_transition_time).total_seconds()
        return Severity.WARNING if elapsed >= self.grace_seconds else Severity.INFO

    def _deployment_condition(
        self, status: OVNDBClusterStatus, observed: PassObservations, now: datetime
    ) -> Condition:
        kind = ConditionType.DEPLOYMENT_READY
        members = observed.members

        if members is None:
            error = observed.platform_error
            return self._condition(
                kind,
                ConditionStatus.FALSE,
                ConditionReason.PLATFORM_UNAVAILABLE,
                Severity.WARNING,
                error.message if error else "Member state unavailable",
                now,
            )

        if observed.scaled_to_zero:
            return self._condition(
                kind,
                ConditionStatus.TRUE,
                ConditionReason.SCALED_TO_ZERO,
                Severity.NONE,
                "Cluster scaled to zero members",
                now,
            )

        if not members.converged:
            return self._condition(
                kind,
                ConditionStatus.FALSE,
                ConditionReason.SCALING_IN_PROGRESS,
                Severity.INFO,
                f"{len(members.live)} live members, {members.desired} desired",
                now,
            )

        if members.ready_count < members.desired:
            return self._condition(
                kind,
                ConditionStatus.FALSE,
                ConditionReason.PROBES_FAILING,
                self._probe_severity(status, kind, now),
                f"{members.ready_count} of {members.desired} members ready",
                now,
            )

        return self._condition(
            kind,
            ConditionStatus.TRUE,
            ConditionReason.READY,
            Severity.NONE,
            f"{members.ready_count} of {members.desired} members ready",
            now,
        )

    def _degraded_condition(self, observed: PassObservations, now: datetime) -> Condition:
        kind = ConditionType.DEGRADED
        block = observed.members.quorum_block if observed.members else None
        if block is not None:
            return self._condition(
                kind,
                ConditionStatus.TRUE,
                ConditionReason.QUORUM_UNSAFE,
                Severity.WARNING,
                block.message,
                now,
            )
        return self._condition(
            kind,
            ConditionStatus.FALSE,
            ConditionReason.QUORUM_SAFE,
            Severity.NONE,
            "",
            now,
        )

    def _endpoints_condition(self, observed: PassObservations, now: datetime) -> Condition:
        kind = ConditionType.ENDPOINTS_READY

        if observed.scaled_to_zero:
            return self._condition(
                kind,
                ConditionStatus.UNKNOWN,
                ConditionReason.SCALED_TO_ZERO,
                Severity.NONE,
                "No members to publish",
                now,
            )

        endpoints = observed.endpoints
        if endpoints is None:
            return self._condition(
                kind,
                ConditionStatus.FALSE,
                ConditionReason.PLATFORM_UNAVAILABLE,
                Severity.WARNING,
                "Endpoints not resolved this pass",
                now,
            )

        if endpoints.resolved:
            return self._condition(
                kind, ConditionStatus.TRUE, ConditionReason.READY, Severity.NONE, "", now
            )

        message = "Database endpoints not resolved"
        if endpoints.unresolved_members:
            message = f"No attachment address for {', '.join(endpoints.unresolved_members)}"
        return self._condition(
            kind,
            ConditionStatus.FALSE,
            ConditionReason.ENDPOINTS_UNRESOLVED,
            Severity.WARNING,
            message,
            now,
        )

    def _config_condition(
        self, status: OVNDBClusterStatus, observed: PassObservations, now: datetime
    ) -> Condition:
        kind = ConditionType.CONFIG_READY
        config = observed.config

        if config is None:
            return self._condition(
                kind,
                ConditionStatus.FALSE,
                ConditionReason.PLATFORM_UNAVAILABLE,
                Severity.WARNING,
                "Config not checked this pass",
                now,
            )

        if config.settled:
            return self._condition(
                kind, ConditionStatus.TRUE, ConditionReason.READY, Severity.NONE, "", now
            )

        if config.state == RolloutState.SKIPPED:
            return self._condition(
                kind,
                ConditionStatus.UNKNOWN,
                ConditionReason.SCALED_TO_ZERO,
                Severity.NONE,
                "No members to configure",
                now,
            )

        if config.state == RolloutState.QUEUED:
            return self._condition(
                kind,
                ConditionStatus.UNKNOWN,
                ConditionReason.CONFIG_QUEUED,
                Severity.INFO,
                "Config change waits for all members to be ready",
                now,
            )

        if config.state == RolloutState.NO_LEADER:
            return self._condition(
                kind,
                ConditionStatus.UNKNOWN,
                ConditionReason.PROBES_FAILING,
                self._probe_severity(status, kind, now),
                "No RAFT leader found",
                now,
            )

        return self._condition(
            kind,
            ConditionStatus.FALSE,
            ConditionReason.PLATFORM_UNAVAILABLE,
            Severity.WARNING,
            config.error.message if config.error else "Config rollout failed",
            now,
        )

    def _ready_condition(
        self, status: OVNDBClusterStatus, observed: PassObservations, now: datetime
    ) -> Condition:
        kind = ConditionType.READY

        if observed.scaled_to_zero:
            return self._condition(
                kind,
                ConditionStatus.UNKNOWN,
                ConditionReason.SCALED_TO_ZERO,
                Severity.NONE,
                "Cluster scaled to zero members",
                now,
            )

        failing: Dict[ConditionReason, Condition] = {}
        for finer in FINER_CONDITIONS:
            condition = status.get_condition(finer)
            if condition is not None and not _healthy(condition):
                failing.setdefault(condition.reason, condition)

        if not failing:
            return self._condition(
                kind,
                ConditionStatus.TRUE,
                ConditionReason.READY,
                Severity.NONE,
                "Setup complete",
                now,
            )

        cause = next(
            (failing[reason] for reason in REASON_PRIORITY if reason in failing),
            next(iter(failing.values())),
        )
        return self._condition(
            kind,
            ConditionStatus.FALSE,
            cause.reason,
            cause.severity,
            cause.message,
            now,
        )
