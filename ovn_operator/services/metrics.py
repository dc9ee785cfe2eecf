"""
Prometheus metrics for the reconciliation loop.

Provides observability into passes, scaling and config rollouts.
"""
from prometheus_client import Counter, Gauge, Histogram

# Pass metrics
reconcile_total = Counter(
    "ovn_operator_reconcile_total",
    "Total number of reconciliation passes",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "ovn_operator_reconcile_duration_seconds",
    "Time spent in one reconciliation pass",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60),
)

# Member set metrics
member_scale_total = Counter(
    "ovn_operator_member_scale_total",
    "Members created or removed",
    ["db_type", "direction"],
)

quorum_blocked_total = Counter(
    "ovn_operator_quorum_blocked_total",
    "Scale-down steps deferred because quorum would be lost",
    ["db_type"],
)

# Config rollout metrics
config_rollout_total = Counter(
    "ovn_operator_config_rollout_total",
    "RAFT/OVSDB timer rollouts by outcome",
    ["db_type", "result"],
)

# Cluster state
cluster_ready_members = Gauge(
    "ovn_operator_cluster_ready_members",
    "Members currently passing readiness",
    ["namespace", "name", "db_type"],
)

cluster_ready = Gauge(
    "ovn_operator_cluster_ready",
    "Whether the cluster Ready condition is True",
    ["namespace", "name", "db_type"],
)


def record_pass(result: str, duration_seconds: float) -> None:
    """Record a finished pass."""
    reconcile_total.labels(result=result).inc()
    reconcile_duration_seconds.observe(duration_seconds)


def record_scale(db_type: str, direction: str, count: int = 1) -> None:
    """Record created ("up") or removed ("down") members."""
    if count > 0:
        member_scale_total.labels(db_type=db_type, direction=direction).inc(count)


def record_quorum_block(db_type: str) -> None:
    quorum_blocked_total.labels(db_type=db_type).inc()


def record_config_rollout(db_type: str, result: str) -> None:
    config_rollout_total.labels(db_type=db_type, result=result).inc()


def record_cluster_state(namespace: str, name: str, db_type: str, ready_count: int, ready: bool) -> None:
    """Publish the aggregated state of one cluster."""
    cluster_ready_members.labels(namespace=namespace, name=name, db_type=db_type).set(ready_count)
    cluster_ready.labels(namespace=namespace, name=name, db_type=db_type).set(1 if ready else 0)
