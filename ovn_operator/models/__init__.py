"""
Models package - OVNDBCluster resource and reconciliation working types.
"""
from ovn_operator.models.conditions import (
    Condition,
    ConditionReason,
    ConditionStatus,
    ConditionType,
    Severity,
)
from ovn_operator.models.ovndbcluster import (
    DBType,
    ObjectMeta,
    OVNDBCluster,
    OVNDBClusterSpec,
    OVNDBClusterStatus,
    SubResource,
)
from ovn_operator.models.workload import Member, MemberStatus, PodTemplate, RaftRole, RaftSettings

__all__ = [
    "Condition",
    "ConditionReason",
    "ConditionStatus",
    "ConditionType",
    "Severity",
    "DBType",
    "ObjectMeta",
    "OVNDBCluster",
    "OVNDBClusterSpec",
    "OVNDBClusterStatus",
    "SubResource",
    "Member",
    "MemberStatus",
    "PodTemplate",
    "RaftRole",
    "RaftSettings",
]
