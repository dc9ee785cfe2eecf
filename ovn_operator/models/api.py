"""
Response models for the operator HTTP API.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ovn_operator.models.conditions import Condition, ConditionType
from ovn_operator.models.ovndbcluster import OVNDBCluster


class ClusterResponse(BaseModel):
    """Summary of one OVNDBCluster."""

    name: str = Field(..., description="Cluster name")
    namespace: str = Field(..., description="Cluster namespace")
    db_type: str = Field(..., description="NB or SB")
    replicas: Optional[int] = Field(default=None, description="Declared replica count")
    ready_count: int = Field(default=0, description="Members passing readiness")
    ready: bool = Field(..., description="Whether the Ready condition is True")
    internal_db_address: str = Field(default="", description="In-cluster service address")
    db_address: str = Field(default="", description="Address used by external nodes")
    raft_address: str = Field(default="", description="Per-member RAFT addresses")
    network_attachments: Dict[str, List[str]] = Field(default_factory=dict)
    conditions: List[Condition] = Field(default_factory=list)
    observed_generation: int = Field(default=0)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "ovndbcluster-nb",
                "namespace": "openstack",
                "db_type": "NB",
                "replicas": 3,
                "ready_count": 3,
                "ready": True,
                "internal_db_address": "tcp:ovndbcluster-nb.openstack.svc:6641",
                "db_address": "tcp:172.17.0.30:6641,tcp:172.17.0.31:6641,tcp:172.17.0.32:6641",
            }
        }

    @classmethod
    def from_cluster(cls, cluster: OVNDBCluster) -> "ClusterResponse":
        status = cluster.status
        replicas = cluster.spec.get("replicas")
        return cls(
            name=cluster.metadata.name,
            namespace=cluster.metadata.namespace,
            db_type=cluster.db_type,
            replicas=replicas if isinstance(replicas, int) else None,
            ready_count=status.ready_count,
            ready=cluster.is_ready(),
            internal_db_address=status.internal_db_address,
            db_address=status.db_address,
            raft_address=status.raft_address,
            network_attachments=status.network_attachments,
            conditions=[status.conditions[kind] for kind in ConditionType if kind in status.conditions],
            observed_generation=status.observed_generation,
        )


class ClusterListResponse(BaseModel):
    """List of clusters in a namespace."""

    clusters: List[ClusterResponse]
    total: int


class EndpointsResponse(BaseModel):
    """Database endpoints of a ready cluster."""

    name: str
    namespace: str
    db_type: str
    internal: str = Field(..., description="Address reachable from the cluster network")
    external: str = Field(..., description="Address used by external nodes")


class ReconcileTriggerResponse(BaseModel):
    """Acknowledgement of a reconcile request."""

    cluster: str
    triggered: bool
    message: str
