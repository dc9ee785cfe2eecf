"""
Workload-side models: what the orchestration collaborators return and what the
reconciler works with during a pass. None of these are persisted.
"""
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field


class RaftRole(str, Enum):
    """RAFT role reported by an ovsdb-server member."""

    LEADER = "leader"
    FOLLOWER = "follower"
    CANDIDATE = "candidate"
    UNKNOWN = "unknown"


class MemberStatus(BaseModel):
    """Per-ordinal status reported by the workload collaborator."""

    ordinal: int = Field(..., ge=0)
    pod_name: str
    terminating: bool = False


class Member(BaseModel):
    """A RAFT member as seen during one reconciliation pass."""

    ordinal: int = Field(..., ge=0)
    pod_name: str
    terminating: bool = False
    ready: bool = False
    attachment_ips: List[str] = Field(default_factory=list)


class ResourceRequirements(BaseModel):
    """Compute resources passed through to the DB container."""

    limits: Dict[str, str] = Field(default_factory=dict)
    requests: Dict[str, str] = Field(default_factory=dict)


class PodTemplate(BaseModel):
    """
    Workload-shaping parameters handed to the workload collaborator.

    RAFT timers are deliberately absent: changing them must not roll pods,
    they are pushed to running members by the config coordinator.
    """

    db_type: str
    container_image: str
    storage_request: str
    storage_class: str = ""
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    node_selector: Dict[str, str] = Field(default_factory=dict)
    network_attachment: str = ""
    log_level: str = "info"
    debug_service: bool = False


class RaftSettings(BaseModel):
    """Timers applied to live members, all in milliseconds."""

    election_timer: int
    inactivity_probe: int
    probe_interval_to_active: int
