"""
Pydantic models for the OVNDBCluster resource.

The resource spec is the caller's declaration and is only ever read; the status is
owned by the reconciler. Wire names follow the CRD (camelCase), Python
attributes are snake_case.
"""
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    FieldSerializationInfo,
    field_serializer,
    field_validator,
)

from ovn_operator.exceptions import EndpointNotReadyError
from ovn_operator.models.conditions import (
    Condition,
    ConditionStatus,
    ConditionType,
)
from ovn_operator.models.workload import PodTemplate, RaftSettings, ResourceRequirements


class DBType(str, Enum):
    """Which OVN database a cluster serves."""

    NB = "NB"
    SB = "SB"


# Client-facing and RAFT ports per database
DB_PORTS = {DBType.NB: 6641, DBType.SB: 6642}
RAFT_PORTS = {DBType.NB: 6643, DBType.SB: 6644}
DB_NAMES = {DBType.NB: "OVN_Northbound", DBType.SB: "OVN_Southbound"}

QUANTITY_PATTERN = re.compile(
    r"^(?P<number>[0-9]+(\.[0-9]+)?)(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|m|k|M|G|T|P|E)?$"
)
DNS1123_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
ATTACHMENT_PATTERN = re.compile(rf"^({DNS1123_LABEL}/)?{DNS1123_LABEL}$")
DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")
# Service names are DNS-1035 labels
WORKLOAD_NAME_PATTERN = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
# StatefulSet pods carry a controller-revision-hash label of <name>-<10 chars>
MAX_WORKLOAD_NAME_LENGTH = 52


class SubResource(str, Enum):
    """Sub-resources tracked by content fingerprint in status.hash."""

    CONFIG = "config"
    SERVICE_CONFIG = "service-config"


def workload_name(cluster_name: str) -> str:
    """StatefulSet and headless service name of a cluster."""
    return cluster_name


def service_account_name(cluster_name: str) -> str:
    """Serviceaccount, role and rolebinding name for a cluster."""
    return "ovncluster-" + cluster_name


class OVNDBClusterDebug(BaseModel):
    """Debug switches for the deploy stages."""

    model_config = ConfigDict(extra="forbid")

    service: bool = False


class OVNDBClusterSpec(BaseModel):
    """Normalized desired state of an OVN DB cluster."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    db_type: DBType = Field(default=DBType.NB, alias="dbType")
    replicas: int = Field(default=1, ge=0, le=32)
    election_timer: int = Field(default=10000, gt=0, alias="electionTimer")
    inactivity_probe: int = Field(default=60000, gt=0, alias="inactivityProbe")
    probe_interval_to_active: int = Field(default=60000, gt=0, alias="probeIntervalToActive")
    container_image: str = Field(..., min_length=1, alias="containerImage")
    storage_request: str = Field(..., alias="storageRequest")
    storage_class: str = Field(default="", alias="storageClass")
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    node_selector: Dict[str, str] = Field(default_factory=dict, alias="nodeSelector")
    network_attachment: str = Field(default="", alias="networkAttachment")
    log_level: str = Field(default="info", alias="logLevel")
    debug: OVNDBClusterDebug = Field(default_factory=OVNDBClusterDebug)

    @field_validator("storage_request")
    @classmethod
    def validate_storage_request(cls, v: str) -> str:
        """Storage request must be a positive Kubernetes quantity."""
        match = QUANTITY_PATTERN.match(v.strip())
        if not match:
            raise ValueError(f"'{v}' is not a valid quantity")
        try:
            number = Decimal(match.group("number"))
        except InvalidOperation:
            raise ValueError(f"'{v}' is not a valid quantity")
        if number <= 0:
            raise ValueError("storage request must be positive")
        return v.strip()

    @field_validator("network_attachment")
    @classmethod
    def validate_network_attachment(cls, v: str) -> str:
        """Optional, DNS-1123 name with an optional namespace prefix."""
        if v and (len(v) > 253 or not ATTACHMENT_PATTERN.match(v)):
            raise ValueError(f"'{v}' is not a valid network attachment name")
        return v

    def raft_settings(self) -> RaftSettings:
        return RaftSettings(
            election_timer=self.election_timer,
            inactivity_probe=self.inactivity_probe,
            probe_interval_to_active=self.probe_interval_to_active,
        )

    def pod_template(self) -> PodTemplate:
        return PodTemplate(
            db_type=self.db_type.value,
            container_image=self.container_image,
            storage_request=self.storage_request,
            storage_class=self.storage_class,
            resources=self.resources,
            node_selector=dict(self.node_selector),
            network_attachment=self.network_attachment,
            log_level=self.log_level,
            debug_service=self.debug.service,
        )


class OVNDBClusterStatus(BaseModel):
    """Observed state, written only by the reconciler."""

    model_config = ConfigDict(populate_by_name=True)

    ready_count: int = Field(default=0, ge=0, alias="readyCount")
    hash: Dict[SubResource, str] = Field(default_factory=dict)
    conditions: Dict[ConditionType, Condition] = Field(default_factory=dict)
    raft_address: str = Field(default="", alias="raftAddress")
    db_address: str = Field(default="", alias="dbAddress")
    internal_db_address: str = Field(default="", alias="internalDbAddress")
    network_attachments: Dict[str, List[str]] = Field(
        default_factory=dict, alias="networkAttachments"
    )
    observed_generation: int = Field(default=0, ge=0, alias="observedGeneration")
    observed_db_type: Optional[DBType] = Field(default=None, alias="observedDbType")

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, v: Dict[SubResource, str]) -> Dict[SubResource, str]:
        for key, digest in v.items():
            if not DIGEST_PATTERN.match(digest):
                raise ValueError(f"hash[{key.value}] is not a sha256 hex digest")
        return v

    @field_validator("conditions", mode="before")
    @classmethod
    def conditions_from_list(cls, v: Any) -> Any:
        """Accept the wire form (a list) and reject duplicate kinds."""
        if not isinstance(v, list):
            return v
        by_type: Dict[Any, Any] = {}
        for item in v:
            kind = item.get("type") if isinstance(item, dict) else item.type
            kind = ConditionType(kind)
            if kind in by_type:
                raise ValueError(f"duplicate condition {kind.value}")
            by_type[kind] = item
        return by_type

    @field_serializer("conditions")
    def conditions_to_list(
        self, conditions: Dict[ConditionType, Condition], info: FieldSerializationInfo
    ) -> List[Any]:
        return [
            conditions[kind].model_dump(by_alias=bool(info.by_alias), mode=info.mode)
            for kind in ConditionType
            if kind in conditions
        ]

    def get_condition(self, kind: ConditionType) -> Optional[Condition]:
        return self.conditions.get(kind)

    def set_condition(self, condition: Condition) -> None:
        """Store a condition, keeping the transition time if nothing transitioned."""
        current = self.conditions.get(condition.type)
        if current is not None and current.same_state(condition):
            condition = condition.model_copy(
                update={"last_transition_time": current.last_transition_time}
            )
        self.conditions[condition.type] = condition

    def is_condition_true(self, kind: ConditionType) -> bool:
        condition = self.conditions.get(kind)
        return condition is not None and condition.status == ConditionStatus.TRUE

    def to_k8s(self) -> Dict[str, Any]:
        """Serialize for a status subresource patch."""
        return self.model_dump(by_alias=True, mode="json")


class ObjectMeta(BaseModel):
    """The subset of Kubernetes object metadata the operator needs."""

    name: str
    namespace: str = "default"
    generation: int = 0
    uid: Optional[str] = None
    creation_timestamp: Optional[datetime] = Field(default=None, alias="creationTimestamp")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OVNDBCluster(BaseModel):
    """
    An OVNDBCluster object: caller-supplied raw spec plus operator status.

    The resource spec is kept raw so that an invalid declaration can still be
    represented and reported on; the validator turns it into an
    OVNDBClusterSpec.
    """

    metadata: ObjectMeta
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: OVNDBClusterStatus = Field(default_factory=OVNDBClusterStatus)

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def db_type(self) -> str:
        """Declared database type as written by the caller."""
        return str(self.spec.get("dbType") or DBType.NB.value)

    def is_ready(self) -> bool:
        """True when the cluster is reconciled and serving."""
        return self.status.is_condition_true(ConditionType.READY)

    def get_internal_endpoint(self) -> str:
        """
        Address reachable by other pods in the cluster network.

        Raises:
            EndpointNotReadyError: If the address is not published yet
        """
        if self.status.internal_db_address == "":
            raise EndpointNotReadyError("internal", self.db_type)
        return self.status.internal_db_address

    def get_external_endpoint(self) -> str:
        """
        Address used by external nodes.

        Raises:
            EndpointNotReadyError: If the address is not published yet
        """
        if self.status.db_address == "":
            raise EndpointNotReadyError("external", self.db_type)
        return self.status.db_address

    def rbac_conditions_set(self, condition: Condition) -> None:
        self.status.set_condition(condition)

    def rbac_namespace(self) -> str:
        return self.metadata.namespace

    def rbac_resource_name(self) -> str:
        """Name for the serviceaccount, role and rolebinding."""
        return service_account_name(self.metadata.name)
