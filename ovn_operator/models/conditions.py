"""
Status condition records.

Conditions are a closed set: one record per ConditionType, never a free-form
list. The aggregate Ready condition is derived from the others.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConditionType(str, Enum):
    """Condition kinds, in the order they are serialized."""

    READY = "Ready"
    INPUT_READY = "InputReady"
    DEPLOYMENT_READY = "DeploymentReady"
    DEGRADED = "Degraded"
    ENDPOINTS_READY = "EndpointsReady"
    CONFIG_READY = "ConfigReady"


class ConditionStatus(str, Enum):
    """Kubernetes condition status values."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionReason(str, Enum):
    """Machine-readable reasons attached to conditions."""

    READY = "Ready"
    SCALED_TO_ZERO = "ScaledToZero"
    QUORUM_SAFE = "QuorumSafe"
    CONFIG_QUEUED = "ConfigQueued"
    INVALID_SPEC = "InvalidSpec"
    PLATFORM_UNAVAILABLE = "PlatformUnavailable"
    QUORUM_UNSAFE = "QuorumUnsafe"
    SCALING_IN_PROGRESS = "ScalingInProgress"
    ENDPOINTS_UNRESOLVED = "EndpointsUnresolved"
    PROBES_FAILING = "ProbesFailing"


# First match wins when the Ready condition is False
REASON_PRIORITY = (
    ConditionReason.INVALID_SPEC,
    ConditionReason.PLATFORM_UNAVAILABLE,
    ConditionReason.QUORUM_UNSAFE,
    ConditionReason.SCALING_IN_PROGRESS,
    ConditionReason.ENDPOINTS_UNRESOLVED,
    ConditionReason.PROBES_FAILING,
)


class Severity(str, Enum):
    """How loudly a non-True condition should be treated."""

    NONE = ""
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


class Condition(BaseModel):
    """A single timestamped status record."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: ConditionType
    status: ConditionStatus
    reason: ConditionReason
    severity: Severity = Severity.NONE
    message: str = ""
    last_transition_time: datetime = Field(alias="lastTransitionTime")

    @property
    def is_true(self) -> bool:
        return self.status == ConditionStatus.TRUE

    def same_state(self, other: "Condition") -> bool:
        """True when status and reason match, i.e. no transition happened."""
        return self.status == other.status and self.reason == other.reason
