"""
Custom exceptions for the OVN DBCluster operator.

Every error the reconciliation pass can produce is one of these. Expected,
component-local failures (PlatformUnavailableError, QuorumUnsafeError,
ProbeFailingError, EndpointNotReadyError) are folded into status conditions;
InvalidSpecError stops the pass before any member is touched; anything else
propagates to the worker.
"""
from typing import Optional, Dict, Any

from fastapi import status


class OVNOperatorException(Exception):
    """
    Base exception for all operator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidSpecError(OVNOperatorException):
    """
    Raised when a cluster declaration fails validation.

    Caller error: fail fast, live members are never mutated.
    """

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.field = field
        super().__init__(
            message=f"invalid spec field '{field}': {message}",
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            details=details or {"field": field},
        )


class PlatformUnavailableError(OVNOperatorException):
    """
    Raised when a workload, probe or resolver collaborator fails or times out.

    Transient: retried with exponential backoff and jitter.
    """

    def __init__(self, operation: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__(
            message=f"platform unavailable during {operation}: {reason}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {"operation": operation, "reason": reason},
        )


class QuorumUnsafeError(OVNOperatorException):
    """
    Raised when removing a member would break the RAFT majority.

    Policy block: surfaced as a condition, never retried automatically.
    """

    def __init__(self, ordinal: int, members: int, ready_survivors: int, required: int):
        self.ordinal = ordinal
        super().__init__(
            message=(
                f"removing member {ordinal} of {members} leaves {ready_survivors} ready "
                f"member(s), {required} required for quorum"
            ),
            status_code=status.HTTP_409_CONFLICT,
            details={
                "ordinal": ordinal,
                "members": members,
                "ready_survivors": ready_survivors,
                "required": required,
            },
        )


class EndpointNotReadyError(OVNOperatorException):
    """
    Raised by endpoint accessors while the address is not published yet.

    Expected transient state: callers should retry later, not recreate.
    """

    def __init__(self, kind: str, db_type: str):
        self.kind = kind
        self.db_type = db_type
        super().__init__(
            message=f"{kind} DBEndpoint not ready yet for {db_type}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"endpoint": kind, "db_type": db_type},
        )


class ProbeFailingError(OVNOperatorException):
    """Raised when a member readiness probe cannot be evaluated."""

    def __init__(self, pod_name: str, reason: str):
        self.pod_name = pod_name
        super().__init__(
            message=f"readiness probe failing for {pod_name}: {reason}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"pod": pod_name, "reason": reason},
        )


class StoredStateError(OVNOperatorException):
    """
    Raised when the persisted status of a cluster cannot be parsed.

    Unexpected: propagates out of the pass and triggers a full-pass retry.
    """

    def __init__(self, cluster: str, reason: str):
        super().__init__(
            message=f"malformed stored state for {cluster}: {reason}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"cluster": cluster, "reason": reason},
        )


class KubernetesError(OVNOperatorException):
    """
    Raised when Kubernetes API operations fail in a non-retryable way.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Kubernetes error: {message}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class NotFoundError(OVNOperatorException):
    """Raised when a requested cluster is not found."""

    def __init__(self, namespace: str, name: str):
        super().__init__(
            message=f"OVNDBCluster '{namespace}/{name}' not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"namespace": namespace, "name": name},
        )


__all__ = [
    "OVNOperatorException",
    "InvalidSpecError",
    "PlatformUnavailableError",
    "QuorumUnsafeError",
    "EndpointNotReadyError",
    "ProbeFailingError",
    "StoredStateError",
    "KubernetesError",
    "NotFoundError",
]
