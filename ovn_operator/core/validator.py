"""
Cluster spec validation.

Turns the raw declaration of an OVNDBCluster into a normalized
OVNDBClusterSpec, or fails with InvalidSpecError naming the first violated
field. Pure: no I/O and no side effects beyond logging.
"""
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.exceptions import InvalidSpecError
from ovn_operator.models.ovndbcluster import (
    MAX_WORKLOAD_NAME_LENGTH,
    WORKLOAD_NAME_PATTERN,
    DBType,
    OVNDBClusterSpec,
    workload_name,
)

logger = get_logger(__name__)


def default_container_image(db_type: str) -> str:
    """Environment fall-back image for a database type."""
    if db_type == DBType.SB.value:
        return settings.ovn_sb_container_image
    return settings.ovn_nb_container_image


def _normalize(raw: Mapping[str, Any]) -> Dict[str, Any]:
    # Unset optional fields arrive as null from the API server
    normalized = {key: value for key, value in raw.items() if value is not None}
    db_type = normalized.get("dbType", DBType.NB.value)
    if not normalized.get("containerImage"):
        normalized["containerImage"] = default_container_image(db_type)
    return normalized


def _first_error_field(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = [str(part) for part in error.get("loc", ())]
    return ".".join(location) if location else "spec"


def validate_spec(
    raw: Mapping[str, Any], previous_db_type: Optional[DBType] = None
) -> OVNDBClusterSpec:
    """
    Validate and normalize a cluster declaration.

    Args:
        raw: The resource spec as stored on the resource (camelCase keys)
        previous_db_type: dbType recorded by an earlier successful pass

    Returns:
        Normalized spec with defaults applied

    Raises:
        InvalidSpecError: If any field violates its constraint
    """
    if not isinstance(raw, Mapping):
        raise InvalidSpecError("spec", "must be an object")

    try:
        spec = OVNDBClusterSpec.model_validate(_normalize(raw))
    except ValidationError as e:
        error = e.errors()[0]
        raise InvalidSpecError(_first_error_field(e), error.get("msg", "invalid value")) from e

    if previous_db_type is not None and spec.db_type != previous_db_type:
        raise InvalidSpecError(
            "dbType",
            f"cannot change from {previous_db_type.value} to {spec.db_type.value}; recreate the cluster",
        )

    if spec.election_timer >= spec.inactivity_probe:
        logger.warning(
            "election_timer_not_below_inactivity_probe",
            election_timer=spec.election_timer,
            inactivity_probe=spec.inactivity_probe,
            message="Elections may trigger falsely while the inactivity probe is pending",
        )

    return spec


def validate_spec_update(old_raw: Mapping[str, Any], new_raw: Mapping[str, Any]) -> OVNDBClusterSpec:
    """
    Validate an update of an existing declaration.

    Raises:
        InvalidSpecError: If the new spec is invalid or changes dbType
    """
    old = validate_spec(old_raw)
    return validate_spec(new_raw, previous_db_type=old.db_type)


def validate_cluster_name(name: str) -> str:
    """
    Check that a cluster name can name its StatefulSet and headless service.

    Returns:
        The workload name derived from the cluster name

    Raises:
        InvalidSpecError: If the name is too long or not a DNS-1035 label
    """
    if len(name) > MAX_WORKLOAD_NAME_LENGTH:
        raise InvalidSpecError(
            "metadata.name", f"must be at most {MAX_WORKLOAD_NAME_LENGTH} characters"
        )
    if not WORKLOAD_NAME_PATTERN.match(name):
        raise InvalidSpecError(
            "metadata.name",
            "must start with a letter and contain only lowercase letters, digits and '-'",
        )
    return workload_name(name)
