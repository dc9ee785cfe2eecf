"""
Operator configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import AliasChoices, Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main operator settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="OVN DBCluster Operator", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="Log renderer: json, console or auto")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for in-cluster)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Running inside Kubernetes cluster")
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to watch (None for all namespaces)"
    )
    crd_group: str = Field(default="ovn.openstack.org", description="OVNDBCluster API group")
    crd_version: str = Field(default="v1beta1", description="OVNDBCluster API version")
    crd_plural: str = Field(default="ovndbclusters", description="OVNDBCluster resource plural")

    # Reconciler
    reconcile_interval: int = Field(default=30, ge=1, le=300, description="Reconciliation interval in seconds")
    max_concurrent_reconciles: int = Field(
        default=4, ge=1, le=64, description="Clusters reconciled concurrently"
    )
    platform_call_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for a single workload/resolver call in seconds"
    )
    platform_retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts per platform call before surfacing PlatformUnavailable"
    )
    platform_retry_initial_delay: float = Field(default=0.5, ge=0, description="First in-call retry delay")
    platform_retry_max_delay: float = Field(default=5.0, ge=0, description="Maximum in-call retry delay")
    requeue_initial_delay: float = Field(default=5.0, gt=0, description="First requeue backoff in seconds")
    requeue_max_delay: float = Field(default=300.0, gt=0, description="Maximum requeue backoff in seconds")
    probe_failure_grace_seconds: int = Field(
        default=120, ge=0, description="How long failing probes stay informational before escalation"
    )

    # OVN defaults
    ovn_nb_container_image: str = Field(
        default="quay.io/podified-antelope-centos9/openstack-ovn-nb-db-server:current-podified",
        validation_alias=AliasChoices(
            "RELATED_IMAGE_OVN_NB_DBCLUSTER_IMAGE_URL_DEFAULT", "ovn_nb_container_image"
        ),
        description="Fall-back container image for NB clusters",
    )
    ovn_sb_container_image: str = Field(
        default="quay.io/podified-antelope-centos9/openstack-ovn-sb-db-server:current-podified",
        validation_alias=AliasChoices(
            "RELATED_IMAGE_OVN_SB_DBCLUSTER_IMAGE_URL_DEFAULT", "ovn_sb_container_image"
        ),
        description="Fall-back container image for SB clusters",
    )
    settings_script_path: str = Field(
        default="/usr/local/bin/container-scripts/settings.sh",
        description="Script inside the DB pod that applies RAFT/OVSDB tuning",
    )

    # Leader election (Redis)
    leader_election_enabled: bool = Field(default=False, description="Run the worker only on the elected leader")
    leader_lease_seconds: int = Field(default=30, ge=5, le=300, description="Leader lease duration")
    redis_url: Optional[RedisDsn] = Field(default=None, description="Redis connection URL")
    redis_max_connections: int = Field(default=10, ge=1, le=100, description="Redis max connections")

    # Monitoring
    prometheus_enabled: bool = Field(default=True, description="Enable Prometheus metrics")
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Sentry traces sample rate"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["auto", "json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
