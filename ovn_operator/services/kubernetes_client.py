"""
Kubernetes API client set for the operator.

One configuration is loaded at startup (kubeconfig file or in-cluster service
account) and shared by every Kubernetes-backed collaborator.
"""
from typing import Optional

from kubernetes_asyncio import client, config
from kubernetes_asyncio.config import ConfigException

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.exceptions import KubernetesError

logger = get_logger(__name__)


class KubernetesClientSet:
    """Container for Kubernetes API clients."""

    def __init__(self, api_client: client.ApiClient, configuration: client.Configuration):
        self.api_client = api_client
        self.configuration = configuration
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.apps_api = client.AppsV1Api(api_client)

    async def close(self):
        """Close all API clients."""
        if self.api_client:
            await self.api_client.close()


async def load_client_set(
    kubeconfig_path: Optional[str] = None, in_cluster: Optional[bool] = None
) -> KubernetesClientSet:
    """
    Build a client set from settings.

    Raises:
        KubernetesError: If no usable configuration is found
    """
    kubeconfig_path = kubeconfig_path or settings.kubeconfig_path
    in_cluster = settings.k8s_in_cluster if in_cluster is None else in_cluster
    configuration = client.Configuration()

    try:
        if in_cluster:
            config.load_incluster_config(client_configuration=configuration)
        else:
            await config.load_kube_config(
                config_file=kubeconfig_path, client_configuration=configuration
            )
    except (ConfigException, FileNotFoundError) as e:
        logger.error(
            "kubernetes_configuration_failed",
            in_cluster=in_cluster,
            kubeconfig_path=kubeconfig_path,
            error=str(e),
        )
        raise KubernetesError(f"Failed to load Kubernetes configuration: {e}")

    logger.info(
        "kubernetes_configuration_loaded",
        host=configuration.host,
        in_cluster=in_cluster,
        verify_ssl=configuration.verify_ssl,
    )
    return KubernetesClientSet(client.ApiClient(configuration=configuration), configuration)
