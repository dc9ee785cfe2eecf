"""
Member readiness from the pod Ready condition.
"""
import aiohttp
from kubernetes_asyncio.client import ApiException

from ovn_operator.config.logging import get_logger
from ovn_operator.services.kubernetes_client import KubernetesClientSet
from ovn_operator.utils.retry import translate_k8s_error

logger = get_logger(__name__)


class PodReadinessProbe:
    """ReadinessProbe that trusts the kubelet's readiness result."""

    def __init__(self, client_set: KubernetesClientSet):
        self.client_set = client_set

    async def probe(self, namespace: str, pod_name: str) -> bool:
        try:
            pod = await self.client_set.core_api.read_namespaced_pod(
                name=pod_name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("member_pod_not_found", namespace=namespace, pod=pod_name)
                return False
            raise translate_k8s_error("pod_read", e) from e
        except aiohttp.ClientError as e:
            raise translate_k8s_error("pod_read", e) from e

        if pod.metadata.deletion_timestamp is not None:
            return False

        for condition in (pod.status.conditions or []) if pod.status else []:
            if condition.type == "Ready":
                return condition.status == "True"
        return False
