"""
Network attachment address resolution.

Reads the network-status annotation that Multus writes on every pod it wires
to additional networks:

    k8s.v1.cni.cncf.io/network-status: '[{"name": "openstack/internalapi",
                                          "interface": "net1",
                                          "ips": ["172.17.0.30"]}, ...]'
"""
import json
from typing import Any, List

import aiohttp
from kubernetes_asyncio.client import ApiException

from ovn_operator.config.logging import get_logger
from ovn_operator.services.kubernetes_client import KubernetesClientSet
from ovn_operator.utils.retry import translate_k8s_error

logger = get_logger(__name__)

NETWORK_STATUS_ANNOTATION = "k8s.v1.cni.cncf.io/network-status"


def qualified_attachment(attachment: str, namespace: str) -> str:
    """namespace/name form of an attachment reference."""
    return attachment if "/" in attachment else f"{namespace}/{attachment}"


def ips_from_network_status(raw: str, attachment: str, namespace: str) -> List[str]:
    """
    IPs listed for an attachment in a network-status annotation value.

    Returns an empty list when the attachment is not listed or the value is
    not valid JSON.
    """
    try:
        entries: Any = json.loads(raw)
    except ValueError:
        logger.warning("network_status_annotation_malformed", attachment=attachment)
        return []
    if not isinstance(entries, list):
        return []

    wanted = qualified_attachment(attachment, namespace)
    ips: List[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if qualified_attachment(str(entry.get("name", "")), namespace) == wanted:
            ips.extend(str(ip) for ip in entry.get("ips") or [])
    return ips


class NetworkStatusResolver:
    """NetworkAttachmentResolver backed by the pod network-status annotation."""

    def __init__(self, client_set: KubernetesClientSet):
        self.client_set = client_set

    async def resolve(self, attachment: str, namespace: str, pod_name: str) -> List[str]:
        try:
            pod = await self.client_set.core_api.read_namespaced_pod(
                name=pod_name, namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return []
            raise translate_k8s_error("pod_read", e) from e
        except aiohttp.ClientError as e:
            raise translate_k8s_error("pod_read", e) from e

        annotations = pod.metadata.annotations or {}
        raw = annotations.get(NETWORK_STATUS_ANNOTATION)
        if not raw:
            return []
        return ips_from_network_status(raw, attachment, namespace)
