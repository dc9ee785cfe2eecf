"""
OVNDBCluster custom resource access.

Lists and reads cluster objects and writes their status subresource. Parsing
of stored objects lives here too, so a malformed status surfaces as a
StoredStateError for that one cluster.
"""
from typing import Any, Dict, List, Mapping, Optional

import aiohttp
from kubernetes_asyncio.client import ApiException
from pydantic import ValidationError

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.exceptions import NotFoundError, StoredStateError
from ovn_operator.models.ovndbcluster import (
    ObjectMeta,
    OVNDBCluster,
    OVNDBClusterStatus,
)
from ovn_operator.services.kubernetes_client import KubernetesClientSet
from ovn_operator.utils.retry import translate_k8s_error

logger = get_logger(__name__)


def parse_cluster(obj: Mapping[str, Any]) -> OVNDBCluster:
    """
    Build an OVNDBCluster from a custom object as returned by the API.

    Raises:
        StoredStateError: If metadata or status cannot be parsed
    """
    raw_meta = obj.get("metadata") or {}
    key = f"{raw_meta.get('namespace', '?')}/{raw_meta.get('name', '?')}"
    try:
        metadata = ObjectMeta.model_validate(raw_meta)
        status = OVNDBClusterStatus.model_validate(obj.get("status") or {})
    except ValidationError as e:
        raise StoredStateError(key, str(e)) from e

    spec = obj.get("spec")
    return OVNDBCluster(
        metadata=metadata,
        spec=dict(spec) if isinstance(spec, Mapping) else {},
        status=status,
    )


class ClusterRepository:
    """
    Repository for OVNDBCluster objects.
    """

    def __init__(self, client_set: KubernetesClientSet, namespace: Optional[str] = None):
        self.client_set = client_set
        self.namespace = namespace if namespace is not None else settings.watch_namespace
        self.group = settings.crd_group
        self.version = settings.crd_version
        self.plural = settings.crd_plural

    async def list_objects(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw cluster objects in a namespace, or in the watched scope."""
        namespace = namespace or self.namespace
        try:
            if namespace:
                result = await self.client_set.custom_api.list_namespaced_custom_object(
                    group=self.group,
                    version=self.version,
                    namespace=namespace,
                    plural=self.plural,
                )
            else:
                result = await self.client_set.custom_api.list_cluster_custom_object(
                    group=self.group,
                    version=self.version,
                    plural=self.plural,
                )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("ovndbcluster_list", e) from e
        return list(result.get("items", []))

    async def list_clusters(self, namespace: str) -> List[OVNDBCluster]:
        return [parse_cluster(obj) for obj in await self.list_objects(namespace)]

    async def get_cluster(self, namespace: str, name: str) -> OVNDBCluster:
        """
        Raises:
            NotFoundError: If the cluster does not exist
        """
        try:
            obj = await self.client_set.custom_api.get_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(namespace, name) from e
            raise translate_k8s_error("ovndbcluster_get", e) from e
        except aiohttp.ClientError as e:
            raise translate_k8s_error("ovndbcluster_get", e) from e
        return parse_cluster(obj)

    async def patch_status(self, cluster: OVNDBCluster, status: OVNDBClusterStatus) -> None:
        """Write status through the status subresource."""
        body = status.to_k8s()
        # Merge patch keeps map keys that are absent, so removed members are nulled
        for pod_name in cluster.status.network_attachments:
            if pod_name not in status.network_attachments:
                body["networkAttachments"][pod_name] = None

        try:
            await self.client_set.custom_api.patch_namespaced_custom_object_status(
                group=self.group,
                version=self.version,
                namespace=cluster.metadata.namespace,
                plural=self.plural,
                name=cluster.metadata.name,
                body={"status": body},
                _content_type="application/merge-patch+json",
            )
        except ApiException as e:
            if e.status == 404:
                logger.info(
                    "ovndbcluster_deleted_before_status_patch",
                    cluster=cluster.metadata.name,
                    namespace=cluster.metadata.namespace,
                )
                return
            raise translate_k8s_error("ovndbcluster_status_patch", e) from e
        except aiohttp.ClientError as e:
            raise translate_k8s_error("ovndbcluster_status_patch", e) from e

        logger.debug(
            "ovndbcluster_status_patched",
            cluster=cluster.metadata.name,
            namespace=cluster.metadata.namespace,
            ready_count=status.ready_count,
        )
