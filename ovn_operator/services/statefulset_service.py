"""
StatefulSet-backed workload collaborator.

Each OVNDBCluster owns one StatefulSet named after the cluster itself plus a
headless service of the same name, so two clusters of one database type can
share a namespace. Member N is the pod <statefulset>-N and is reachable at
<pod>.<service>.<namespace>.svc. Live ordinals are [0, spec.replicas); pods
above that range are still terminating.
"""
import json
from typing import Any, Dict, List, Optional

import aiohttp
from kubernetes_asyncio.client import ApiException

from ovn_operator.config.logging import get_logger
from ovn_operator.models.ovndbcluster import (
    DB_PORTS,
    RAFT_PORTS,
    DBType,
    service_account_name,
    workload_name,
)
from ovn_operator.models.workload import MemberStatus, PodTemplate
from ovn_operator.services.kubernetes_client import KubernetesClientSet
from ovn_operator.utils.retry import translate_k8s_error

logger = get_logger(__name__)

CLUSTER_LABEL = "ovn.openstack.org/ovndbcluster"
SERVICE_LABEL = "service"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "ovn-operator"

NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
CONTAINER_NAME = "ovsdbserver"
SCRIPTS_DIR = "/usr/local/bin/container-scripts"
DATA_VOLUME = "data"
DATA_MOUNT_PATH = "/etc/ovn"


def pod_ordinal(pod_name: str) -> Optional[int]:
    """Ordinal suffix of a StatefulSet pod name, or None."""
    _, _, suffix = pod_name.rpartition("-")
    return int(suffix) if suffix.isdigit() else None


def networks_annotation(attachment: str, namespace: str) -> str:
    """Multus networks annotation for a single attachment."""
    attachment_ns, _, attachment_name = attachment.rpartition("/")
    return json.dumps([{"name": attachment_name, "namespace": attachment_ns or namespace}])


def cluster_labels(name: str, db_type: DBType) -> Dict[str, str]:
    return {
        CLUSTER_LABEL: name,
        SERVICE_LABEL: f"ovsdbserver-{db_type.value.lower()}",
        MANAGED_BY_LABEL: MANAGED_BY,
    }


def build_pod_spec(name: str, template: PodTemplate) -> Dict[str, Any]:
    """Pod spec for one ovsdb-server member."""
    db_type = DBType(template.db_type)

    if template.debug_service:
        command = ["/bin/sleep", "infinity"]
    else:
        command = [f"{SCRIPTS_DIR}/setup.sh"]

    container: Dict[str, Any] = {
        "name": CONTAINER_NAME,
        "image": template.container_image,
        "command": command,
        "env": [
            {"name": "DB_TYPE", "value": db_type.value.lower()},
            {"name": "DB_PORT", "value": str(DB_PORTS[db_type])},
            {"name": "RAFT_PORT", "value": str(RAFT_PORTS[db_type])},
            {"name": "OVN_LOG_LEVEL", "value": template.log_level},
            {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
            {"name": "NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        ],
        "ports": [
            {"name": "db", "containerPort": DB_PORTS[db_type]},
            {"name": "raft", "containerPort": RAFT_PORTS[db_type]},
        ],
        "readinessProbe": {
            "exec": {"command": ["/usr/bin/pidof", "ovsdb-server"]},
            "initialDelaySeconds": 5,
            "periodSeconds": 5,
        },
        "lifecycle": {"preStop": {"exec": {"command": [f"{SCRIPTS_DIR}/cleanup.sh"]}}},
        "volumeMounts": [{"name": DATA_VOLUME, "mountPath": DATA_MOUNT_PATH}],
    }
    resources = template.resources.model_dump(exclude_defaults=True)
    if resources:
        container["resources"] = resources

    pod_spec: Dict[str, Any] = {
        "serviceAccountName": service_account_name(name),
        "containers": [container],
    }
    if template.node_selector:
        pod_spec["nodeSelector"] = dict(template.node_selector)
    return pod_spec


def build_statefulset(name: str, namespace: str, replicas: int, template: PodTemplate) -> Dict[str, Any]:
    """StatefulSet body for a cluster at the given size."""
    db_type = DBType(template.db_type)
    sts_name = workload_name(name)
    labels = cluster_labels(name, db_type)

    annotations: Dict[str, str] = {}
    if template.network_attachment:
        annotations[NETWORKS_ANNOTATION] = networks_annotation(template.network_attachment, namespace)

    claim_spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": template.storage_request}},
    }
    if template.storage_class:
        claim_spec["storageClassName"] = template.storage_class

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {"name": sts_name, "namespace": namespace, "labels": labels},
        "spec": {
            "replicas": replicas,
            "serviceName": sts_name,
            "podManagementPolicy": "Parallel",
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels, "annotations": annotations},
                "spec": build_pod_spec(name, template),
            },
            "volumeClaimTemplates": [
                {"metadata": {"name": DATA_VOLUME}, "spec": claim_spec},
            ],
        },
    }


def build_headless_service(name: str, namespace: str, db_type: DBType) -> Dict[str, Any]:
    """Headless service giving every member a stable DNS name."""
    labels = cluster_labels(name, db_type)
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": workload_name(name), "namespace": namespace, "labels": labels},
        "spec": {
            "clusterIP": "None",
            "publishNotReadyAddresses": True,
            "selector": labels,
            "ports": [
                {"name": "db", "port": DB_PORTS[db_type], "targetPort": DB_PORTS[db_type]},
                {"name": "raft", "port": RAFT_PORTS[db_type], "targetPort": RAFT_PORTS[db_type]},
            ],
        },
    }


class StatefulSetWorkload:
    """
    WorkloadClient backed by an apps/v1 StatefulSet.
    """

    def __init__(self, client_set: KubernetesClientSet):
        self.client_set = client_set

    async def get(self, name: str, namespace: str) -> List[MemberStatus]:
        sts = await self._find(name, namespace)
        if sts is None:
            return []
        return await self._member_statuses(
            name, namespace, sts.metadata.name, sts.spec.replicas or 0
        )

    async def ensure(
        self, name: str, namespace: str, replica_count: int, template: PodTemplate
    ) -> List[MemberStatus]:
        db_type = DBType(template.db_type)
        body = build_statefulset(name, namespace, replica_count, template)
        sts_name = body["metadata"]["name"]

        await self._ensure_service(name, namespace, db_type)

        try:
            existing = await self.client_set.apps_api.read_namespaced_stateful_set(
                name=sts_name, namespace=namespace
            )
        except ApiException as e:
            if e.status != 404:
                raise translate_k8s_error("statefulset_read", e) from e
            existing = None
        except aiohttp.ClientError as e:
            raise translate_k8s_error("statefulset_read", e) from e

        try:
            if existing is None:
                await self.client_set.apps_api.create_namespaced_stateful_set(
                    namespace=namespace, body=body
                )
                logger.info(
                    "statefulset_created",
                    cluster=name,
                    namespace=namespace,
                    statefulset=sts_name,
                    replicas=replica_count,
                )
            else:
                # volumeClaimTemplates are immutable once created
                patch = {
                    "metadata": {"labels": body["metadata"]["labels"]},
                    "spec": {
                        "replicas": replica_count,
                        "template": body["spec"]["template"],
                    },
                }
                await self.client_set.apps_api.patch_namespaced_stateful_set(
                    name=sts_name, namespace=namespace, body=patch
                )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("statefulset_ensure", e) from e

        return await self._member_statuses(name, namespace, sts_name, replica_count)

    async def delete(self, name: str, namespace: str, ordinal: int) -> None:
        sts = await self._find(name, namespace)
        if sts is None:
            logger.warning("statefulset_missing_on_delete", cluster=name, namespace=namespace)
            return

        current = sts.spec.replicas or 0
        if ordinal != current - 1:
            logger.warning(
                "member_delete_not_highest_ordinal",
                cluster=name,
                namespace=namespace,
                ordinal=ordinal,
                replicas=current,
            )

        try:
            await self.client_set.apps_api.patch_namespaced_stateful_set(
                name=sts.metadata.name,
                namespace=namespace,
                body={"spec": {"replicas": ordinal}},
            )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("statefulset_scale_down", e) from e

        logger.info(
            "statefulset_scaled_down",
            cluster=name,
            namespace=namespace,
            statefulset=sts.metadata.name,
            replicas=ordinal,
        )

    async def _find(self, name: str, namespace: str) -> Optional[Any]:
        try:
            result = await self.client_set.apps_api.list_namespaced_stateful_set(
                namespace=namespace, label_selector=f"{CLUSTER_LABEL}={name}"
            )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("statefulset_list", e) from e
        return result.items[0] if result.items else None

    async def _ensure_service(self, name: str, namespace: str, db_type: DBType) -> None:
        service_name = workload_name(name)
        try:
            await self.client_set.core_api.read_namespaced_service(
                name=service_name, namespace=namespace
            )
            return
        except ApiException as e:
            if e.status != 404:
                raise translate_k8s_error("service_read", e) from e
        except aiohttp.ClientError as e:
            raise translate_k8s_error("service_read", e) from e

        try:
            await self.client_set.core_api.create_namespaced_service(
                namespace=namespace, body=build_headless_service(name, namespace, db_type)
            )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("service_create", e) from e
        logger.info("headless_service_created", cluster=name, namespace=namespace, service=service_name)

    async def _member_statuses(
        self, name: str, namespace: str, sts_name: str, replicas: int
    ) -> List[MemberStatus]:
        try:
            pods = await self.client_set.core_api.list_namespaced_pod(
                namespace=namespace, label_selector=f"{CLUSTER_LABEL}={name}"
            )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("pod_list", e) from e

        statuses = [
            MemberStatus(ordinal=ordinal, pod_name=f"{sts_name}-{ordinal}")
            for ordinal in range(replicas)
        ]
        for pod in pods.items:
            ordinal = pod_ordinal(pod.metadata.name)
            if ordinal is not None and ordinal >= replicas:
                statuses.append(
                    MemberStatus(ordinal=ordinal, pod_name=pod.metadata.name, terminating=True)
                )
        return sorted(statuses, key=lambda s: s.ordinal)
