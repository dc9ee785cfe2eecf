"""
Tests for the Kubernetes-backed collaborators.

The API clients are replaced by small stubs recording the calls made; no
cluster is needed.
"""
import json
from types import SimpleNamespace

import pytest
from kubernetes_asyncio.client import ApiException

from ovn_operator.exceptions import (
    KubernetesError,
    NotFoundError,
    PlatformUnavailableError,
    StoredStateError,
)
from ovn_operator.models.ovndbcluster import DBType, OVNDBClusterStatus
from ovn_operator.models.workload import PodTemplate, RaftRole, RaftSettings
from ovn_operator.services.cluster_repository import ClusterRepository, parse_cluster
from ovn_operator.services.network_attachment_service import (
    NETWORK_STATUS_ANNOTATION,
    NetworkStatusResolver,
    ips_from_network_status,
)
from ovn_operator.services.ovsdb_member_service import (
    OVSDBMemberClient,
    cluster_status_command,
    parse_role,
    settings_command,
    split_exit_status,
    with_exit_status,
)
from ovn_operator.services.pod_readiness_service import PodReadinessProbe
from ovn_operator.services.statefulset_service import (
    CLUSTER_LABEL,
    NETWORKS_ANNOTATION,
    StatefulSetWorkload,
    build_headless_service,
    build_statefulset,
    networks_annotation,
    pod_ordinal,
)
from tests.conftest import make_cluster

NAMESPACE = "openstack"
RAFT_SETTINGS = RaftSettings(
    election_timer=5000, inactivity_probe=60000, probe_interval_to_active=60000
)

NETWORK_STATUS = json.dumps(
    [
        {"name": "ovn-kubernetes", "interface": "eth0", "ips": ["10.128.0.12"], "default": True},
        {"name": "openstack/internalapi", "interface": "internalapi", "ips": ["172.17.0.30"]},
    ]
)


def template(**overrides):
    values = {
        "db_type": "NB",
        "container_image": "quay.io/podified/ovn-nb-db-server:current",
        "storage_request": "10G",
    }
    values.update(overrides)
    return PodTemplate(**values)


def pod(name, ready="True", deleting=False, annotations=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(
            name=name,
            annotations=annotations,
            deletion_timestamp="2026-01-01T00:00:00Z" if deleting else None,
        ),
        status=SimpleNamespace(conditions=[SimpleNamespace(type="Ready", status=ready)]),
    )


class StubCoreApi:
    def __init__(self, pods=None, service_exists=True, error=None):
        self.pods = {p.metadata.name: p for p in pods or []}
        self.service_exists = service_exists
        self.error = error
        self.created_services = []

    async def read_namespaced_pod(self, name, namespace):
        if self.error is not None:
            raise self.error
        if name not in self.pods:
            raise ApiException(status=404)
        return self.pods[name]

    async def list_namespaced_pod(self, namespace, label_selector):
        return SimpleNamespace(items=list(self.pods.values()))

    async def read_namespaced_service(self, name, namespace):
        if not self.service_exists:
            raise ApiException(status=404)
        return SimpleNamespace(metadata=SimpleNamespace(name=name))

    async def create_namespaced_service(self, namespace, body):
        self.created_services.append(body)
        self.service_exists = True


class StubAppsApi:
    def __init__(self, replicas=None):
        self.replicas = replicas
        self.created = []
        self.patches = []
        self.touched = []

    def _sts(self):
        return SimpleNamespace(
            metadata=SimpleNamespace(name="ovndbcluster-nb"),
            spec=SimpleNamespace(replicas=self.replicas),
        )

    async def list_namespaced_stateful_set(self, namespace, label_selector):
        return SimpleNamespace(items=[] if self.replicas is None else [self._sts()])

    async def read_namespaced_stateful_set(self, name, namespace):
        self.touched.append(name)
        if self.replicas is None:
            raise ApiException(status=404)
        return self._sts()

    async def create_namespaced_stateful_set(self, namespace, body):
        self.created.append(body)
        self.replicas = body["spec"]["replicas"]

    async def patch_namespaced_stateful_set(self, name, namespace, body):
        self.touched.append(name)
        self.patches.append(body)
        self.replicas = body["spec"].get("replicas", self.replicas)


class StubCustomApi:
    def __init__(self, objects=None, error=None):
        self.objects = objects or {}
        self.error = error
        self.patches = []

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        if self.error is not None:
            raise self.error
        if name not in self.objects:
            raise ApiException(status=404)
        return self.objects[name]

    async def patch_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body, _content_type
    ):
        if self.error is not None:
            raise self.error
        self.patches.append((name, body, _content_type))


def client_set(core=None, apps=None, custom=None):
    return SimpleNamespace(core_api=core, apps_api=apps, custom_api=custom)


@pytest.mark.parametrize(
    "name,ordinal",
    [("ovndbcluster-nb-0", 0), ("ovndbcluster-sb-12", 12), ("ovndbcluster-nb", None)],
)
def test_pod_ordinal(name, ordinal):
    assert pod_ordinal(name) == ordinal


def test_networks_annotation_defaults_namespace():
    assert json.loads(networks_annotation("internalapi", NAMESPACE)) == [
        {"name": "internalapi", "namespace": NAMESPACE}
    ]
    assert json.loads(networks_annotation("net/internalapi", NAMESPACE)) == [
        {"name": "internalapi", "namespace": "net"}
    ]


def test_statefulset_body():
    body = build_statefulset(
        "ovndbcluster-nb",
        NAMESPACE,
        3,
        template(network_attachment="internalapi", storage_class="local-storage"),
    )

    spec = body["spec"]
    assert body["metadata"]["name"] == "ovndbcluster-nb"
    assert spec["replicas"] == 3
    assert spec["serviceName"] == "ovndbcluster-nb"
    assert spec["podManagementPolicy"] == "Parallel"
    assert spec["selector"]["matchLabels"][CLUSTER_LABEL] == "ovndbcluster-nb"
    assert NETWORKS_ANNOTATION in spec["template"]["metadata"]["annotations"]
    assert spec["template"]["spec"]["serviceAccountName"] == "ovncluster-ovndbcluster-nb"
    claim = spec["volumeClaimTemplates"][0]["spec"]
    assert claim["resources"]["requests"]["storage"] == "10G"
    assert claim["storageClassName"] == "local-storage"


def test_same_type_clusters_get_their_own_workload():
    core = build_statefulset("nb-core", NAMESPACE, 3, template())
    edge = build_statefulset("nb-edge", NAMESPACE, 3, template())

    assert core["metadata"]["name"] == "nb-core"
    assert edge["metadata"]["name"] == "nb-edge"
    assert edge["spec"]["serviceName"] == "nb-edge"
    assert core["spec"]["selector"]["matchLabels"] != edge["spec"]["selector"]["matchLabels"]
    assert build_headless_service("nb-edge", NAMESPACE, DBType.NB)["metadata"]["name"] == "nb-edge"


def test_debug_service_keeps_container_idle():
    body = build_statefulset("ovndbcluster-nb", NAMESPACE, 1, template(debug_service=True))
    container = body["spec"]["template"]["spec"]["containers"][0]
    assert container["command"] == ["/bin/sleep", "infinity"]


def test_headless_service_ports():
    body = build_headless_service("ovndbcluster-sb", NAMESPACE, DBType.SB)
    assert body["spec"]["clusterIP"] == "None"
    assert [p["port"] for p in body["spec"]["ports"]] == [6642, 6644]


@pytest.mark.asyncio
async def test_ensure_creates_service_and_statefulset():
    core = StubCoreApi(service_exists=False)
    apps = StubAppsApi()
    workload = StatefulSetWorkload(client_set(core=core, apps=apps))

    statuses = await workload.ensure("ovndbcluster-nb", NAMESPACE, 3, template())

    assert len(core.created_services) == 1
    assert len(apps.created) == 1
    assert [s.pod_name for s in statuses] == [f"ovndbcluster-nb-{i}" for i in range(3)]


@pytest.mark.asyncio
async def test_ensure_patches_existing_statefulset():
    apps = StubAppsApi(replicas=1)
    workload = StatefulSetWorkload(client_set(core=StubCoreApi(), apps=apps))

    await workload.ensure("ovndbcluster-nb", NAMESPACE, 3, template())

    assert apps.created == []
    assert apps.patches[0]["spec"]["replicas"] == 3
    assert "volumeClaimTemplates" not in apps.patches[0]["spec"]


@pytest.mark.asyncio
async def test_ensure_only_touches_the_clusters_own_statefulset():
    core = StubCoreApi(service_exists=False)
    apps = StubAppsApi(replicas=1)
    workload = StatefulSetWorkload(client_set(core=core, apps=apps))

    statuses = await workload.ensure("nb-edge", NAMESPACE, 2, template())

    assert set(apps.touched) == {"nb-edge"}
    assert core.created_services[0]["metadata"]["name"] == "nb-edge"
    assert [s.pod_name for s in statuses] == ["nb-edge-0", "nb-edge-1"]


@pytest.mark.asyncio
async def test_get_reports_terminating_pods_above_replicas():
    core = StubCoreApi(pods=[pod(f"ovndbcluster-nb-{i}") for i in range(3)])
    workload = StatefulSetWorkload(client_set(core=core, apps=StubAppsApi(replicas=2)))

    statuses = await workload.get("ovndbcluster-nb", NAMESPACE)

    assert [(s.ordinal, s.terminating) for s in statuses] == [(0, False), (1, False), (2, True)]


@pytest.mark.asyncio
async def test_get_without_statefulset_is_empty():
    workload = StatefulSetWorkload(client_set(core=StubCoreApi(), apps=StubAppsApi()))
    assert await workload.get("ovndbcluster-nb", NAMESPACE) == []


@pytest.mark.asyncio
async def test_delete_scales_to_ordinal():
    apps = StubAppsApi(replicas=3)
    workload = StatefulSetWorkload(client_set(core=StubCoreApi(), apps=apps))

    await workload.delete("ovndbcluster-nb", NAMESPACE, 2)

    assert apps.patches == [{"spec": {"replicas": 2}}]


@pytest.mark.asyncio
async def test_readiness_probe():
    core = StubCoreApi(
        pods=[
            pod("ovndbcluster-nb-0"),
            pod("ovndbcluster-nb-1", ready="False"),
            pod("ovndbcluster-nb-2", deleting=True),
        ]
    )
    probe = PodReadinessProbe(client_set(core=core))

    assert await probe.probe(NAMESPACE, "ovndbcluster-nb-0") is True
    assert await probe.probe(NAMESPACE, "ovndbcluster-nb-1") is False
    assert await probe.probe(NAMESPACE, "ovndbcluster-nb-2") is False
    assert await probe.probe(NAMESPACE, "ovndbcluster-nb-9") is False


@pytest.mark.asyncio
async def test_readiness_probe_translates_api_outage():
    probe = PodReadinessProbe(client_set(core=StubCoreApi(error=ApiException(status=503))))
    with pytest.raises(PlatformUnavailableError):
        await probe.probe(NAMESPACE, "ovndbcluster-nb-0")


def test_ips_from_network_status():
    assert ips_from_network_status(NETWORK_STATUS, "internalapi", NAMESPACE) == ["172.17.0.30"]
    assert ips_from_network_status(NETWORK_STATUS, "openstack/internalapi", NAMESPACE) == [
        "172.17.0.30"
    ]
    assert ips_from_network_status(NETWORK_STATUS, "tenant", NAMESPACE) == []
    assert ips_from_network_status("not json", "internalapi", NAMESPACE) == []


@pytest.mark.asyncio
async def test_network_status_resolver():
    core = StubCoreApi(
        pods=[
            pod("ovndbcluster-nb-0", annotations={NETWORK_STATUS_ANNOTATION: NETWORK_STATUS}),
            pod("ovndbcluster-nb-1", annotations=None),
        ]
    )
    resolver = NetworkStatusResolver(client_set(core=core))

    assert await resolver.resolve("internalapi", NAMESPACE, "ovndbcluster-nb-0") == ["172.17.0.30"]
    assert await resolver.resolve("internalapi", NAMESPACE, "ovndbcluster-nb-1") == []
    assert await resolver.resolve("internalapi", NAMESPACE, "ovndbcluster-nb-5") == []


@pytest.mark.parametrize(
    "output,role",
    [
        ("Name: OVN_Northbound\nCluster ID: 1a2b\nRole: leader\nTerm: 4\n", RaftRole.LEADER),
        ("Name: OVN_Southbound\nRole: follower\n", RaftRole.FOLLOWER),
        ("Role: candidate", RaftRole.CANDIDATE),
        ("Role: observer", RaftRole.UNKNOWN),
        ("", RaftRole.UNKNOWN),
    ],
)
def test_parse_role(output, role):
    assert parse_role(output) == role


def test_member_commands():
    assert cluster_status_command(DBType.SB) == [
        "ovs-appctl",
        "-t",
        "/tmp/ovnsb_db.ctl",
        "cluster/status",
        "OVN_Southbound",
    ]
    command = settings_command(
        "/usr/local/bin/container-scripts/settings.sh",
        RaftSettings(election_timer=5000, inactivity_probe=60000, probe_interval_to_active=60000),
    )
    assert command[1:3] == ["--election-timer", "5000"]


class CannedMemberClient(OVSDBMemberClient):
    """Member client whose exec stream returns fixed output."""

    def __init__(self, output):
        super().__init__(client_set(), script_path="/usr/local/bin/container-scripts/settings.sh")
        self.output = output
        self.commands = []

    async def _stream(self, namespace, pod_name, command):
        self.commands.append(command)
        return self.output


def test_exec_wraps_command_to_report_exit_status():
    wrapped = with_exit_status(["ovs-appctl", "-t", "/tmp/ovnnb_db.ctl", "cluster/status"])

    assert wrapped[:2] == ["/bin/sh", "-c"]
    assert wrapped[2] == '"$@"; echo "ovn-operator-exit-status=$?"'
    assert wrapped[3:] == ["sh", "ovs-appctl", "-t", "/tmp/ovnnb_db.ctl", "cluster/status"]


@pytest.mark.parametrize(
    "output,exit_status,text",
    [
        ("Role: leader\novn-operator-exit-status=0\n", 0, "Role: leader"),
        ("cannot connect\novn-operator-exit-status=1\n", 1, "cannot connect"),
        ("ovn-operator-exit-status=127\n", 127, ""),
        ("done\novn-operator-exit-status=2\nlate stderr\n", 2, "done\nlate stderr"),
        ("shell failed to start", None, "shell failed to start"),
        ("", None, ""),
    ],
)
def test_split_exit_status(output, exit_status, text):
    assert split_exit_status(output) == (exit_status, text)


@pytest.mark.asyncio
async def test_failing_settings_script_raises():
    member_client = CannedMemberClient("ovs-appctl: cannot connect\novn-operator-exit-status=1\n")

    with pytest.raises(PlatformUnavailableError) as exc_info:
        await member_client.apply_settings(
            NAMESPACE, "ovndbcluster-nb-0", "NB", RAFT_SETTINGS
        )

    assert exc_info.value.operation == "raft_apply_settings"
    assert "exited with status 1" in exc_info.value.message
    assert member_client.commands[0][4] == "/usr/local/bin/container-scripts/settings.sh"


@pytest.mark.asyncio
async def test_settings_script_without_exit_status_raises():
    member_client = CannedMemberClient("")

    with pytest.raises(PlatformUnavailableError):
        await member_client.apply_settings(
            NAMESPACE, "ovndbcluster-nb-0", "NB", RAFT_SETTINGS
        )


@pytest.mark.asyncio
async def test_successful_settings_script_returns():
    member_client = CannedMemberClient("settings applied\novn-operator-exit-status=0\n")

    await member_client.apply_settings(
        NAMESPACE, "ovndbcluster-nb-0", "NB", RAFT_SETTINGS
    )

    assert member_client.commands[0][-2:] == ["--probe-interval-to-active", "60000"]


@pytest.mark.asyncio
async def test_role_query_reads_output_before_exit_status():
    member_client = CannedMemberClient(
        "Name: OVN_Northbound\nRole: leader\nTerm: 4\novn-operator-exit-status=0\n"
    )

    role = await member_client.role(NAMESPACE, "ovndbcluster-nb-0", "NB")

    assert role == RaftRole.LEADER


@pytest.mark.asyncio
async def test_role_query_failure_raises():
    member_client = CannedMemberClient("ovs-appctl: cannot connect\novn-operator-exit-status=1\n")

    with pytest.raises(PlatformUnavailableError) as exc_info:
        await member_client.role(NAMESPACE, "ovndbcluster-nb-0", "NB")

    assert exc_info.value.operation == "raft_role_query"


def test_parse_cluster_rejects_malformed_status():
    obj = {
        "metadata": {"name": "ovndbcluster-nb", "namespace": NAMESPACE},
        "spec": {"dbType": "NB"},
        "status": {"hash": {"config": "xyz"}},
    }
    with pytest.raises(StoredStateError):
        parse_cluster(obj)


def test_parse_cluster_tolerates_missing_status():
    cluster = parse_cluster({"metadata": {"name": "ovndbcluster-nb", "namespace": NAMESPACE}})
    assert cluster.status == OVNDBClusterStatus()
    assert cluster.spec == {}


@pytest.mark.asyncio
async def test_repository_get_cluster():
    obj = {"metadata": {"name": "ovndbcluster-nb", "namespace": NAMESPACE, "generation": 2}}
    repository = ClusterRepository(
        client_set(custom=StubCustomApi({"ovndbcluster-nb": obj})), namespace=NAMESPACE
    )

    cluster = await repository.get_cluster(NAMESPACE, "ovndbcluster-nb")
    assert cluster.metadata.generation == 2

    with pytest.raises(NotFoundError):
        await repository.get_cluster(NAMESPACE, "missing")


@pytest.mark.asyncio
async def test_repository_status_patch_nulls_removed_members():
    custom = StubCustomApi()
    repository = ClusterRepository(client_set(custom=custom), namespace=NAMESPACE)
    cluster = make_cluster(
        status=OVNDBClusterStatus(
            network_attachments={
                "ovndbcluster-nb-0": ["172.17.0.30"],
                "ovndbcluster-nb-1": ["172.17.0.31"],
            }
        )
    )
    new_status = OVNDBClusterStatus(network_attachments={"ovndbcluster-nb-0": ["172.17.0.30"]})

    await repository.patch_status(cluster, new_status)

    name, body, content_type = custom.patches[0]
    assert name == "ovndbcluster-nb"
    assert content_type == "application/merge-patch+json"
    assert body["status"]["networkAttachments"] == {
        "ovndbcluster-nb-0": ["172.17.0.30"],
        "ovndbcluster-nb-1": None,
    }


@pytest.mark.asyncio
async def test_repository_status_patch_errors():
    deleted = ClusterRepository(
        client_set(custom=StubCustomApi(error=ApiException(status=404))), namespace=NAMESPACE
    )
    await deleted.patch_status(make_cluster(), OVNDBClusterStatus())

    forbidden = ClusterRepository(
        client_set(custom=StubCustomApi(error=ApiException(status=403))), namespace=NAMESPACE
    )
    with pytest.raises(KubernetesError):
        await forbidden.patch_status(make_cluster(), OVNDBClusterStatus())
