"""
Pytest configuration and fixtures.

The Kubernetes collaborators are replaced by in-memory fakes that follow
StatefulSet semantics: ordinals [0, replicas) are live, and a scale-down can
leave the removed ordinal terminating for a while.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ovn_operator.config.settings import settings
from ovn_operator.core.lock_manager import ClusterLockManager
from ovn_operator.core.reconciler import OVNDBClusterReconciler
from ovn_operator.exceptions import NotFoundError, PlatformUnavailableError
from ovn_operator.models.ovndbcluster import (
    ObjectMeta,
    OVNDBCluster,
    OVNDBClusterStatus,
    workload_name,
)
from ovn_operator.models.workload import MemberStatus, PodTemplate, RaftRole, RaftSettings
from ovn_operator.services.cluster_repository import parse_cluster
from ovn_operator.utils.retry import CallPolicy

NAMESPACE = "openstack"


class FakeClock:
    """Controllable UTC clock; optionally advances by step on every read."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(0)):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeMonotonic:
    """Stand-in for time.monotonic driven by the test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeWorkload:
    """WorkloadClient with StatefulSet semantics."""

    def __init__(self, graceful_termination: bool = False):
        self.replicas: Dict[str, int] = {}
        self.prefix: Dict[str, str] = {}
        self.terminating: Dict[str, Set[int]] = defaultdict(set)
        self.templates: Dict[str, PodTemplate] = {}
        self.graceful_termination = graceful_termination
        self.ensure_calls: List[Tuple[str, int]] = []
        self.deleted: List[Tuple[str, int]] = []
        self.fail: Optional[Exception] = None
        self.delay: float = 0.0
        self.in_flight: Dict[str, int] = defaultdict(int)
        self.max_in_flight: Dict[str, int] = defaultdict(int)
        self.total_in_flight = 0
        self.max_total_in_flight = 0

    async def _enter(self, name: str) -> None:
        self.in_flight[name] += 1
        self.total_in_flight += 1
        self.max_in_flight[name] = max(self.max_in_flight[name], self.in_flight[name])
        self.max_total_in_flight = max(self.max_total_in_flight, self.total_in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail is not None:
                raise self.fail
        finally:
            self.in_flight[name] -= 1
            self.total_in_flight -= 1

    def _statuses(self, name: str) -> List[MemberStatus]:
        prefix = self.prefix.get(name)
        if prefix is None:
            return []
        statuses = [
            MemberStatus(ordinal=i, pod_name=f"{prefix}-{i}")
            for i in range(self.replicas.get(name, 0))
        ]
        statuses += [
            MemberStatus(ordinal=i, pod_name=f"{prefix}-{i}", terminating=True)
            for i in sorted(self.terminating[name])
        ]
        return statuses

    def live_count(self, name: str) -> int:
        return self.replicas.get(name, 0)

    def finish_termination(self, name: str) -> None:
        self.terminating[name].clear()

    async def get(self, name: str, namespace: str) -> List[MemberStatus]:
        await self._enter(name)
        return self._statuses(name)

    async def ensure(
        self, name: str, namespace: str, replica_count: int, template: PodTemplate
    ) -> List[MemberStatus]:
        await self._enter(name)
        self.ensure_calls.append((name, replica_count))
        self.templates[name] = template
        self.prefix[name] = workload_name(name)
        self.replicas[name] = replica_count
        return self._statuses(name)

    async def delete(self, name: str, namespace: str, ordinal: int) -> None:
        await self._enter(name)
        self.deleted.append((name, ordinal))
        self.replicas[name] = ordinal
        if self.graceful_termination:
            self.terminating[name].add(ordinal)


class FakeProbe:
    """ReadinessProbe answering from a per-pod table."""

    def __init__(self, default: bool = True):
        self.default = default
        self.ready: Dict[str, bool] = {}
        self.errors: Set[str] = set()
        self.calls: List[str] = []

    async def probe(self, namespace: str, pod_name: str) -> bool:
        self.calls.append(pod_name)
        if pod_name in self.errors:
            raise PlatformUnavailableError("readiness_probe", "exec failed")
        return self.ready.get(pod_name, self.default)


class FakeResolver:
    """NetworkAttachmentResolver answering from a per-pod table."""

    def __init__(self):
        self.ips: Dict[str, List[str]] = {}
        self.errors: Set[str] = set()

    async def resolve(self, attachment: str, namespace: str, pod_name: str) -> List[str]:
        if pod_name in self.errors:
            raise PlatformUnavailableError("network_attachment_resolve", "API timeout")
        return list(self.ips.get(pod_name, []))


class FakeRaft:
    """RaftMemberClient with a fixed leader ordinal and an apply log."""

    def __init__(self, leader_ordinal: Optional[int] = 0):
        self.leader_ordinal = leader_ordinal
        self.applied: List[Tuple[str, RaftSettings]] = []
        self.fail_apply: Set[str] = set()
        self.role_calls: List[str] = []

    async def role(self, namespace: str, pod_name: str, db_type: str) -> RaftRole:
        self.role_calls.append(pod_name)
        ordinal = int(pod_name.rsplit("-", 1)[1])
        if self.leader_ordinal is not None and ordinal == self.leader_ordinal:
            return RaftRole.LEADER
        return RaftRole.FOLLOWER

    async def apply_settings(
        self, namespace: str, pod_name: str, db_type: str, raft_settings: RaftSettings
    ) -> None:
        if pod_name in self.fail_apply:
            raise PlatformUnavailableError("raft_apply_settings", "connection reset")
        self.applied.append((pod_name, raft_settings))

    @property
    def applied_pods(self) -> List[str]:
        return [pod for pod, _ in self.applied]


class FakeClusterRepository:
    """In-memory stand-in for ClusterRepository."""

    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.patches: List[Tuple[str, OVNDBClusterStatus]] = []

    def add(self, cluster: OVNDBCluster) -> None:
        self.objects[cluster.key] = to_object(cluster)

    def add_object(self, obj: Dict[str, Any]) -> None:
        meta = obj["metadata"]
        self.objects[f"{meta['namespace']}/{meta['name']}"] = obj

    async def list_objects(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            obj
            for obj in self.objects.values()
            if namespace is None or obj["metadata"]["namespace"] == namespace
        ]

    async def list_clusters(self, namespace: str) -> List[OVNDBCluster]:
        return [parse_cluster(obj) for obj in await self.list_objects(namespace)]

    async def get_cluster(self, namespace: str, name: str) -> OVNDBCluster:
        obj = self.objects.get(f"{namespace}/{name}")
        if obj is None:
            raise NotFoundError(namespace, name)
        return parse_cluster(obj)

    async def patch_status(self, cluster: OVNDBCluster, status: OVNDBClusterStatus) -> None:
        self.patches.append((cluster.key, status))
        obj = self.objects.get(cluster.key)
        if obj is not None:
            obj["status"] = status.to_k8s()


def make_cluster(
    spec: Optional[Dict[str, Any]] = None,
    name: str = "ovndbcluster-nb",
    namespace: str = NAMESPACE,
    generation: int = 1,
    status: Optional[OVNDBClusterStatus] = None,
) -> OVNDBCluster:
    if spec is None:
        spec = {"dbType": "NB", "replicas": 3, "storageRequest": "10G"}
    return OVNDBCluster(
        metadata=ObjectMeta(name=name, namespace=namespace, generation=generation),
        spec=spec,
        status=status or OVNDBClusterStatus(),
    )


def to_object(cluster: OVNDBCluster) -> Dict[str, Any]:
    """Custom object form of a cluster, as the API server returns it."""
    return {
        "apiVersion": "ovn.openstack.org/v1beta1",
        "kind": "OVNDBCluster",
        "metadata": cluster.metadata.model_dump(by_alias=True, mode="json"),
        "spec": dict(cluster.spec),
        "status": cluster.status.to_k8s(),
    }


def with_status(cluster: OVNDBCluster, status: OVNDBClusterStatus) -> OVNDBCluster:
    return cluster.model_copy(update={"status": status})


def with_spec(cluster: OVNDBCluster, **changes: Any) -> OVNDBCluster:
    spec = dict(cluster.spec)
    spec.update(changes)
    metadata = cluster.metadata.model_copy(update={"generation": cluster.metadata.generation + 1})
    return cluster.model_copy(update={"spec": spec, "metadata": metadata})


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    return settings


@pytest.fixture
def call_policy() -> CallPolicy:
    return CallPolicy(timeout=0.2, attempts=1, initial_delay=0, max_delay=0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def workload() -> FakeWorkload:
    return FakeWorkload()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def raft() -> FakeRaft:
    return FakeRaft()


@pytest.fixture
def reconciler(workload, probe, resolver, raft, call_policy, clock) -> OVNDBClusterReconciler:
    return OVNDBClusterReconciler(
        workload=workload,
        probe=probe,
        resolver=resolver,
        raft=raft,
        policy=call_policy,
        clock=clock,
        lock_manager=ClusterLockManager(),
        grace_seconds=120,
    )


@pytest.fixture
def cluster_repository() -> FakeClusterRepository:
    return FakeClusterRepository()


@pytest_asyncio.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, without running its lifespan."""
    from ovn_operator.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    for attribute in ("repository", "worker", "started"):
        if hasattr(app.state, attribute):
            delattr(app.state, attribute)
