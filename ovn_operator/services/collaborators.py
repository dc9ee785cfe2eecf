"""
Boundary interfaces to the orchestration platform.

The reconciliation core only talks to these protocols. Kubernetes-backed
implementations live next to this module; tests use in-memory fakes.
"""
from typing import List, Protocol

from ovn_operator.models.workload import MemberStatus, PodTemplate, RaftRole, RaftSettings


class WorkloadClient(Protocol):
    """Creates, shapes and shrinks the ordinally-addressed member set."""

    async def get(self, name: str, namespace: str) -> List[MemberStatus]:
        """Current members, one entry per live ordinal."""
        ...

    async def ensure(
        self, name: str, namespace: str, replica_count: int, template: PodTemplate
    ) -> List[MemberStatus]:
        """Make ordinals [0, replica_count) exist with the given template."""
        ...

    async def delete(self, name: str, namespace: str, ordinal: int) -> None:
        """Remove the member with the highest ordinal."""
        ...


class ReadinessProbe(Protocol):
    async def probe(self, namespace: str, pod_name: str) -> bool:
        ...


class NetworkAttachmentResolver(Protocol):
    async def resolve(self, attachment: str, namespace: str, pod_name: str) -> List[str]:
        """
        IPs of the pod on the attachment network.

        An empty list means "not resolvable yet"; a transient failure raises
        PlatformUnavailableError.
        """
        ...


class RaftMemberClient(Protocol):
    """Talks to the ovsdb-server process inside a member."""

    async def role(self, namespace: str, pod_name: str, db_type: str) -> RaftRole:
        ...

    async def apply_settings(
        self, namespace: str, pod_name: str, db_type: str, raft_settings: RaftSettings
    ) -> None:
        ...
