"""
Endpoint resolution for an OVN DB cluster.

Publishes, every pass:
- raftAddress: per-member RAFT addresses, used by members to reach each other
- internalDbAddress: the service address, stable across leader elections
- dbAddress: addresses of the live members on the network attachment when
  one is configured, otherwise the internal address; like internalDbAddress it
  is first published once a member is ready
- networkAttachments: member -> IPs on the attachment network

Brief probe or resolver failures never blank an address that was already
published; the last-known-good value is kept until membership changes.
"""
import asyncio
import ipaddress
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ovn_operator.config.logging import get_logger
from ovn_operator.exceptions import PlatformUnavailableError
from ovn_operator.models.ovndbcluster import (
    DB_PORTS,
    RAFT_PORTS,
    OVNDBClusterSpec,
    OVNDBClusterStatus,
    workload_name,
)
from ovn_operator.models.workload import Member
from ovn_operator.services.collaborators import NetworkAttachmentResolver
from ovn_operator.utils.retry import CallPolicy, call_platform

logger = get_logger(__name__)


def tcp_address(host: str, port: int) -> str:
    """OVSDB remote string for a host, bracketing IPv6 literals."""
    try:
        if isinstance(ipaddress.ip_address(host), ipaddress.IPv6Address):
            return f"tcp:[{host}]:{port}"
    except ValueError:
        pass
    return f"tcp:{host}:{port}"


@dataclass
class EndpointResult:
    """Outcome of the endpoint step of a pass."""

    resolved: bool
    unresolved_members: List[str] = field(default_factory=list)
    transient_error: Optional[PlatformUnavailableError] = None


class EndpointResolver:
    """
    Maps live members to the addresses published in status.
    """

    def __init__(self, resolver: NetworkAttachmentResolver, policy: Optional[CallPolicy] = None):
        self.resolver = resolver
        self.policy = policy or CallPolicy.from_settings()

    async def resolve(
        self,
        name: str,
        namespace: str,
        spec: OVNDBClusterSpec,
        members: List[Member],
        status: OVNDBClusterStatus,
    ) -> EndpointResult:
        """Update the address fields of status from the current members."""
        db_type = spec.db_type
        service = workload_name(name)
        port = DB_PORTS[db_type]
        live = [m for m in members if not m.terminating]
        ready = [m for m in live if m.ready]

        status.raft_address = ",".join(
            f"tcp:{m.pod_name}.{service}.{namespace}.svc:{RAFT_PORTS[db_type]}" for m in live
        )

        if ready:
            status.internal_db_address = f"tcp:{service}.{namespace}.svc:{port}"
        elif not live:
            status.internal_db_address = ""

        if not spec.network_attachment:
            status.network_attachments = {}
            status.db_address = status.internal_db_address
            return EndpointResult(resolved=status.internal_db_address != "")

        ips_by_pod, unresolved, transient_error = await self._resolve_attachment(
            spec.network_attachment, namespace, live, status
        )
        status.network_attachments = {pod: ips for pod, ips in ips_by_pod.items() if ips}

        # Every live member is published, so a readiness blip does not change it
        addresses = [tcp_address(ip, port) for m in live for ip in ips_by_pod.get(m.pod_name, [])]
        if not live:
            status.db_address = ""
        elif ready and (addresses or transient_error is None):
            status.db_address = ",".join(addresses)

        resolved = status.internal_db_address != "" and status.db_address != ""
        if not resolved:
            logger.info(
                "external_endpoint_unresolved",
                namespace=namespace,
                db_type=db_type.value,
                network_attachment=spec.network_attachment,
                unresolved_members=unresolved,
            )
        return EndpointResult(
            resolved=resolved,
            unresolved_members=unresolved,
            transient_error=transient_error,
        )

    async def _resolve_attachment(
        self,
        attachment: str,
        namespace: str,
        live: List[Member],
        status: OVNDBClusterStatus,
    ) -> Tuple[Dict[str, List[str]], List[str], Optional[PlatformUnavailableError]]:
        outcomes = await asyncio.gather(
            *(self._resolve_member(attachment, namespace, m) for m in live)
        )

        ips_by_pod: Dict[str, List[str]] = {}
        unresolved: List[str] = []
        transient_error: Optional[PlatformUnavailableError] = None

        for member, (ips, error) in zip(live, outcomes):
            if error is not None:
                transient_error = error
                ips = status.network_attachments.get(member.pod_name, [])
            member.attachment_ips = list(ips)
            ips_by_pod[member.pod_name] = list(ips)
            if not ips:
                unresolved.append(member.pod_name)

        return ips_by_pod, unresolved, transient_error

    async def _resolve_member(
        self, attachment: str, namespace: str, member: Member
    ) -> Tuple[List[str], Optional[PlatformUnavailableError]]:
        try:
            ips = await call_platform(
                "network_attachment_resolve",
                self.resolver.resolve,
                attachment,
                namespace,
                member.pod_name,
                policy=self.policy,
            )
            return list(ips), None
        except PlatformUnavailableError as e:
            logger.warning(
                "network_attachment_resolve_failed_keeping_last_known",
                namespace=namespace,
                pod=member.pod_name,
                network_attachment=attachment,
                error=e.message,
            )
            return [], e
