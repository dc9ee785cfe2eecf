"""
RAFT member control through pod exec.

Role discovery runs `ovs-appctl cluster/status` against the ovsdb-server
control socket; timer changes are applied by the settings script shipped in
the DB image.
"""
import re
from typing import List, Optional, Tuple

import aiohttp
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.stream import WsApiClient

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings
from ovn_operator.exceptions import PlatformUnavailableError
from ovn_operator.models.ovndbcluster import DB_NAMES, DBType
from ovn_operator.models.workload import RaftRole, RaftSettings
from ovn_operator.services.kubernetes_client import KubernetesClientSet
from ovn_operator.services.statefulset_service import CONTAINER_NAME
from ovn_operator.utils.retry import translate_k8s_error

logger = get_logger(__name__)

ROLE_PATTERN = re.compile(r"^\s*Role:\s*(?P<role>\w+)", re.MULTILINE)

# Appended by the exec wrapper; the exec API does not report exit codes
EXIT_STATUS_MARKER = "ovn-operator-exit-status="
EXIT_STATUS_PATTERN = re.compile(rf"^{EXIT_STATUS_MARKER}(?P<code>\d+)[ \t]*\r?\n?", re.MULTILINE)


def control_socket(db_type: DBType) -> str:
    return f"/tmp/ovn{db_type.value.lower()}_db.ctl"


def cluster_status_command(db_type: DBType) -> List[str]:
    return ["ovs-appctl", "-t", control_socket(db_type), "cluster/status", DB_NAMES[db_type]]


def settings_command(script_path: str, raft_settings: RaftSettings) -> List[str]:
    return [
        script_path,
        "--election-timer",
        str(raft_settings.election_timer),
        "--inactivity-probe",
        str(raft_settings.inactivity_probe),
        "--probe-interval-to-active",
        str(raft_settings.probe_interval_to_active),
    ]


def with_exit_status(command: List[str]) -> List[str]:
    """Wrap a command so its exit status is printed after its output."""
    return ["/bin/sh", "-c", f'"$@"; echo "{EXIT_STATUS_MARKER}$?"', "sh", *command]


def split_exit_status(output: str) -> Tuple[Optional[int], str]:
    """
    Split wrapped exec output into (exit status, command output).

    The status is None when the marker is missing, e.g. because the shell
    itself could not start.
    """
    text = output or ""
    matches = list(EXIT_STATUS_PATTERN.finditer(text))
    if not matches:
        return None, text
    last = matches[-1]
    return int(last.group("code")), (text[: last.start()] + text[last.end() :]).strip("\n")


def parse_role(output: str) -> RaftRole:
    """RAFT role from `cluster/status` output."""
    match = ROLE_PATTERN.search(output or "")
    if not match:
        return RaftRole.UNKNOWN
    try:
        return RaftRole(match.group("role").lower())
    except ValueError:
        return RaftRole.UNKNOWN


class OVSDBMemberClient:
    """RaftMemberClient that execs into the DB container."""

    def __init__(self, client_set: KubernetesClientSet, script_path: Optional[str] = None):
        self.client_set = client_set
        self.script_path = script_path or settings.settings_script_path

    async def role(self, namespace: str, pod_name: str, db_type: str) -> RaftRole:
        output = await self._exec(
            "raft_role_query", namespace, pod_name, cluster_status_command(DBType(db_type))
        )
        role = parse_role(output)
        logger.debug("raft_role_queried", namespace=namespace, pod=pod_name, role=role.value)
        return role

    async def apply_settings(
        self, namespace: str, pod_name: str, db_type: str, raft_settings: RaftSettings
    ) -> None:
        """
        Raises:
            PlatformUnavailableError: If the exec failed or the script exited non-zero
        """
        output = await self._exec(
            "raft_apply_settings",
            namespace,
            pod_name,
            settings_command(self.script_path, raft_settings),
        )
        logger.info(
            "raft_settings_applied",
            namespace=namespace,
            pod=pod_name,
            db_type=db_type,
            output=output.strip(),
        )

    async def _exec(self, operation: str, namespace: str, pod_name: str, command: List[str]) -> str:
        exit_status, output = split_exit_status(
            await self._stream(namespace, pod_name, with_exit_status(command))
        )
        if exit_status == 0:
            return output

        logger.warning(
            "pod_exec_command_failed",
            operation=operation,
            namespace=namespace,
            pod=pod_name,
            command=command[0],
            exit_status=exit_status,
            output=output.strip()[-500:],
        )
        reason = (
            f"{command[0]} exited with status {exit_status}"
            if exit_status is not None
            else f"{command[0]} reported no exit status"
        )
        raise PlatformUnavailableError(
            operation,
            reason,
            details={"operation": operation, "pod": pod_name, "exit_status": exit_status},
        )

    async def _stream(self, namespace: str, pod_name: str, command: List[str]) -> str:
        try:
            async with WsApiClient(configuration=self.client_set.configuration) as ws_api:
                core_api = client.CoreV1Api(api_client=ws_api)
                return await core_api.connect_get_namespaced_pod_exec(
                    pod_name,
                    namespace,
                    command=command,
                    container=CONTAINER_NAME,
                    stderr=True,
                    stdin=False,
                    stdout=True,
                    tty=False,
                )
        except (ApiException, aiohttp.ClientError) as e:
            raise translate_k8s_error("pod_exec", e) from e
