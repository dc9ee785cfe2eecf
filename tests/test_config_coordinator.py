"""
Tests for leader-last RAFT timer rollout.
"""
from datetime import timedelta

import pytest

from ovn_operator.core.config_coordinator import ConfigChangeCoordinator, RolloutState
from ovn_operator.core.member_reconciler import MemberSetResult
from ovn_operator.core.validator import validate_spec
from ovn_operator.exceptions import PlatformUnavailableError
from ovn_operator.models.ovndbcluster import OVNDBClusterStatus, SubResource
from ovn_operator.models.workload import Member, RaftRole
from ovn_operator.utils.hashing import fingerprint
from tests.conftest import FakeClock, FakeRaft

NB = "ovndbcluster-nb"
NAMESPACE = "openstack"


def spec(replicas=3, **timers):
    raw = {"dbType": "NB", "replicas": replicas, "storageRequest": "10G"}
    raw.update(timers)
    return validate_spec(raw)


def member_set(*ready_flags):
    members = [
        Member(ordinal=i, pod_name=f"ovndbcluster-nb-{i}", ready=ready)
        for i, ready in enumerate(ready_flags)
    ]
    return MemberSetResult(desired=len(members), members=members)


@pytest.mark.asyncio
async def test_matching_fingerprint_is_in_sync(raft, call_policy):
    coordinator = ConfigChangeCoordinator(raft, call_policy)
    desired = spec()
    status = OVNDBClusterStatus(hash={SubResource.CONFIG: fingerprint(desired.raft_settings())})

    result = await coordinator.reconcile(NB, NAMESPACE, desired, member_set(True, True, True), status)

    assert result.state == RolloutState.IN_SYNC
    assert result.settled
    assert raft.role_calls == []
    assert raft.applied == []


@pytest.mark.asyncio
async def test_scaled_to_zero_is_skipped(raft, call_policy):
    coordinator = ConfigChangeCoordinator(raft, call_policy)
    status = OVNDBClusterStatus()

    result = await coordinator.reconcile(
        NB, NAMESPACE, spec(replicas=0), MemberSetResult(desired=0, members=[]), status
    )

    assert result.state == RolloutState.SKIPPED
    assert SubResource.CONFIG not in status.hash


@pytest.mark.asyncio
async def test_change_is_queued_until_all_members_ready(raft, call_policy):
    coordinator = ConfigChangeCoordinator(raft, call_policy)
    status = OVNDBClusterStatus()

    result = await coordinator.reconcile(NB, NAMESPACE, spec(), member_set(True, False, True), status)

    assert result.state == RolloutState.QUEUED
    assert not result.settled
    assert raft.applied == []
    assert SubResource.CONFIG not in status.hash


@pytest.mark.asyncio
async def test_followers_first_leader_last(call_policy):
    raft = FakeRaft(leader_ordinal=1)
    clock = FakeClock(step=timedelta(seconds=1))
    coordinator = ConfigChangeCoordinator(raft, call_policy, clock=clock)
    desired = spec(electionTimer=5000)
    status = OVNDBClusterStatus()

    result = await coordinator.reconcile(NB, NAMESPACE, desired, member_set(True, True, True), status)

    assert result.state == RolloutState.APPLIED
    assert raft.applied_pods == ["ovndbcluster-nb-0", "ovndbcluster-nb-2", "ovndbcluster-nb-1"]
    assert [step.role for step in result.steps] == [
        RaftRole.FOLLOWER,
        RaftRole.FOLLOWER,
        RaftRole.LEADER,
    ]
    applied_at = [step.applied_at for step in result.steps]
    assert applied_at == sorted(applied_at)
    assert len(set(applied_at)) == 3
    assert all(settings.election_timer == 5000 for _, settings in raft.applied)
    assert status.hash[SubResource.CONFIG] == fingerprint(desired.raft_settings())


@pytest.mark.asyncio
async def test_no_leader_defers_rollout(call_policy):
    raft = FakeRaft(leader_ordinal=None)
    coordinator = ConfigChangeCoordinator(raft, call_policy)
    status = OVNDBClusterStatus()

    result = await coordinator.reconcile(NB, NAMESPACE, spec(), member_set(True, True, True), status)

    assert result.state == RolloutState.NO_LEADER
    assert raft.applied == []
    assert SubResource.CONFIG not in status.hash


@pytest.mark.asyncio
async def test_interrupted_rollout_keeps_old_fingerprint(call_policy):
    raft = FakeRaft(leader_ordinal=0)
    raft.fail_apply.add("ovndbcluster-nb-2")
    coordinator = ConfigChangeCoordinator(raft, call_policy)
    status = OVNDBClusterStatus()

    result = await coordinator.reconcile(NB, NAMESPACE, spec(), member_set(True, True, True), status)

    assert result.state == RolloutState.FAILED
    assert isinstance(result.error, PlatformUnavailableError)
    assert [step.pod_name for step in result.steps] == ["ovndbcluster-nb-1"]
    assert raft.applied_pods == ["ovndbcluster-nb-1"]
    assert SubResource.CONFIG not in status.hash

    raft.fail_apply.clear()
    retried = await coordinator.reconcile(NB, NAMESPACE, spec(), member_set(True, True, True), status)

    assert retried.state == RolloutState.APPLIED
    assert raft.applied_pods[-1] == "ovndbcluster-nb-0"
    assert SubResource.CONFIG in status.hash


@pytest.mark.asyncio
async def test_role_query_failure_fails_rollout(call_policy):
    class UnreachableRaft(FakeRaft):
        async def role(self, namespace, pod_name, db_type):
            raise PlatformUnavailableError("raft_role", "exec stream closed")

    raft = UnreachableRaft()
    coordinator = ConfigChangeCoordinator(raft, call_policy)

    result = await coordinator.reconcile(
        NB, NAMESPACE, spec(), member_set(True, True, True), OVNDBClusterStatus()
    )

    assert result.state == RolloutState.FAILED
    assert result.error is not None
    assert raft.applied == []
