"""
Core reconciliation for OVN DB clusters.

This package provides the pieces of one reconciliation pass:
- Spec validation and normalization
- Member set convergence with RAFT quorum protection
- Endpoint resolution
- Leader-last rollout of RAFT/OVSDB timer changes
- Status aggregation into conditions
- Per-cluster locking

Import directly from submodules:
    from ovn_operator.core.reconciler import OVNDBClusterReconciler
    from ovn_operator.core.validator import validate_spec
    from ovn_operator.core.lock_manager import ClusterLockManager
"""
