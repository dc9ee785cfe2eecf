"""
OVNDBCluster API endpoints.
Read access to cluster status and endpoints, plus reconcile requests.

URL Pattern: /api/v1/namespaces/{namespace}/ovndbclusters
"""
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request, status

from ovn_operator.config.logging import get_logger
from ovn_operator.exceptions import OVNOperatorException
from ovn_operator.models.api import (
    ClusterListResponse,
    ClusterResponse,
    EndpointsResponse,
    ReconcileTriggerResponse,
)
from ovn_operator.services.cluster_repository import ClusterRepository
from ovn_operator.workers.reconciliation_worker import ReconciliationWorker

router = APIRouter()
logger = get_logger(__name__)


def get_cluster_repository(request: Request) -> ClusterRepository:
    """
    Repository created at startup.

    Raises:
        OVNOperatorException: 503 while the Kubernetes client is not loaded
    """
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise OVNOperatorException(
            "Kubernetes client not initialized",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return repository


def get_worker(request: Request) -> Optional[ReconciliationWorker]:
    return getattr(request.app.state, "worker", None)


@router.get("", response_model=ClusterListResponse)
async def list_clusters(
    namespace: str = Path(..., description="Namespace"),
    repository: ClusterRepository = Depends(get_cluster_repository),
):
    """List OVNDBClusters in a namespace with their status summary."""
    clusters = await repository.list_clusters(namespace)
    items = [ClusterResponse.from_cluster(c) for c in clusters]
    return ClusterListResponse(clusters=items, total=len(items))


@router.get("/{name}", response_model=ClusterResponse)
async def get_cluster(
    namespace: str = Path(..., description="Namespace"),
    name: str = Path(..., description="Cluster name"),
    repository: ClusterRepository = Depends(get_cluster_repository),
):
    """Get the status summary of one OVNDBCluster."""
    cluster = await repository.get_cluster(namespace, name)
    return ClusterResponse.from_cluster(cluster)


@router.get("/{name}/endpoints", response_model=EndpointsResponse)
async def get_cluster_endpoints(
    namespace: str = Path(..., description="Namespace"),
    name: str = Path(..., description="Cluster name"),
    repository: ClusterRepository = Depends(get_cluster_repository),
):
    """
    Get the internal and external DB endpoints.

    Returns 503 while either endpoint is not published yet; clients should
    retry later.
    """
    cluster = await repository.get_cluster(namespace, name)
    return EndpointsResponse(
        name=cluster.metadata.name,
        namespace=cluster.metadata.namespace,
        db_type=cluster.db_type,
        internal=cluster.get_internal_endpoint(),
        external=cluster.get_external_endpoint(),
    )


@router.post(
    "/{name}/reconcile",
    response_model=ReconcileTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_reconcile(
    namespace: str = Path(..., description="Namespace"),
    name: str = Path(..., description="Cluster name"),
    repository: ClusterRepository = Depends(get_cluster_repository),
    worker: Optional[ReconciliationWorker] = Depends(get_worker),
):
    """
    Notify the operator that a cluster changed.

    Wakes the reconciliation worker; the pass runs asynchronously.
    """
    cluster = await repository.get_cluster(namespace, name)

    if worker is None or not worker.running:
        logger.info("reconcile_trigger_without_active_worker", cluster=cluster.key)
        return ReconcileTriggerResponse(
            cluster=cluster.key,
            triggered=False,
            message="Reconciliation worker is not active on this instance",
        )

    worker.trigger(cluster.key)
    return ReconcileTriggerResponse(
        cluster=cluster.key,
        triggered=True,
        message="Reconciliation scheduled",
    )
