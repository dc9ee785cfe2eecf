"""
Main FastAPI application entry point.

One process runs both the reconciliation worker and a small HTTP API with
health probes, Prometheus metrics and read access to cluster status.
"""
import asyncio
import socket
import sys
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, List, Optional

import sentry_sdk
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from ovn_operator.api.v1 import clusters, health
from ovn_operator.config.logging import configure_logging, get_logger
from ovn_operator.config.redis import RedisConnection
from ovn_operator.config.settings import settings
from ovn_operator.core.lock_manager import ClusterLockManager
from ovn_operator.core.reconciler import OVNDBClusterReconciler
from ovn_operator.exceptions import OVNOperatorException
from ovn_operator.services.cluster_repository import ClusterRepository
from ovn_operator.services.kubernetes_client import KubernetesClientSet, load_client_set
from ovn_operator.services.network_attachment_service import NetworkStatusResolver
from ovn_operator.services.ovsdb_member_service import OVSDBMemberClient
from ovn_operator.services.pod_readiness_service import PodReadinessProbe
from ovn_operator.services.statefulset_service import StatefulSetWorkload
from ovn_operator.workers.leader_election import LeaderElection, run_with_leadership
from ovn_operator.workers.reconciliation_worker import ReconciliationWorker

configure_logging()
logger = get_logger(__name__)

if settings.sentry_dsn and settings.is_production:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
        release=settings.app_version,
    )

# Paths polled by the kubelet and Prometheus; not worth a log line each
QUIET_PATHS = ("/health", "/metrics")


def build_reconciler(client_set: KubernetesClientSet) -> OVNDBClusterReconciler:
    """Wire the Kubernetes-backed collaborators into a reconciler."""
    return OVNDBClusterReconciler(
        workload=StatefulSetWorkload(client_set),
        probe=PodReadinessProbe(client_set),
        resolver=NetworkStatusResolver(client_set),
        raft=OVSDBMemberClient(client_set),
        lock_manager=ClusterLockManager(),
    )


async def _start_reconciler(worker: ReconciliationWorker) -> asyncio.Task:
    """Run the worker directly, or behind the Redis lease when enabled."""
    if not settings.leader_election_enabled:
        return asyncio.create_task(worker.start())

    await RedisConnection.connect()
    instance_id = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
    election = LeaderElection(instance_id, lease_duration=settings.leader_lease_seconds)
    logger.info("leader_election_enabled", instance_id=instance_id)
    return asyncio.create_task(run_with_leadership(election, worker))


async def _stop_background(worker: Optional[ReconciliationWorker], tasks: List[asyncio.Task]) -> None:
    if worker is not None and worker.running:
        await worker.stop()

    for task in tasks:
        task.cancel()
    if not tasks:
        return
    try:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=30.0)
        logger.info("background_tasks_stopped", count=len(tasks))
    except asyncio.TimeoutError:
        logger.warning("background_tasks_shutdown_timeout", count=len(tasks))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Startup loads the Kubernetes client and starts the reconciliation worker;
    shutdown stops the worker, then closes Redis and the API client.
    """
    logger.info(
        "operator_starting",
        version=settings.app_version,
        environment=settings.environment,
        watch_namespace=settings.watch_namespace or "all",
    )

    tasks: List[asyncio.Task] = []
    client_set: Optional[KubernetesClientSet] = None
    worker: Optional[ReconciliationWorker] = None
    app.state.started = False

    try:
        client_set = await load_client_set()
        repository = ClusterRepository(client_set)
        worker = ReconciliationWorker(repository, build_reconciler(client_set))
        app.state.repository = repository
        app.state.worker = worker

        tasks.append(await _start_reconciler(worker))
        app.state.started = True
        logger.info("operator_started", leader_election=settings.leader_election_enabled)
    except Exception as e:
        logger.error("operator_startup_failed", error=str(e), exc_info=True)
        await _stop_background(worker, tasks)
        if client_set is not None:
            await client_set.close()
        raise

    yield

    logger.info("operator_shutting_down")
    await _stop_background(worker, tasks)
    if settings.leader_election_enabled:
        await RedisConnection.close()
    if client_set is not None:
        await client_set.close()
    logger.info("operator_shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Lifecycle operator for clustered OVN Northbound/Southbound databases",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)


def _error_response(status_code: int, message: str, details: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "details": details, "status_code": status_code}},
    )


def _sanitize_errors(errors):
    """Make pydantic error entries JSON serializable."""
    sanitized = []
    for error in errors:
        entry = {}
        for key, value in error.items():
            if key == "ctx" and isinstance(value, dict):
                entry[key] = {k: str(v) for k, v in value.items()}
            elif isinstance(value, (str, int, float, bool, type(None))):
                entry[key] = value
            elif isinstance(value, (list, tuple)):
                entry[key] = list(value)
            else:
                entry[key] = str(value)
        sanitized.append(entry)
    return sanitized


@app.exception_handler(OVNOperatorException)
async def operator_exception_handler(request: Request, exc: OVNOperatorException) -> JSONResponse:
    """Map operator errors onto their HTTP status."""
    # 503s are expected while endpoints are pending or the client is loading
    expected = exc.status_code < 500 or exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    log = logger.warning if expected else logger.error
    log(
        "operator_exception",
        path=request.url.path,
        method=request.method,
        error=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_response(exc.status_code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    errors = _sanitize_errors(exc.errors())
    logger.warning("validation_error", path=request.url.path, method=request.method, errors=errors)
    return _error_response(status.HTTP_422_UNPROCESSABLE_CONTENT, "Validation error", errors)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        {} if settings.is_production else {"error": str(exc)},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log API requests under a request id, echoed back in X-Request-ID."""
    if request.url.path.startswith(QUIET_PATHS):
        return await call_next(request)

    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    with structlog.contextvars.bound_contextvars(request_id=request_id):
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )
        response = await call_next(request)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )

    response.headers["X-Request-ID"] = request_id
    return response


if settings.prometheus_enabled:
    Instrumentator(excluded_handlers=["/health.*", "/metrics"]).instrument(app).expose(
        app, endpoint="/metrics"
    )

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(
    clusters.router,
    prefix="/api/v1/namespaces/{namespace}/ovndbclusters",
    tags=["OVNDBClusters"],
)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "status": "running",
        "docs": "/docs" if not settings.is_production else "disabled",
    }


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(
            "ovn_operator.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except (KeyboardInterrupt, SystemExit):
        logger.info("operator_stopped")
    finally:
        sys.exit(0)
