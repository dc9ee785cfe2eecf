"""
Health check endpoints for monitoring and orchestration.
Provides liveness, readiness, and startup probes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ovn_operator.config.redis import RedisConnection
from ovn_operator.config.settings import settings

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": _now(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the operator should be restarted.
    """
    return {"status": "alive", "timestamp": _now()}


@router.get("/ready")
async def readiness(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the Kubernetes client is loaded and, with leader election,
    Redis answers.
    """
    kubernetes_ready = getattr(request.app.state, "repository", None) is not None
    checks = {"kubernetes": "healthy" if kubernetes_ready else "unhealthy"}
    healthy = kubernetes_ready

    if settings.leader_election_enabled:
        redis_healthy = await RedisConnection.ping()
        checks["redis"] = "healthy" if redis_healthy else "unhealthy"
        healthy = healthy and redis_healthy

    if not healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", **checks, "timestamp": _now()},
        )

    return {"status": "ready", **checks, "timestamp": _now()}


@router.get("/startup")
async def startup(request: Request):
    """
    Kubernetes startup probe.
    Indicates whether the operator has finished starting.
    """
    if not getattr(request.app.state, "started", False):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "timestamp": _now()},
        )

    worker = getattr(request.app.state, "worker", None)
    last_cycle = worker.last_cycle_at.isoformat() if worker and worker.last_cycle_at else None
    return {
        "status": "started",
        "reconciler": "running" if worker and worker.running else "standby",
        "last_cycle_at": last_cycle,
        "timestamp": _now(),
    }
