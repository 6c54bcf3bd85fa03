# Health/metrics endpoints
# routes/health.py
"""Health check and monitoring endpoints"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time
import psutil
import structlog

from models.responses import HealthStatus, ServiceStatus
from providers.registry import supported_providers
from utils.config import settings


router = APIRouter(tags=["monitoring"])
logger = structlog.get_logger()

START_TIME = time.time()


async def _check_store(request: Request) -> ServiceStatus:
    store = getattr(request.app.state, "store", None)
    if store is None:
        return ServiceStatus(status="unhealthy", error="store not initialized")

    start = time.time()
    try:
        reachable = await store.ping()
    except Exception as e:
        logger.warning("Store health check failed", error=str(e))
        return ServiceStatus(status="unhealthy", error=str(e))

    return ServiceStatus(
        status="healthy" if reachable else "unhealthy",
        latency_ms=round((time.time() - start) * 1000, 2)
    )


def _check_rate_limiter(request: Request) -> ServiceStatus:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return ServiceStatus(status="degraded", error="rate limiter not initialized")
    if limiter.redis_url and not limiter.is_redis_available:
        # In-memory fallback still enforces limits, per process
        return ServiceStatus(status="degraded", error="redis unavailable, using in-memory buckets")
    return ServiceStatus(status="healthy")


@router.get("/healthz", response_model=HealthStatus)
async def health_check(request: Request) -> HealthStatus:
    """Store reachability, limiter backend and host pressure"""

    warnings = []
    services = {
        "store": await _check_store(request),
        "rate_limiter": _check_rate_limiter(request),
    }

    recorder = getattr(request.app.state, "recorder", None)
    if recorder is not None:
        services["usage_ledger"] = ServiceStatus(status="healthy")
        if recorder.pending_writes > 100:
            warnings.append(f"{recorder.pending_writes} usage writes pending")

    if not settings.supabase_configured:
        warnings.append("Supabase not configured, using in-memory store")

    memory = psutil.virtual_memory()
    if memory.percent > 90:
        warnings.append(f"High memory usage: {memory.percent}%")

    if services["store"].status == "unhealthy":
        overall = "unhealthy"
    elif warnings or any(s.status != "healthy" for s in services.values()):
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthStatus(
        status=overall,
        version=settings.version,
        services=services,
        uptime_seconds=time.time() - START_TIME,
        providers=supported_providers(),
        warnings=warnings
    )


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Kubernetes readiness probe.
    Ready once the store answers.
    """

    status = await _check_store(request)
    if status.status != "healthy":
        return JSONResponse(status_code=503, content={"ready": False, "error": status.error})
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Kubernetes liveness probe"""
    return {"alive": True}
