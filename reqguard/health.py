"""Health and readiness endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


def _pipeline_ready(request: Request) -> bool:
    return getattr(request.app.state, "pipeline", None) is not None


@router.get("/health")
async def health(request: Request):
    """Health check: pipeline status and in-memory store sizes."""
    ready = _pipeline_ready(request)
    rate_store = getattr(request.app.state, "rate_store", None)
    csrf_store = getattr(request.app.state, "csrf_store", None)
    return {
        "status": "healthy" if ready else "degraded",
        "pipeline": "up" if ready else "down",
        "rate_limit_clients": len(rate_store) if rate_store is not None else 0,
        "csrf_sessions": len(csrf_store) if csrf_store is not None else 0,
    }


@router.get("/health/live")
async def live():
    """Liveness check: the process is serving requests."""
    return {"status": "alive"}


@router.get("/health/ready")
async def ready(request: Request):
    """Readiness check: returns 200 only once the security pipeline is built."""
    if _pipeline_ready(request):
        return {"status": "ready"}
    return JSONResponse(status_code=503, content={"status": "not_ready", "pipeline": "down"})
