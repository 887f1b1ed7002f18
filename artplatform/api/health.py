"""Health check endpoints"""
import time
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from artplatform import __version__
from artplatform.config import settings
from artplatform.database import get_db

router = APIRouter(prefix="/health", tags=["health"])

# Track startup time
STARTUP_TIME = time.time()


@router.get("")
def health_check():
    """
    Basic health check endpoint

    Returns 200 if service is running
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/ready")
def readiness_check(request: Request, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Readiness check - verifies all dependencies are available

    Checks:
    - Database connectivity and latency
    - Redis connectivity (when Redis is the revocation backend)

    Returns 200 if ready to serve traffic, 503 if not ready
    """
    checks: Dict[str, Any] = {
        "database": False,
        "database_latency_ms": None,
        "redis": "disabled",
    }

    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        checks["database"] = True
        checks["database_latency_ms"] = round((time.time() - start) * 1000, 2)
    except Exception as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "checks": checks, "message": f"Database check failed: {str(e)}"},
        )

    store = getattr(request.app.state, "revocations", None)
    ping = getattr(store, "ping", None)
    if ping is not None:
        try:
            checks["redis"] = bool(ping())
        except Exception as e:
            checks["redis"] = False
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "checks": checks, "message": f"Redis check failed: {str(e)}"},
            )

    return {
        "status": "ready",
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/live")
def liveness_check():
    """
    Liveness check - verifies service is alive

    Returns 200 if process is alive
    """
    return {
        "status": "alive",
        "uptime_seconds": round(time.time() - STARTUP_TIME, 2),
        "timestamp": datetime.utcnow().isoformat()
    }
