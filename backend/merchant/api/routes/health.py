"""Health & Readiness Probes — liveness and readiness endpoints.

Invariants:
    - GET /health/ always returns 200 if the process is up (liveness)
    - GET /health/ready returns 503 unless the database answers and the
      trading session is connected (readiness)
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from merchant.infrastructure import database

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check():
    """Basic liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "service": "steam-merchant",
        "version": "1.0.0",
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness probe — database connectivity and trading session."""
    db_ok = await database.db_manager.health_check() if database.db_manager else False
    sessions = getattr(request.app.state, "sessions", None)
    session_ok = bool(sessions and sessions.is_connected)

    checks = {
        "database": "healthy" if db_ok else "unavailable",
        "trading_session": "connected" if session_ok else "disconnected",
    }
    if not (db_ok and session_ok):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
