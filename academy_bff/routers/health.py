"""
Health Check Endpoints

- /health       - Liveness check (is process running)
- /health/ready - Readiness check (database + booking poller)
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db

router = APIRouter(prefix="/health", tags=["Health"])


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": db.bind.url.get_backend_name()
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


def get_poller_health(request: Request) -> dict:
    if not settings.polling_enabled:
        return {"status": "disabled"}

    engine = getattr(request.app.state, "engine", None)
    if engine is None or not engine.is_running:
        return {"status": "down"}

    return {
        "status": "up",
        "cycles": engine.poller.cycles,
        "last_cycle": engine.poller.last_cycle_status,
        "recent_changes": len(engine.recent_changes),
    }


@router.get("")
@router.get("/")
async def liveness_check():
    """
    Liveness probe - is the process running?
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
@router.get("/ready/")
async def readiness_check(request: Request, db: Session = Depends(get_db)):
    """
    Readiness probe - is the service ready to accept traffic?
    A stopped poller is reported but does not fail readiness: webhooks
    are still served.
    """
    db_health = get_db_health(db)
    components = {
        "database": db_health,
        "booking_poller": get_poller_health(request),
    }

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "components": components,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return JSONResponse(
        status_code=503,
        content={
            "status": "not_ready",
            "reason": "database_unavailable",
            "components": components,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )
