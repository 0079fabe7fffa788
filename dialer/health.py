"""
Liveness, readiness and Prometheus endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.orm import Session

from dialer.clock import utcnow
from dialer.config import SERVICE_NAME, SERVICE_VERSION, config
from dialer.database import get_db
from dialer.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health & Monitoring"])


# GET /health
# Gets: nothing
# Returns: {status, timestamp}
# Example:
#   curl http://localhost:8000/health
@router.get("/health")
async def health_check():
    """Liveness probe: 200 while the process is serving requests."""
    return {"status": "ok", "timestamp": utcnow().isoformat() + "Z"}


# GET /health/ready
# Gets: nothing
# Returns: {database, provider, ready}; 503 when the database is unreachable
# Example:
#   curl http://localhost:8000/health/ready
@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe.

    Only the database gates readiness. A missing provider key is reported but
    does not take the webhook out of rotation, outcome events still need to land.
    """
    checks = {
        "database": False,
        "provider": config.has_provider_config() or "not_configured",
    }
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_unreachable", error=str(e))

    checks["ready"] = checks["database"]
    return JSONResponse(checks, status_code=200 if checks["ready"] else 503)


# GET /health/info
# Gets: nothing
# Returns: service name, version and the scheduling knobs in effect
# Example:
#   curl http://localhost:8000/health/info
@router.get("/health/info")
async def system_info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "configuration": {
            "provider_configured": config.has_provider_config(),
            "schedule_interval_minutes": config.SCHEDULE_INTERVAL_MINUTES,
            "batch_size": config.BATCH_SIZE,
            "hard_call_cap": config.HARD_CALL_CAP,
            "distribution_window_minutes": config.DISTRIBUTION_WINDOW_MINUTES,
            "soft_deadline_seconds": config.RUN_SOFT_DEADLINE_SECONDS,
            "debug_mode": config.DEBUG,
        },
    }


# GET /metrics
# Gets: nothing
# Returns: Prometheus exposition text
# Example:
#   curl http://localhost:8000/metrics
@router.get("/metrics")
async def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
