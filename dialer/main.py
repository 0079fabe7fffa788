"""
FastAPI application: the outcome webhook plus health and metrics.

Scheduling itself runs in Celery (see dialer.celery_tasks); this process only
receives provider callbacks.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dialer.config import SERVICE_VERSION, config
from dialer.database import init_db
from dialer.health import router as health_router
from dialer.logging_config import logger
from dialer.outcome.webhook import router as webhook_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_starting", version=SERVICE_VERSION, provider_configured=config.has_provider_config())
    init_db()
    logger.info("database_initialized")

    yield

    logger.info("application_shutting_down")


app = FastAPI(
    title="Dialer API",
    description="Outbound call campaign scheduling and outcome reconciliation",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(health_router)
app.include_router(webhook_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
