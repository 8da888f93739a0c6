"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.fw_common.database import engine
from src.fw_common.errors import AppError
from src.fw_common.logging_config import configure_logging
from src.fw_common.redis_client import close_redis, get_redis
from src.fw_common.response import error_response
from src.fw_dispute.api.router import admin_router as admin_dispute_router
from src.fw_dispute.api.router import router as dispute_router
from src.fw_gateway.middleware.request_log import RequestLogMiddleware
from src.fw_job.api.router import router as job_router
from src.fw_matching.api.router import router as dispatch_router
from src.fw_payment.api.router import router as payment_router
from src.fw_payment.api.webhooks import router as webhook_router
from src.fw_payment.infrastructure.selcom_client import close_gateway
from src.fw_scheduler.scheduler import get_task_scheduler
from src.fw_scheduler.tasks import register_all, schedule_recovery_sweep

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, start the task scheduler. Shutdown: reverse."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()
    register_all()
    scheduler = get_task_scheduler()
    schedule_recovery_sweep(scheduler)
    scheduler.start()
    logger.info("%s started: env=%s", settings.APP_NAME, settings.APP_ENV)
    yield
    # Shutdown
    scheduler.shutdown()
    await close_gateway()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, exc.error)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(job_router, prefix="/api/v1")
app.include_router(dispatch_router, prefix="/api/v1")
app.include_router(payment_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(dispute_router, prefix="/api/v1")
app.include_router(admin_dispute_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
