from fastapi import FastAPI
from starlette.requests import Request
from contextlib import asynccontextmanager
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException
from fastapi.responses import JSONResponse
import logging
import traceback

from accrual_engine.api.jobs_routes import router as jobs_router
from accrual_engine.core import settings
from accrual_engine.core.logging_config import setup_logging
from accrual_engine.core.run_lock import RunLock
from accrual_engine.database.connection import init_db
from accrual_engine.services.job_queue_service import build_job_queue_service
from accrual_engine.services.loan_repository import loan_repository
from accrual_engine.services.notification_service import notification_service
from accrual_engine.services.recovery_assignment_service import recovery_assignment_service
from accrual_engine.services.scheduler import SchedulerRegistry
from accrual_engine.workers.jobs import register_jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    await init_db()

    run_lock = RunLock(settings.REDIS_URL, ttl_seconds=settings.RUN_LOCK_TTL_SECONDS)
    scheduler = SchedulerRegistry(timezone=settings.SCHEDULER_TIMEZONE, run_lock=run_lock)
    queue_service = build_job_queue_service(notification_service)
    register_jobs(scheduler, loan_repository, recovery_assignment_service, queue_service)
    await scheduler.start()

    app.state.scheduler = scheduler
    app.state.job_queue = queue_service
    try:
        yield
    finally:
        await scheduler.stop()
        await run_lock.close()

app = FastAPI(
    title="Loan Accrual & Status Engine",
    description="Interest/penalty accrual, overdue status transitions and notification queue",
    version="1.0.0",
    lifespan=lifespan
)


logger = logging.getLogger("server_exception_handler")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    body = {
        "error": {
            "code": "http_error",
            "message": str(exc.detail) if exc.detail else exc.status_code,
            "status_code": exc.status_code
        }
    }
    logger.warning(f"HTTPException handled: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = {
        "error": {
            "code": "validation_error",
            "message": "Request validation failed",
            "details": exc.errors()
        }
    }
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exc()
    logger.error(f"Unhandled exception: {str(exc)}\n{tb}")
    body = {
        "error": {
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        }
    }
    return JSONResponse(status_code=500, content=body)


app.include_router(jobs_router)


@app.get("/health")
async def health_check():
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "scheduler_running": bool(scheduler and scheduler.is_running),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
