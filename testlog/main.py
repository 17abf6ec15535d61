import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from testlog.api import maintenance, sync, tests
from testlog.config import get_settings
from testlog.constants.error_codes import get_error_spec
from testlog.exceptions import TestLogError
from testlog.models.database import engine, init_db
from testlog.schemas.envelope import ErrorInfo, ErrorResponse

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    init_db()
    yield
    # Shutdown
    engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


@app.exception_handler(TestLogError)
async def testlog_exception_handler(request: Request, exc: TestLogError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorResponse(error=exc.to_error_info())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    body = ErrorResponse(
        error=ErrorInfo(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
    )
    return JSONResponse(status_code=500, content=body.model_dump())


# Routers
app.include_router(tests.router, prefix="/api/tests", tags=["tests"])
app.include_router(sync.router, prefix="/api/tests", tags=["sync"])
app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}
