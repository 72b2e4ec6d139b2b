# chatguard/main.py
"""
Dashboard chat backend: guarded write paths for chat, reports, configs and
settings, plus the privileged moderation surface.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatguard.config import settings
from chatguard.infrastructure.observability.logging import get_logger, log_request, setup_logging
from chatguard.middleware import (
    CORSMiddleware,
    RateLimitHeadersMiddleware,
    RequestContextMiddleware,
)
from chatguard.routes import admin, chat, configs, health, users
from chatguard.services.errors import RateLimited, ValidationFailed, WritePathError
from chatguard.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store connection on startup, close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    logger.info("Initializing Redis connection")
    await fast_redis.initialize()
    logger.info("All services initialized successfully", services=["redis"])

    yield

    logger.info("Application shutting down")
    await fast_redis.close()


app = FastAPI(
    title="ChatGuard",
    description="Abuse-mitigated write paths for the dashboard chat",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(chat.router)
app.include_router(configs.router)
app.include_router(users.router)
app.include_router(admin.router)


@app.exception_handler(WritePathError)
async def write_path_error_handler(request: Request, exc: WritePathError):
    """Every rejection renders as {"success": false, "error", "code"}."""
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Path and query parameter errors use the same envelope as write-path rejections."""
    logger.info("Request validation failed", path=request.url.path, errors=len(exc.errors()))
    error = ValidationFailed("Invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_response())


# Middleware order: last added runs first
app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(CORSMiddleware, allowed_origins=settings.CORS_ALLOWED_ORIGINS)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
