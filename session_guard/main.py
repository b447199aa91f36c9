"""FastAPI application entry point."""
import os

# Force UTC before anything caches timezone information
os.environ['TZ'] = 'UTC'

import asyncio
import time

if hasattr(time, "tzset"):
    time.tzset()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextlib import asynccontextmanager

from session_guard.config import get_settings, get_token_config
from session_guard.version import APP_VERSION
from session_guard.routers import auth, health

logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

log_file = logs_dir / "session_guard.log"
api_log_file = logs_dir / "session_guard_api.log"
security_log_file = logs_dir / "session_guard_security.log"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# General logs: 1MB per file, keep 5 backups
rotating_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=5, encoding='utf-8')
rotating_handler.setFormatter(logging.Formatter(LOG_FORMAT))

# API request logs: 2MB per file, keep 15 backups
api_rotating_handler = RotatingFileHandler(api_log_file, maxBytes=2 * 1024 * 1024, backupCount=15, encoding='utf-8')
api_rotating_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

# Security alerts are rare and kept longer
security_rotating_handler = RotatingFileHandler(
    security_log_file, maxBytes=1024 * 1024, backupCount=30, encoding='utf-8'
)
security_rotating_handler.setFormatter(logging.Formatter(LOG_FORMAT))

# force=True overrides any configuration installed earlier (e.g. by uvicorn)
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
        rotating_handler,
    ],
    force=True,
)

logger = logging.getLogger(__name__)

api_logger = logging.getLogger("session_guard.api")
api_logger.handlers.clear()
api_logger.addHandler(api_rotating_handler)
api_logger.setLevel(logging.INFO)
api_logger.propagate = False

# Security events go to their own file and still reach the general log
security_logger = logging.getLogger("session_guard.security")
if security_rotating_handler not in security_logger.handlers:
    security_logger.addHandler(security_rotating_handler)
security_logger.setLevel(logging.INFO)

uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.setLevel(logging.INFO)
if rotating_handler not in uvicorn_access_logger.handlers:
    uvicorn_access_logger.addHandler(rotating_handler)

settings = get_settings()


async def cleanup_cycle():
    """
    Background task that sweeps expired and orphaned refresh tokens.

    Revoked tokens are kept until they expire so replays can still be recognised.
    """
    from session_guard.database import AsyncSessionLocal
    from session_guard.services.cleanup_service import CleanupService

    startup_delay = settings.cleanup_startup_delay_seconds
    logger.info(f"Cleanup cycle starting in {startup_delay}s")
    await asyncio.sleep(startup_delay)

    logger.info("Cleanup cycle starting main loop")

    cleanup_interval = settings.cleanup_interval_minutes * 60

    while True:
        try:
            async with AsyncSessionLocal() as db:
                await CleanupService(db).run_all_cleanup_tasks()
        except Exception as e:
            logger.error(f"Cleanup cycle error: {e}")

        await asyncio.sleep(cleanup_interval)


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Validate configuration and manage background tasks."""
    logger.info("=" * 60)
    logger.info("Session Guard API Starting")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.database_url.split('@')[-1] if '@' in settings.database_url else 'SQLite'}")
    logger.info("=" * 60)

    # Refuse to serve without signing keys
    token_config = get_token_config()
    logger.info(
        f"Token lifetimes: access={token_config.access_token_ttl_seconds}s "
        f"refresh={token_config.refresh_token_ttl_seconds}s"
    )

    cleanup_task = None
    if settings.cleanup_enabled:
        try:
            cleanup_task = asyncio.create_task(cleanup_cycle())
            logger.info(f"Cleanup cycle task started (runs every {settings.cleanup_interval_minutes} minutes)")
        except Exception as e:
            logger.error(f"Failed to start cleanup cycle: {e}")
    else:
        logger.info("Cleanup cycle disabled; run run_cleanup.py on a schedule instead")

    try:
        yield
    finally:
        if cleanup_task:
            logger.info("Shutting down background tasks...")
            cleanup_task.cancel()
            try:
                await asyncio.wait_for(cleanup_task, timeout=2.0)
            except asyncio.CancelledError:
                logger.info("Cleanup task cancelled")
            except asyncio.TimeoutError:
                logger.warning("Cleanup task did not cancel within timeout, forcing shutdown")

        logger.info("Session Guard API Shutting Down")


app = FastAPI(
    title="Session Guard API",
    description="Access tokens, rotating refresh tokens and session revocation",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with user-friendly messages."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = " -> ".join(str(x) for x in loc[1:]) if len(loc) > 1 else "unknown field"
        errors.append({
            "field": field_path,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": errors
        }
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request and its outcome to the dedicated API log."""
    start_time = time.time()

    client_ip = request.client.host if request.client else "unknown"
    method = request.method
    path = request.url.path
    request_id = f"{method}:{path}:{int(start_time * 1000) % 100000}"

    api_logger.info(f">> {request_id} | START | {method} {path} | IP: {client_ip}")

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        api_logger.error(
            f"<< {request_id} | EXCEPTION | {method} {path} | "
            f"Error: {str(e)[:100]} | Time: {process_time:.3f}s | IP: {client_ip}"
        )
        raise

    process_time = time.time() - start_time
    api_logger.info(
        f"<< {request_id} | COMPLETE | {method} {path} | "
        f"Status: {response.status_code} | Time: {process_time:.3f}s | IP: {client_ip}"
    )
    return response


allowed_origins = [origin for origin in os.getenv("ALLOWED_ORIGINS", "").split(",") if origin]
if not allowed_origins:
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(health.router, tags=["health"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Session Guard API",
        "version": APP_VERSION,
        "environment": settings.environment,
        "docs": "/docs",
    }
