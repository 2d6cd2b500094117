"""
FastAPI application factory.

Startup sequence:
  1. Validate settings
  2. Check DB connectivity (warn on failure — do not crash, ALB will detect)
  3. Start the lifecycle event publisher
  4. Schedule the daily snapshot job (SNAPSHOT_SCHEDULER_ENABLED)
  5. Mount all API routers

Shutdown drains queued events before stopping the publisher.

Dev-mode notes:
  When DEV_SKIP_AUTH=true (development only):
    - A starlette middleware reads the X-Dev-User-ID header and sets a context
      variable so get_current_user() can look up the user without a Cognito token.
    - This middleware is NOT installed in staging/production.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from grievance.api.v1.complaints import router as complaints_router
from grievance.api.v1.events import router as events_router
from grievance.api.v1.extensions import router as extensions_router
from grievance.api.v1.health import router as health_router
from grievance.api.v1.snapshots import router as snapshots_router
from grievance.core.config import get_settings
from grievance.core.db import check_db_connection
from grievance.core.errors import LifecycleError
from grievance.core.scheduler import PeriodicTask
from grievance.core.security import set_dev_cognito_sub
from grievance.schemas.common import ErrorResponse
from grievance.services.events import get_publisher
from grievance.services.snapshots import run_scheduled_snapshots

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.is_development else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting grievance lifecycle backend (env=%s)", settings.environment)
    db_ok = await check_db_connection()
    if db_ok:
        logger.info("Database connection: OK")
    else:
        logger.warning("Database connection: FAILED — check DB_HOST / credentials")

    if settings.auth_disabled:
        logger.warning(
            "DEV_SKIP_AUTH=true — Cognito JWT verification is DISABLED. "
            "This must never be enabled in staging or production."
        )

    publisher = get_publisher()
    publisher.start()

    snapshots = None
    if settings.snapshot_scheduler_enabled:
        snapshots = PeriodicTask(
            "complaint-snapshots",
            settings.snapshot_interval_seconds,
            run_scheduled_snapshots,
        )
        snapshots.start()

    yield

    logger.info("Shutting down grievance lifecycle backend")
    if snapshots is not None:
        await snapshots.stop()
    await publisher.stop(drain=True, timeout=settings.event_drain_timeout_seconds)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Grievance Lifecycle API",
        version="0.2.0",
        description="Complaint lifecycle, SLA extensions and trend snapshots",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # CORS: restrict in production
    # ------------------------------------------------------------------ #
    origins = ["*"] if settings.is_development else [f"https://{settings.environment}.grievance.gov.in"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Dev-mode header middleware
    # ------------------------------------------------------------------ #
    if settings.auth_disabled:
        @app.middleware("http")
        async def dev_auth_middleware(request: Request, call_next):
            """
            Reads X-Dev-User-ID (a cognito_user_id string) and stores it
            in a context variable so get_current_user() can find the user.
            """
            dev_user_id = request.headers.get("X-Dev-User-ID")
            set_dev_cognito_sub(dev_user_id)
            response = await call_next(request)
            return response

    # ------------------------------------------------------------------ #
    # Exception handlers
    # ------------------------------------------------------------------ #
    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError):
        logger.info(
            "%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message
        )
        body = ErrorResponse(detail=exc.message, code=exc.code, errors=exc.errors)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(body, exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(health_router)
    app.include_router(complaints_router, prefix="/api/v1")
    app.include_router(extensions_router, prefix="/api/v1")
    app.include_router(snapshots_router, prefix="/api/v1")
    app.include_router(events_router, prefix="/api/v1")

    return app


app = create_app()
