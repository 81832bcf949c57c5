"""
Study Portal Backend — FastAPI Application Factory
====================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() builds the storage container, registers
       middleware, exception handlers and routes, and returns the app.
Who:   uvicorn (uvicorn studyportal.main:app); tests call create_app(settings).
When:  Once at server startup.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware:  Request ID → Logging → GZip → CORS    │
    │                                                     │
    │  Routes:  /api/documents  /api/admin  /api/stats    │
    │           /api/database   /api/health  /uploads     │
    │                                                     │
    │  app.state.portal (StoragePortal):                  │
    │    SyncState, LocalStore, PrimaryStoreClient,       │
    │    FileService, ReconciliationEngine,               │
    │    ConnectionMonitor, DocumentService               │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging, validate configuration
    2. Create the upload directory, initialize the local snapshot
    3. Start the connection monitor (first connect + reconcile runs at once)

    Shutdown:
    1. Cancel the monitor task
    2. Dispose the primary engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from studyportal import __version__
from studyportal.config import Settings, settings
from studyportal.dependencies import build_storage_portal
from studyportal.exceptions import (
    FileStorageError,
    NotFoundError,
    StorageError,
    StudyPortalError,
    ValidationError,
)
from studyportal.middleware.logging import RequestLoggingMiddleware
from studyportal.middleware.request_id import RequestIDMiddleware, request_id_var
from studyportal.routes import admin, database, documents, files, health, stats

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, level or settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:  logging, config validation, upload dir, local store, monitor.
    Shutdown: stop the monitor, close primary connections.

    The server starts even when the primary database is down; requests are
    served from the local store until the monitor reconnects.
    """
    portal = app.state.portal
    cfg: Settings = portal.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(cfg.log_level)
    logger.info("=" * 60)
    logger.info("Study Portal Backend %s starting up...", __version__)

    try:
        cfg.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    upload_dir = Path(cfg.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Upload directory: %s", upload_dir.resolve())
    logger.info("Local store: %s", Path(cfg.fallback_db_file).resolve())

    await portal.startup()

    logger.info("Server ready at http://%s:%d", cfg.backend_host, cfg.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Study Portal Backend shutting down...")
    await portal.shutdown()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to the JSON error envelope.

    Handler hierarchy:
        ValidationError         → 400 Bad Request
        NotFoundError           → 404 Not Found
        StorageError            → 503 Service Unavailable (both stores failed)
        FileStorageError        → 500 Internal Server Error
        StudyPortalError (base) → 500 Internal Server Error
        Exception (fallback)    → 500 Internal Server Error

    Server-side failures never expose their context in the response; it is
    logged instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        """Neither store accepted a write; the client may retry later."""
        rid = request_id_var.get("")
        logger.error("[%s] Storage error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=503,
            content={
                "error": "storage_unavailable",
                "message": exc.message,
                "request_id": rid,
            },
            headers={"Retry-After": "30"},
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        rid = request_id_var.get("")
        logger.error("[%s] File storage error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": exc.message,
                "request_id": rid,
            },
        )

    @app.exception_handler(StudyPortalError)
    async def handle_app_error(request: Request, exc: StudyPortalError):
        rid = request_id_var.get("")
        logger.error(
            "[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: stack trace goes to the log only."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to build the storage container from; defaults
            to the module-level singleton. Tests pass their own.
    """
    cfg = app_settings or settings

    app = FastAPI(
        title="Study Portal API",
        description=(
            "PDF study material portal. Uploads are stored locally first and mirrored "
            "to the primary database, so the portal keeps working while the database is down."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.portal = build_storage_portal(cfg)

    # ── Register Middleware ───────────────────────────────────────────────
    # Execution order is the reverse of addition: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(documents.router)
    app.include_router(admin.router)
    app.include_router(stats.router)
    app.include_router(database.router)
    app.include_router(health.router)
    app.include_router(files.router)

    return app


# uvicorn entry point: studyportal.main:app
app = create_app()
