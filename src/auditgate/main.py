"""AuditGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from auditgate import __version__
from auditgate.api import router
from auditgate.api.deps import validate_auth_config
from auditgate.config import settings
from auditgate.db.base import close_db, init_db
from auditgate.engine import (
    AuditGateError,
    DeadlineExceeded,
    EventNotFound,
    ExportLimitExceeded,
    PersistenceError,
    ValidationError,
)
from auditgate.engine.ingestion import start_dispatcher, stop_dispatcher
from auditgate.tasks.sweep import start_retention_sweep, stop_retention_sweep

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("auditgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting AuditGate server...")
    logger.info(f"Environment: {settings.env.value}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    await init_db()
    logger.info("Database initialized")

    await start_dispatcher()
    await start_retention_sweep()
    logger.info("Background tasks started")

    yield

    logger.info("Shutting down AuditGate server...")
    await stop_retention_sweep()
    await stop_dispatcher()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="AuditGate",
    description="Audit trail recording, search, analytics and export service",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

app.include_router(router)


def _error_body(exc: AuditGateError, **extra) -> dict:
    return {"detail": exc.message, "code": exc.code, **extra}


# Error kinds -> HTTP status, most specific first.
_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (EventNotFound, 404),
    (ExportLimitExceeded, 413),
    (DeadlineExceeded, 504),
    (PersistenceError, 503),
)


@app.exception_handler(AuditGateError)
async def auditgate_error_handler(request: Request, exc: AuditGateError):
    """Map engine errors to HTTP responses."""
    status_code = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    extra = {}
    if isinstance(exc, ExportLimitExceeded):
        extra = {"limit": exc.limit, "matched": exc.matched}
    elif getattr(exc, "field", None):
        extra = {"field": exc.field}
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=_error_body(exc, **extra))


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    """Store failures outside ingestion are transient for the caller."""
    logger.error(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content=_error_body(PersistenceError()),
    )


def main():
    """Entry point for the application."""
    uvicorn.run(
        "auditgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
