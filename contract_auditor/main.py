"""
Main FastAPI application entry point.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from contract_auditor.core.config import settings
from contract_auditor.core.database import engine, Base, SessionLocal
from contract_auditor.core.logging_config import setup_logging
from contract_auditor.api.v1.router import api_router
from contract_auditor.middleware.request_logging import RequestLoggingMiddleware
from contract_auditor.services.event_store import EventStore, create_event_store

# Import models so they register with Base.metadata
from contract_auditor.models import AuditRecord  # noqa: F401

setup_logging()
logger = logging.getLogger(__name__)


async def retention_sweep(store: EventStore, interval_seconds: int):
    """Archive expired event files now and then every interval_seconds."""
    while True:
        try:
            await asyncio.to_thread(store.cleanup_old_logs)
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting up Contract Auditor API...")

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created/verified successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}", exc_info=True)
        # Don't fail startup - let the health endpoint report the issue

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            logger.info("Database connectivity verified")
        finally:
            db.close()
    except SQLAlchemyError as e:
        trace_id = str(uuid.uuid4())
        logger.error(f"[{trace_id}] Database connectivity test failed: {e}", exc_info=True)

    store = create_event_store(settings)
    app.state.event_store = store

    sweep_task = None
    if settings.LOG_SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(retention_sweep(store, settings.LOG_SWEEP_INTERVAL_SECONDS))

    yield

    logger.info("Shutting down Contract Auditor API...")
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Contract Auditor API",
    description="Smart contract security audits with audit event logging and usage analytics",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# Request logging middleware (must be added before other middleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors with trace_id."""
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))

    logger.error(
        f"[{trace_id}] Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )

    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, SQLAlchemyError):
        error_detail = "Database error"
        error_type = "DatabaseError"
    else:
        error_detail = str(exc) if settings.DEBUG else "Internal Server Error"
        error_type = type(exc).__name__

    return JSONResponse(
        status_code=500,
        content={
            "detail": error_detail,
            "trace_id": trace_id,
            "error": error_type,
        },
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Contract Auditor API",
        "version": "1.0.0",
        "docs": "/docs",
    }
