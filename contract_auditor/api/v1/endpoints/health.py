"""
Health check endpoint for monitoring and diagnostics.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contract_auditor.api.deps import get_event_store
from contract_auditor.core.database import get_db
from contract_auditor.core.config import settings
from contract_auditor.services.event_store import EventStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    store: EventStore = Depends(get_event_store),
):
    """
    Health check endpoint that verifies:
    - API is running
    - Database connection works (SELECT 1)

    Also reports the event storage mode and in-memory buffer occupancy.
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed"
        )

    provider = settings.AUDIT_ENGINE_PROVIDER.strip().lower()
    engine_configured = (
        settings.is_openai_available() if provider == "openai" else settings.is_chaingpt_available()
    )

    return {
        "ok": True,
        "db": True,
        "environment": settings.APP_ENV,
        "engine": {"provider": provider, "configured": engine_configured},
        "event_store": {
            "mode": store.mode,
            "partial": store.is_partial,
            "buffered_events": len(store.buffer),
            "buffer_capacity": store.buffer.capacity,
        },
    }
