"""
Shared endpoint dependencies.
"""
from datetime import date
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from contract_auditor.core.config import settings
from contract_auditor.core.database import get_db
from contract_auditor.services.detection_engine import DetectionEngine, get_detection_engine
from contract_auditor.services.event_store import EventStore
from contract_auditor.services.audit_workflow import AuditWorkflow


def get_event_store(request: Request) -> EventStore:
    """The process-wide event store built at startup."""
    store = getattr(request.app.state, "event_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event store is not initialized",
        )
    return store


def get_engine() -> DetectionEngine:
    return get_detection_engine(settings)


def get_audit_workflow(
    db: Session = Depends(get_db),
    event_store: EventStore = Depends(get_event_store),
    engine: DetectionEngine = Depends(get_engine),
) -> AuditWorkflow:
    return AuditWorkflow(db, event_store, engine)


def parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD query parameter, 400 on bad input."""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name} format. Use YYYY-MM-DD",
        )
