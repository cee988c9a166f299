"""
Audit event log endpoints (admin only).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from contract_auditor.api.deps import get_event_store, parse_date_param
from contract_auditor.core.auth import AuthenticatedUser, require_admin
from contract_auditor.schemas.events import AuditEventListResponse, CleanupResponse
from contract_auditor.schemas.statistics import StatisticsResponse
from contract_auditor.services.event_store import EventStore

logger = logging.getLogger(__name__)

router = APIRouter()


def store_metadata(store: EventStore, **extra: Any) -> Dict[str, Any]:
    """Metadata shared by every event-derived response."""
    metadata = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "storage_mode": store.mode,
        "partial": store.is_partial,
    }
    metadata.update(extra)
    return metadata


@router.get("", response_model=AuditEventListResponse)
async def get_logs(
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    user_email: Optional[str] = Query(None, description="Filter by user email"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Number of recent entries"),
    user: AuthenticatedUser = Depends(require_admin),
    store: EventStore = Depends(get_event_store),
):
    """
    Get audit completion events.

    With only `limit`, returns the most recent events from memory. Otherwise reads the
    date range (default today), newest first when a limit is applied.
    """
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")

    if limit and not start and not end:
        items = store.recent(limit)
        if user_email:
            items = [event for event in items if event.user_email == user_email]
        source = "memory"
    else:
        items = store.query(start, end, user_email)
        if limit:
            items = list(reversed(items[-limit:]))
        source = store.mode

    logger.info(f"Returning {len(items)} audit events to {user.email} (source={source})")

    return AuditEventListResponse(
        items=items,
        count=len(items),
        metadata=store_metadata(
            store,
            source=source,
            start_date=start.isoformat() if start else None,
            end_date=end.isoformat() if end else None,
            user_email=user_email,
            limit=limit,
            buffer_size=len(store.buffer),
        ),
    )


@router.get("/stats", response_model=StatisticsResponse)
async def get_log_statistics(
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    _user: AuthenticatedUser = Depends(require_admin),
    store: EventStore = Depends(get_event_store),
):
    """Usage statistics over audit events in the date range (default today)."""
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")

    stats = store.generate_statistics(start, end)
    return StatisticsResponse(
        data=stats,
        metadata=store_metadata(
            store,
            start_date=(start or store.today()).isoformat(),
            end_date=(end or store.today()).isoformat(),
        ),
    )


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_logs(
    retention_days: Optional[int] = Query(None, ge=0, description="Override the retention window"),
    user: AuthenticatedUser = Depends(require_admin),
    store: EventStore = Depends(get_event_store),
):
    """Archive daily event files older than the retention window."""
    retention = retention_days if retention_days is not None else store.retention_days
    archived = store.cleanup_old_logs(retention)
    logger.info(f"Log cleanup requested by {user.email}: {archived} file(s) archived")
    return CleanupResponse(archived_files=archived, retention_days=retention)
