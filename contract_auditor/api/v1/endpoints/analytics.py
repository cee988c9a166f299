"""
Analytics endpoints over audit records and audit events.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from contract_auditor.api.deps import get_event_store, parse_date_param
from contract_auditor.api.v1.endpoints.logs import store_metadata
from contract_auditor.core.auth import AuthenticatedUser, require_admin, verify_service_key
from contract_auditor.core.database import get_db
from contract_auditor.schemas.audit import AuditRecordResponse, RecentAuditsResponse
from contract_auditor.schemas.statistics import InsightsResponse, ReportStatisticsResponse
from contract_auditor.services.audit_chain import AuditChainService
from contract_auditor.services.event_store import EventStore
from contract_auditor.services.insights_service import generate_business_insights
from contract_auditor.services.statistics_service import (
    as_utc,
    compute_event_statistics,
    compute_report_statistics,
    generate_business_metrics,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Retention compares the last 30 days with the 30 before them
INSIGHTS_WINDOW_DAYS = 60
STATS_WINDOW_DAYS = 30


@router.get("/stats", response_model=ReportStatisticsResponse)
async def get_report_statistics(
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    _service: None = Depends(verify_service_key),
    db: Session = Depends(get_db),
):
    """
    Aggregated statistics over persisted audit records.

    Without dates, all records are included.
    """
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")

    records = AuditChainService(db).records_between(start, end)
    stats = compute_report_statistics(records)
    logger.info(f"Generated report statistics: {stats.total_audits} audits, {stats.total_users} users")

    return ReportStatisticsResponse(
        data=stats,
        metadata={
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
        },
    )


@router.get("/recent", response_model=RecentAuditsResponse)
async def get_recent_audits(
    limit: int = Query(10, ge=1, le=100, description="Maximum number of results"),
    _user: AuthenticatedUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Latest audit records of all users."""
    records = AuditChainService(db).recent_records(limit)
    items = [AuditRecordResponse.model_validate(record) for record in records]
    return RecentAuditsResponse(items=items, count=len(items))


@router.get("/insights", response_model=InsightsResponse)
async def get_insights(
    _user: AuthenticatedUser = Depends(require_admin),
    store: EventStore = Depends(get_event_store),
):
    """Business metrics and threshold-based insights over recent audit events."""
    now = datetime.now(timezone.utc)
    today = store.today()

    events = store.query(today - timedelta(days=INSIGHTS_WINDOW_DAYS), today)
    window_start = now - timedelta(days=STATS_WINDOW_DAYS)
    recent_events = [event for event in events if as_utc(event.timestamp) >= window_start]

    stats = compute_event_statistics(recent_events)
    metrics = generate_business_metrics(events, now)
    insights = generate_business_insights(events, stats, now)

    return InsightsResponse(
        metrics=metrics,
        insights=insights,
        metadata=store_metadata(
            store,
            start_date=(today - timedelta(days=INSIGHTS_WINDOW_DAYS)).isoformat(),
            end_date=today.isoformat(),
            total_events=len(events),
        ),
    )
