"""
Smart contract audit endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from contract_auditor.api.deps import get_audit_workflow, parse_date_param
from contract_auditor.core.auth import AuthenticatedUser, get_current_user, require_allowed_domain
from contract_auditor.core.database import get_db
from contract_auditor.schemas.audit import (
    AuditChainResponse,
    AuditHistoryResponse,
    AuditMetadata,
    AuditRecordResponse,
    AuditRecordSummary,
    AuditRequest,
    AuditResponse,
    ReAuditRequest,
)
from contract_auditor.services.audit_chain import AuditChainService, AuditRecordNotFound
from contract_auditor.services.audit_workflow import AuditOutcome, AuditWorkflow
from contract_auditor.services.detection_engine import AuditError, ContractValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

AUDIT_FAILED_DETAIL = "Failed to audit smart contract. Please try again later."
AUDIT_NOT_FOUND_DETAIL = "Audit not found"


def _to_response(outcome: AuditOutcome) -> AuditResponse:
    report = outcome.report
    return AuditResponse(
        contract_name=report.contract_name,
        language=report.language,
        summary=report.summary,
        findings=report.findings,
        lines_of_code=report.lines_of_code,
        audited_at=report.audited_at,
        audit_engine_version=report.audit_engine_version,
        risk_score=outcome.risk_score,
        security_score=outcome.security_score,
        pre_audit_score=outcome.pre_audit_score,
        total_findings=outcome.severity.total,
        breakdown=outcome.severity.breakdown(),
        metadata=AuditMetadata(
            request_id=outcome.request_id,
            audit_duration=outcome.audit_duration,
            credits_consumed=outcome.credits_consumed,
            audit_id=outcome.record_id,
            is_re_audit=outcome.is_re_audit,
            original_audit_id=outcome.original_audit_id,
            original_risk_score=outcome.original_risk_score,
            improvement=outcome.improvement,
        ),
    )


# Engine calls are blocking; plain `def` endpoints run in the threadpool.

@router.post("", response_model=AuditResponse)
def audit_contract(
    request: AuditRequest,
    user: AuthenticatedUser = Depends(require_allowed_domain),
    workflow: AuditWorkflow = Depends(get_audit_workflow),
):
    """
    Audit a smart contract for security vulnerabilities.

    Returns findings, risk/security scores and the request accounting.
    """
    try:
        outcome = workflow.run_audit(user.email, request.contract_code, request.contract_name)
    except ContractValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except AuditError as e:
        logger.error(f"Audit failed for {user.email} [{e.code.value}]: {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=AUDIT_FAILED_DETAIL)

    return _to_response(outcome)


@router.post("/reaudit", response_model=AuditResponse)
def re_audit_contract(
    request: ReAuditRequest,
    user: AuthenticatedUser = Depends(require_allowed_domain),
    workflow: AuditWorkflow = Depends(get_audit_workflow),
):
    """
    Re-audit updated code against one of the caller's earlier audits.

    The new record is linked to the root of the original's chain.
    """
    try:
        outcome = workflow.run_re_audit(
            user.email, request.original_audit_id, request.contract_code, request.contract_name,
        )
    except ContractValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except AuditRecordNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=AUDIT_NOT_FOUND_DETAIL)
    except AuditError as e:
        logger.error(f"Re-audit failed for {user.email} [{e.code.value}]: {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=AUDIT_FAILED_DETAIL)

    return _to_response(outcome)


# Static routes must be defined before path parameters

@router.get("/history", response_model=AuditHistoryResponse)
async def get_audit_history(
    contract_name: Optional[str] = Query(None, description="Filter by contract name (substring)"),
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of results"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Original audits of the signed-in user, newest first.

    Re-audits are reached through the chain view of their original.
    """
    start = parse_date_param(start_date, "start_date")
    end = parse_date_param(end_date, "end_date")

    items, total = AuditChainService(db).history(
        user.email,
        contract_name=contract_name,
        start_date=start,
        end_date=end,
        limit=limit,
        offset=offset,
    )
    return AuditHistoryResponse(
        items=[AuditRecordSummary.model_validate(item) for item in items],
        total=total,
    )


@router.get("/{audit_id}", response_model=AuditRecordResponse)
async def get_audit(
    audit_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get one of the caller's audit records."""
    try:
        record = AuditChainService(db).get_record(audit_id, user.email)
    except AuditRecordNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=AUDIT_NOT_FOUND_DETAIL)
    return AuditRecordResponse.model_validate(record)


@router.get("/{audit_id}/reaudit", response_model=AuditChainResponse)
async def get_audit_chain(
    audit_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Original audit with all its re-audits, newest re-audit first."""
    try:
        chain = AuditChainService(db).chain_of(audit_id, user.email)
    except AuditRecordNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=AUDIT_NOT_FOUND_DETAIL)

    return AuditChainResponse(
        original=AuditRecordResponse.model_validate(chain.original),
        re_audits=[AuditRecordResponse.model_validate(r) for r in chain.re_audits],
        latest_risk_score=chain.latest.risk_score,
        improvement=chain.improvement,
    )
