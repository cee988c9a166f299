"""Schemas for contract audit operations."""
from datetime import datetime
from typing import List, Dict, Any, Optional

from pydantic import BaseModel, Field

from contract_auditor.models.audit_record import ContractLanguage
from contract_auditor.schemas.findings import Finding, SeverityBreakdown


class AuditRequest(BaseModel):
    """Request body for a new audit."""
    contract_code: str
    contract_name: Optional[str] = Field(None, max_length=255)


class ReAuditRequest(AuditRequest):
    """Request body for re-auditing updated code."""
    original_audit_id: int


class AuditMetadata(BaseModel):
    """Per-request accounting returned with an audit."""
    request_id: str
    audit_duration: int  # milliseconds
    credits_consumed: int
    audit_id: Optional[int] = None  # None when the record could not be saved
    is_re_audit: bool = False
    original_audit_id: Optional[int] = None
    original_risk_score: Optional[int] = None
    improvement: Optional[float] = None  # percent, one decimal


class AuditResponse(BaseModel):
    """Audit result schema."""
    contract_name: str
    language: ContractLanguage
    summary: str
    findings: List[Finding]
    lines_of_code: Optional[int] = None
    audited_at: datetime
    audit_engine_version: Optional[str] = None
    risk_score: int
    security_score: int
    pre_audit_score: int
    total_findings: int
    breakdown: SeverityBreakdown
    metadata: AuditMetadata


class AuditRecordSummary(BaseModel):
    """Summary schema for audit record in list views."""
    id: int
    contract_name: str
    language: ContractLanguage
    risk_score: int
    pre_audit_score: Optional[int] = None
    summary: str
    audited_at: datetime
    is_re_audit: bool
    original_audit_id: Optional[int] = None

    model_config = {"from_attributes": True}


class AuditRecordResponse(AuditRecordSummary):
    """Response schema for a single audit record with full details."""
    user_email: str
    findings: List[Dict[str, Any]]
    lines_of_code: Optional[int] = None
    audit_engine_version: Optional[str] = None
    audit_duration: Optional[int] = None
    request_id: Optional[str] = None
    created_at: Optional[datetime] = None


class AuditHistoryResponse(BaseModel):
    """Response schema for audit history list."""
    items: List[AuditRecordSummary]
    total: int


class AuditChainResponse(BaseModel):
    """An original audit with its re-audits, newest first."""
    original: AuditRecordResponse
    re_audits: List[AuditRecordResponse]
    latest_risk_score: int
    improvement: Optional[float] = None


class RecentAuditsResponse(BaseModel):
    """Latest audit records across all users."""
    items: List[AuditRecordResponse]
    count: int
