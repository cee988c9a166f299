"""Audit record database model."""
import enum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, JSON, Boolean, Enum, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from contract_auditor.core.database import Base


class ContractLanguage(str, enum.Enum):
    """Detected smart contract language."""
    SOLIDITY = "Solidity"
    VYPER = "Vyper"
    UNKNOWN = "Unknown"


class AuditRecord(Base):
    """
    Persisted, scored audit result.

    Records are append-only. A re-audit always points at the original of its chain
    (is_re_audit=False, original_audit_id=NULL); chains are never nested.
    """
    __tablename__ = "audit_records"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    contract_name = Column(String(255), nullable=False, index=True)
    language = Column(Enum(ContractLanguage), nullable=False, default=ContractLanguage.UNKNOWN)
    summary = Column(Text, nullable=False)
    findings = Column(JSON, nullable=False, default=list)  # List of Finding dicts
    lines_of_code = Column(Integer, nullable=True)
    audited_at = Column(DateTime(timezone=True), nullable=False, index=True)
    audit_engine_version = Column(String(100), nullable=True)
    raw_response = Column(Text, nullable=True)  # Kept for forensic replay, never parsed
    request_id = Column(String(64), nullable=True)
    audit_duration = Column(Integer, nullable=True)  # milliseconds
    risk_score = Column(Integer, nullable=False)  # 0-100
    pre_audit_score = Column(Integer, nullable=True)  # complexity estimate, 0-100

    # Re-audit linkage
    original_audit_id = Column(Integer, ForeignKey("audit_records.id"), nullable=True, index=True)
    is_re_audit = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    original = relationship("AuditRecord", remote_side=[id], backref="re_audits")

    __table_args__ = (
        Index("ix_audit_records_user_audited_at", "user_email", "audited_at"),
    )
