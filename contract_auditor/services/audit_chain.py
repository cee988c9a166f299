"""
Persistence of scored audit reports and their re-audit chains.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from contract_auditor.models.audit_record import AuditRecord
from contract_auditor.services.detection_engine import EngineReport
from contract_auditor.services.scoring import improvement_percentage

logger = logging.getLogger(__name__)


class AuditRecordNotFound(Exception):
    """The record does not exist or is not visible to the caller."""

    def __init__(self, audit_id: int):
        super().__init__(f"Audit not found: {audit_id}")
        self.audit_id = audit_id


@dataclass
class AuditChain:
    """An original audit and its re-audits, newest re-audit first."""
    original: AuditRecord
    re_audits: List[AuditRecord]

    @property
    def latest(self) -> AuditRecord:
        return self.re_audits[0] if self.re_audits else self.original

    @property
    def improvement(self) -> Optional[float]:
        if not self.re_audits:
            return None
        value = improvement_percentage(self.original.risk_score, self.latest.risk_score)
        return round(value, 1) if value is not None else None


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class AuditChainService:
    """Service for audit records and re-audit chains."""

    def __init__(self, db: Session):
        self.db = db

    def get_record(self, audit_id: int, user_email: Optional[str] = None) -> AuditRecord:
        """
        Fetch a record, optionally scoped to its owner.

        Raises:
            AuditRecordNotFound: If missing or owned by someone else
        """
        record = self.db.query(AuditRecord).filter(AuditRecord.id == audit_id).first()
        if record is None or (user_email is not None and record.user_email != user_email):
            raise AuditRecordNotFound(audit_id)
        return record

    def resolve_original(self, record: AuditRecord) -> AuditRecord:
        """Walk back to the root of the chain so re-audits never nest."""
        seen = {record.id}
        current = record
        while current.is_re_audit and current.original_audit_id is not None:
            parent = self.db.query(AuditRecord).filter(AuditRecord.id == current.original_audit_id).first()
            if parent is None or parent.id in seen:
                logger.warning(f"Broken re-audit chain at record {current.id}")
                break
            seen.add(parent.id)
            current = parent
        return current

    def get_original_for_re_audit(self, audit_id: int, user_email: str) -> AuditRecord:
        """
        Load the chain root a new re-audit should point at.

        Raises:
            AuditRecordNotFound: If the record is missing or not owned by user_email
        """
        record = self.get_record(audit_id, user_email)
        return self.resolve_original(record)

    def _build_record(
        self,
        user_email: str,
        report: EngineReport,
        risk: int,
        pre_audit_score: Optional[int],
        audit_duration: Optional[int],
        request_id: Optional[str],
        original: Optional[AuditRecord] = None,
    ) -> AuditRecord:
        return AuditRecord(
            user_email=user_email,
            contract_name=report.contract_name,
            language=report.language,
            summary=report.summary,
            findings=[finding.model_dump(exclude_none=True, mode="json") for finding in report.findings],
            lines_of_code=report.lines_of_code,
            audited_at=report.audited_at,
            audit_engine_version=report.audit_engine_version,
            raw_response=report.raw_response,
            request_id=request_id,
            audit_duration=audit_duration,
            risk_score=risk,
            pre_audit_score=pre_audit_score,
            original_audit_id=original.id if original is not None else None,
            is_re_audit=original is not None,
        )

    def _save(self, record: AuditRecord) -> AuditRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def create_original(
        self,
        user_email: str,
        report: EngineReport,
        risk: int,
        pre_audit_score: Optional[int] = None,
        audit_duration: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> AuditRecord:
        record = self._build_record(user_email, report, risk, pre_audit_score, audit_duration, request_id)
        record = self._save(record)
        logger.info(f"Saved audit record {record.id} for {user_email} (risk {risk})")
        return record

    def create_re_audit(
        self,
        original: AuditRecord,
        user_email: str,
        report: EngineReport,
        risk: int,
        pre_audit_score: Optional[int] = None,
        audit_duration: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> AuditRecord:
        """Save a re-audit linked to the root of original's chain."""
        root = self.resolve_original(original)
        record = self._build_record(
            user_email, report, risk, pre_audit_score, audit_duration, request_id, original=root,
        )
        record = self._save(record)
        logger.info(f"Saved re-audit record {record.id} of audit {root.id} for {user_email}")
        return record

    def chain_of(self, audit_id: int, user_email: Optional[str] = None) -> AuditChain:
        """
        Chain view for any member of a chain.

        Raises:
            AuditRecordNotFound: If the record is missing or not owned by user_email
        """
        record = self.get_record(audit_id, user_email)
        original = self.resolve_original(record)
        re_audits = (
            self.db.query(AuditRecord)
            .filter(AuditRecord.original_audit_id == original.id, AuditRecord.is_re_audit.is_(True))
            .order_by(AuditRecord.audited_at.desc(), AuditRecord.id.desc())
            .all()
        )
        return AuditChain(original=original, re_audits=re_audits)

    def history(
        self,
        user_email: str,
        contract_name: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AuditRecord], int]:
        """Original audits of one user, newest first, with the unpaged total."""
        query = self.db.query(AuditRecord).filter(
            AuditRecord.user_email == user_email,
            AuditRecord.is_re_audit.is_(False),
        )

        if contract_name:
            query = query.filter(AuditRecord.contract_name.ilike(f"%{contract_name}%"))
        if start_date:
            query = query.filter(AuditRecord.audited_at >= _day_start(start_date))
        if end_date:
            # Include the entire end date
            query = query.filter(AuditRecord.audited_at < _day_start(end_date + timedelta(days=1)))

        total = query.count()
        items = (
            query.order_by(AuditRecord.audited_at.desc(), AuditRecord.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def records_between(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[AuditRecord]:
        """All records (any user) audited in the inclusive date range."""
        query = self.db.query(AuditRecord)
        if start_date:
            query = query.filter(AuditRecord.audited_at >= _day_start(start_date))
        if end_date:
            query = query.filter(AuditRecord.audited_at < _day_start(end_date + timedelta(days=1)))
        return query.order_by(AuditRecord.audited_at.asc()).all()

    def recent_records(self, limit: int = 10) -> List[AuditRecord]:
        """Latest records across all users."""
        return (
            self.db.query(AuditRecord)
            .order_by(AuditRecord.audited_at.desc(), AuditRecord.id.desc())
            .limit(limit)
            .all()
        )
