"""
Audit orchestration: validation, event logging, engine call, scoring and persistence.
"""
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contract_auditor.models.audit_record import AuditRecord
from contract_auditor.schemas.findings import SeveritySummary
from contract_auditor.services.audit_chain import AuditChainService
from contract_auditor.services.detection_engine import (
    AuditError,
    AuditErrorCode,
    DetectionEngine,
    EngineReport,
    validate_contract_code,
)
from contract_auditor.services.event_store import EventStore, generate_request_id
from contract_auditor.services.scoring import (
    complexity_score,
    improvement_percentage,
    risk_score,
    security_score,
    summarize,
)

logger = logging.getLogger(__name__)

CREDITS_PER_AUDIT = 1


@dataclass
class AuditOutcome:
    """Result of a successful audit or re-audit."""
    request_id: str
    report: EngineReport
    severity: SeveritySummary
    risk_score: int
    security_score: int
    pre_audit_score: int
    audit_duration: int  # milliseconds
    credits_consumed: int = CREDITS_PER_AUDIT
    record: Optional[AuditRecord] = None
    original_audit_id: Optional[int] = None
    original_risk_score: Optional[int] = None
    improvement: Optional[float] = None

    @property
    def record_id(self) -> Optional[int]:
        return self.record.id if self.record is not None else None

    @property
    def is_re_audit(self) -> bool:
        return self.original_audit_id is not None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class AuditWorkflow:
    """
    Runs one audit attempt end to end.

    Every attempt that passes validation produces a start event and exactly one
    completion event. Engine failures are re-raised after they have been logged;
    a failed record write is logged and does not fail the audit.
    """

    def __init__(self, db: Session, event_store: EventStore, engine: DetectionEngine):
        self.db = db
        self.event_store = event_store
        self.engine = engine
        self.chains = AuditChainService(db)

    def run_audit(
        self,
        user_email: str,
        contract_code: str,
        contract_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AuditOutcome:
        """
        Audit a contract for a user.

        Raises:
            ContractValidationError: If the input is rejected (nothing is logged)
            AuditError: If the detection engine fails
        """
        validate_contract_code(contract_code, self.engine.max_contract_size)
        return self._execute(user_email, contract_code, contract_name, timeout)

    def run_re_audit(
        self,
        user_email: str,
        original_audit_id: int,
        contract_code: str,
        contract_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AuditOutcome:
        """
        Re-audit updated code against an earlier audit owned by the same user.

        Raises:
            ContractValidationError: If the input is rejected
            AuditRecordNotFound: If the original is missing or owned by someone else
            AuditError: If the detection engine fails
        """
        validate_contract_code(contract_code, self.engine.max_contract_size)
        original = self.chains.get_original_for_re_audit(original_audit_id, user_email)
        return self._execute(user_email, contract_code, contract_name or original.contract_name, timeout, original)

    def _execute(
        self,
        user_email: str,
        contract_code: str,
        contract_name: Optional[str],
        timeout: Optional[float],
        original: Optional[AuditRecord] = None,
    ) -> AuditOutcome:
        request_id = generate_request_id()
        contract_size = len(contract_code)
        started = time.monotonic()

        start = self.event_store.append_start(user_email, contract_name, contract_size, request_id)
        if not start.ok:
            logger.warning(f"Start event for {request_id} was not persisted: {start.error}")

        try:
            report = self.engine.audit(contract_code, contract_name, timeout)
        except AuditError as e:
            self._record_failure(start.event_id, request_id, user_email, contract_name, contract_size, started, e)
            raise
        except Exception as e:
            error = AuditError(f"An unexpected error occurred during audit: {e}", AuditErrorCode.UNKNOWN_ERROR, str(e))
            self._record_failure(start.event_id, request_id, user_email, contract_name, contract_size, started, error)
            raise error from e

        duration = _elapsed_ms(started)
        severity = summarize(report.findings)
        risk = risk_score(severity)
        pre_audit = complexity_score(contract_code)

        self.event_store.append_complete(
            event_id=start.event_id,
            user_email=user_email,
            contract_name=contract_name or report.contract_name,
            contract_size=contract_size,
            success=True,
            audit_duration=duration,
            vulnerabilities_found=severity.total,
            severity_breakdown=severity.breakdown(),
            request_id=request_id,
        )

        record = self._save_record(user_email, report, risk, pre_audit, duration, request_id, original)

        outcome = AuditOutcome(
            request_id=request_id,
            report=report,
            severity=severity,
            risk_score=risk,
            security_score=security_score(risk),
            pre_audit_score=pre_audit,
            audit_duration=duration,
            record=record,
        )
        if original is not None:
            outcome.original_audit_id = original.id
            outcome.original_risk_score = original.risk_score
            improvement = improvement_percentage(original.risk_score, risk)
            outcome.improvement = round(improvement, 1) if improvement is not None else None

        logger.info(
            f"Audit {request_id} completed for {user_email}: {severity.total} findings, "
            f"risk {risk}, {duration}ms"
        )
        return outcome

    def _record_failure(
        self,
        event_id: str,
        request_id: str,
        user_email: str,
        contract_name: Optional[str],
        contract_size: int,
        started: float,
        error: AuditError,
    ) -> None:
        duration = _elapsed_ms(started)
        logger.error(f"Audit {request_id} failed for {user_email} [{error.code.value}]: {error.message}")
        self.event_store.log_error(
            error_type=error.code.value,
            error_message=error.message,
            user_email=user_email,
            stack_trace=traceback.format_exc(),
            request_id=request_id,
        )
        self.event_store.append_complete(
            event_id=event_id,
            user_email=user_email,
            contract_name=contract_name,
            contract_size=contract_size,
            success=False,
            audit_duration=duration,
            error_message=error.message,
            request_id=request_id,
        )

    def _save_record(
        self,
        user_email: str,
        report: EngineReport,
        risk: int,
        pre_audit: int,
        duration: int,
        request_id: str,
        original: Optional[AuditRecord],
    ) -> Optional[AuditRecord]:
        try:
            if original is not None:
                return self.chains.create_re_audit(
                    original, user_email, report, risk,
                    pre_audit_score=pre_audit, audit_duration=duration, request_id=request_id,
                )
            return self.chains.create_original(
                user_email, report, risk,
                pre_audit_score=pre_audit, audit_duration=duration, request_id=request_id,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save audit record for {request_id}: {e}", exc_info=True)
            self.event_store.log_error(
                error_type="DATABASE_ERROR",
                error_message=f"Failed to save audit to database: {e}",
                user_email=user_email,
                stack_trace=traceback.format_exc(),
                request_id=request_id,
            )
            return None
