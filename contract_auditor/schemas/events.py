"""Schemas for audit lifecycle events and error events."""
import enum
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict

from contract_auditor.schemas.findings import SeverityBreakdown


class EventType(str, enum.Enum):
    """Distinguishes the two halves of an audit attempt."""
    AUDIT_START = "audit_start"
    AUDIT_COMPLETE = "audit_complete"


class EventCategory(str, enum.Enum):
    """Category of a daily event partition."""
    AUDIT = "audit"
    ERROR = "error"


class AuditEvent(BaseModel):
    """Immutable audit lifecycle marker."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    user_email: str
    contract_name: Optional[str] = None
    contract_size: int = 0  # characters
    credits_consumed: int = 0
    success: Optional[bool] = None  # unset on start events
    error_message: Optional[str] = None
    audit_duration: Optional[int] = None  # milliseconds
    vulnerabilities_found: Optional[int] = None
    severity_breakdown: Optional[SeverityBreakdown] = None
    request_id: Optional[str] = None
    type: Optional[EventType] = None  # absent on legacy records

    @property
    def is_completion(self) -> bool:
        """
        True for events that count towards statistics.

        Explicit completions, untyped legacy records and anything carrying a success
        flag qualify; start events do not.
        """
        return (
            self.type == EventType.AUDIT_COMPLETE
            or self.type is None
            or self.success is not None
        )


class ErrorEvent(BaseModel):
    """Diagnostic error record written to the error partition."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    user_email: Optional[str] = None
    error_type: str
    error_message: str
    stack_trace: Optional[str] = None
    request_id: Optional[str] = None


class AuditEventListResponse(BaseModel):
    """Response schema for event log queries."""
    items: List[AuditEvent]
    count: int
    metadata: Dict[str, Any]


class CleanupResponse(BaseModel):
    """Response schema for a retention sweep."""
    archived_files: int
    retention_days: int
