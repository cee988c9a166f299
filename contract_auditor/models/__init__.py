"""Database models."""
from contract_auditor.models.audit_record import AuditRecord, ContractLanguage

__all__ = [
    "AuditRecord",
    "ContractLanguage",
]
