"""
Vulnerability finding schemas for audit results.
"""
import enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Severity(str, enum.Enum):
    """Ordered severity levels (LOW < MEDIUM < HIGH < CRITICAL)."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if isinstance(other, Severity):
            return self.rank < other.rank
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Severity):
            return self.rank <= other.rank
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Severity):
            return self.rank > other.rank
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, Severity):
            return self.rank >= other.rank
        return NotImplemented

    @classmethod
    def normalize(cls, value) -> "Severity":
        """
        Map an engine-supplied label to a severity.

        Unknown or garbled labels become LOW.
        """
        if isinstance(value, Severity):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.LOW


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Finding(BaseModel):
    """A single reported contract vulnerability."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    severity: Severity
    recommendation: str
    function: Optional[str] = None  # Function where the issue is located
    lines: Optional[List[int]] = None
    category: Optional[str] = None  # e.g. "Reentrancy", "Access Control"

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        return Severity.normalize(v)


class SeverityBreakdown(BaseModel):
    """Count of findings per severity level."""
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def count(self, severity: Severity) -> int:
        return getattr(self, severity.value.lower())

    def __add__(self, other: "SeverityBreakdown") -> "SeverityBreakdown":
        return SeverityBreakdown(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
        )


class SeveritySummary(SeverityBreakdown):
    """Severity breakdown plus the total number of findings."""
    total: int = 0

    def breakdown(self) -> SeverityBreakdown:
        """Breakdown snapshot without the total, as stored on events."""
        return SeverityBreakdown(
            critical=self.critical,
            high=self.high,
            medium=self.medium,
            low=self.low,
        )
