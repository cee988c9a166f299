"""Schemas for aggregated usage statistics and business insights."""
import enum
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from contract_auditor.schemas.findings import SeverityBreakdown


class VulnerabilityStats(BaseModel):
    total_vulnerabilities: int = 0
    severity_breakdown: SeverityBreakdown = Field(default_factory=SeverityBreakdown)


class UserStat(BaseModel):
    """Per-user rollup."""
    email: str
    audit_count: int
    credits_consumed: int
    last_audit: Optional[datetime] = None


class DailyStat(BaseModel):
    """Per-day rollup (UTC calendar date)."""
    date: date
    audit_count: int
    credits_consumed: int


class AuditStatistics(BaseModel):
    """Aggregate view over audit completion events."""
    total_audits: int = 0
    total_credits_consumed: int = 0
    total_users: int = 0
    success_rate: float = 0.0  # percentage
    average_audit_duration: float = 0.0  # milliseconds
    vulnerability_stats: VulnerabilityStats = Field(default_factory=VulnerabilityStats)
    user_stats: List[UserStat] = Field(default_factory=list)
    daily_stats: List[DailyStat] = Field(default_factory=list)


class ReportStatistics(BaseModel):
    """Aggregate view over persisted audit records."""
    total_audits: int = 0
    total_credits_consumed: int = 0
    total_users: int = 0
    average_pre_audit_score: float = 0.0
    average_post_audit_score: float = 0.0
    average_audit_duration: float = 0.0
    vulnerability_stats: VulnerabilityStats = Field(default_factory=VulnerabilityStats)
    user_stats: List[UserStat] = Field(default_factory=list)
    daily_stats: List[DailyStat] = Field(default_factory=list)


class GrowthRate(BaseModel):
    """Period-over-period change in audit volume, in percent."""
    daily: float = 0.0
    weekly: float = 0.0
    monthly: float = 0.0


class UserSegmentation(BaseModel):
    """Users bucketed by audits in the trailing 30 days."""
    power_users: int = 0  # >20
    regular_users: int = 0  # 5-20
    light_users: int = 0  # <5


class HourlyUsage(BaseModel):
    hour: int
    audits: int


class DayUsage(BaseModel):
    day: date
    audits: int


class SizeTrendPoint(BaseModel):
    date: date
    average_size: int


class CreditTrendPoint(BaseModel):
    date: date
    credits: int


class BusinessMetrics(BaseModel):
    """Engagement, usage pattern and growth metrics derived from events."""
    monthly_active_users: int = 0
    weekly_active_users: int = 0
    daily_active_users: int = 0
    average_audits_per_user: float = 0.0
    user_retention_rate: float = 0.0
    peak_usage_hours: List[HourlyUsage] = Field(default_factory=list)
    peak_usage_days: List[DayUsage] = Field(default_factory=list)
    average_audit_duration: float = 0.0
    contract_size_trend: List[SizeTrendPoint] = Field(default_factory=list)
    credit_consumption_trend: List[CreditTrendPoint] = Field(default_factory=list)
    growth_rate: GrowthRate = Field(default_factory=GrowthRate)
    user_segmentation: UserSegmentation = Field(default_factory=UserSegmentation)


class InsightType(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    WARNING = "warning"


class InsightPriority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UsageInsight(BaseModel):
    """A qualitative observation derived from the statistics."""
    type: InsightType
    title: str
    description: str
    metric: Optional[float] = None
    recommendation: Optional[str] = None
    priority: InsightPriority


class StatisticsResponse(BaseModel):
    """Response schema for event statistics."""
    data: AuditStatistics
    metadata: Dict[str, Any]


class ReportStatisticsResponse(BaseModel):
    """Response schema for report-level statistics."""
    data: ReportStatistics
    metadata: Dict[str, Any]


class InsightsResponse(BaseModel):
    """Response schema for business metrics and insights."""
    metrics: BusinessMetrics
    insights: List[UsageInsight]
    metadata: Dict[str, Any]
