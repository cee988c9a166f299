"""
Business insights derived from audit statistics.

Stateless threshold rules over the aggregates; no persistence, no side effects.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from contract_auditor.schemas.events import AuditEvent
from contract_auditor.schemas.statistics import (
    AuditStatistics,
    InsightPriority,
    InsightType,
    UsageInsight,
)
from contract_auditor.services.statistics_service import active_users, compute_growth_rate

HIGH_SUCCESS_RATE = 95.0
LOW_SUCCESS_RATE = 90.0
STRONG_WEEKLY_GROWTH = 20.0
DECLINING_WEEKLY_GROWTH = -10.0
HIGH_ENGAGEMENT_RATIO = 60.0
LOW_ENGAGEMENT_RATIO = 30.0
HIGH_VULNERABILITIES_PER_AUDIT = 5.0

PRIORITY_ORDER = {
    InsightPriority.HIGH: 3,
    InsightPriority.MEDIUM: 2,
    InsightPriority.LOW: 1,
}


def generate_business_insights(
    events: Sequence[AuditEvent],
    stats: AuditStatistics,
    now: Optional[datetime] = None,
) -> List[UsageInsight]:
    """
    Evaluate success-rate, growth, engagement and detection rules.

    Returns insights sorted by priority, high first.
    """
    insights: List[UsageInsight] = []

    # Success rate
    if stats.success_rate > HIGH_SUCCESS_RATE:
        insights.append(UsageInsight(
            type=InsightType.POSITIVE,
            title="Excellent Success Rate",
            description=f"Your audit success rate is {stats.success_rate:.1f}%, indicating reliable service performance.",
            metric=stats.success_rate,
            priority=InsightPriority.LOW,
        ))
    elif stats.success_rate < LOW_SUCCESS_RATE:
        insights.append(UsageInsight(
            type=InsightType.WARNING,
            title="Success Rate Needs Attention",
            description=f"Success rate is {stats.success_rate:.1f}%. Consider investigating common failure causes.",
            metric=stats.success_rate,
            recommendation="Review error logs and improve input validation.",
            priority=InsightPriority.HIGH,
        ))

    # Week-over-week growth
    weekly = compute_growth_rate(events, now).weekly
    if weekly > STRONG_WEEKLY_GROWTH:
        insights.append(UsageInsight(
            type=InsightType.POSITIVE,
            title="Strong Growth Trend",
            description=f"Weekly audit volume has grown by {weekly:.1f}%.",
            metric=weekly,
            priority=InsightPriority.MEDIUM,
        ))
    elif weekly < DECLINING_WEEKLY_GROWTH:
        insights.append(UsageInsight(
            type=InsightType.NEGATIVE,
            title="Declining Usage",
            description=f"Weekly audit volume has decreased by {abs(weekly):.1f}%.",
            metric=weekly,
            recommendation="Investigate user feedback and potential service issues.",
            priority=InsightPriority.HIGH,
        ))

    # Engagement: weekly actives as a share of monthly actives
    mau = active_users(events, 30, now)
    wau = active_users(events, 7, now)
    engagement = (wau / mau) * 100 if mau > 0 else 0.0
    if engagement > HIGH_ENGAGEMENT_RATIO:
        insights.append(UsageInsight(
            type=InsightType.POSITIVE,
            title="High User Engagement",
            description=f"{engagement:.1f}% of monthly users are active weekly, showing strong engagement.",
            metric=engagement,
            priority=InsightPriority.LOW,
        ))
    elif engagement < LOW_ENGAGEMENT_RATIO:
        insights.append(UsageInsight(
            type=InsightType.WARNING,
            title="Low User Engagement",
            description=f"Only {engagement:.1f}% of monthly users are active weekly.",
            metric=engagement,
            recommendation="Consider user retention strategies and feature improvements.",
            priority=InsightPriority.MEDIUM,
        ))

    # Detection depth
    total_vulns = stats.vulnerability_stats.total_vulnerabilities
    per_audit = total_vulns / stats.total_audits if stats.total_audits > 0 else 0.0
    if per_audit > HIGH_VULNERABILITIES_PER_AUDIT:
        insights.append(UsageInsight(
            type=InsightType.NEUTRAL,
            title="High Vulnerability Detection",
            description=f"Average of {per_audit:.1f} vulnerabilities found per audit indicates thorough analysis.",
            metric=per_audit,
            priority=InsightPriority.LOW,
        ))

    # sorted() is stable, rule order is kept within a priority
    return sorted(insights, key=lambda insight: PRIORITY_ORDER[insight.priority], reverse=True)
