"""
Tests for business insight rules.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from contract_auditor.schemas.events import AuditEvent, EventType
from contract_auditor.schemas.statistics import InsightPriority, InsightType
from contract_auditor.services.insights_service import generate_business_insights
from contract_auditor.services.statistics_service import compute_event_statistics

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def event(user, age, success=True, vulns=0):
    return AuditEvent(
        id=uuid.uuid4().hex,
        timestamp=NOW - age,
        user_email=user,
        contract_size=100,
        credits_consumed=1 if success else 0,
        success=success,
        audit_duration=1000,
        vulnerabilities_found=vulns if success else None,
        type=EventType.AUDIT_COMPLETE,
    )


def insights_for(events):
    return generate_business_insights(events, compute_event_statistics(events), NOW)


def test_no_events_flags_low_success_and_engagement():
    insights = insights_for([])
    assert [i.title for i in insights] == ["Success Rate Needs Attention", "Low User Engagement"]


def test_declining_usage_sorted_first():
    events = [event("a@example.com", timedelta(days=10)) for _ in range(10)]
    events += [event("a@example.com", timedelta(days=1)) for _ in range(2)]

    insights = insights_for(events)

    assert [i.title for i in insights] == [
        "Declining Usage",
        "Excellent Success Rate",
        "High User Engagement",
    ]
    declining = insights[0]
    assert declining.type == InsightType.NEGATIVE
    assert declining.priority == InsightPriority.HIGH
    assert declining.metric == pytest.approx(-80.0)
    assert declining.recommendation


def test_low_success_and_high_detection():
    events = [event("a@example.com", timedelta(hours=3), success=False) for _ in range(5)]
    events += [event("a@example.com", timedelta(hours=2), vulns=12) for _ in range(5)]

    insights = insights_for(events)

    assert [i.title for i in insights] == [
        "Success Rate Needs Attention",
        "High User Engagement",
        "High Vulnerability Detection",
    ]
    assert insights[0].metric == 50.0
    assert insights[2].type == InsightType.NEUTRAL
    assert insights[2].metric == 6.0


def test_growth_with_low_engagement():
    events = [event("u1@example.com", timedelta(days=10))]
    events += [event(f"u{i}@example.com", timedelta(days=20)) for i in range(2, 5)]
    events += [event("a@example.com", timedelta(days=1)) for _ in range(2)]

    insights = insights_for(events)

    assert [i.title for i in insights] == [
        "Strong Growth Trend",
        "Low User Engagement",
        "Excellent Success Rate",
    ]
    assert insights[0].metric == 100.0
    assert insights[1].metric == pytest.approx(20.0)
    assert [i.priority for i in insights] == [
        InsightPriority.MEDIUM,
        InsightPriority.MEDIUM,
        InsightPriority.LOW,
    ]
