"""
Statistics aggregation over audit events and audit records.

Every aggregate is a single-pass fold that does not depend on input order; only the
explicitly time-ordered outputs (daily series) are sorted. Time-window aggregates take
an explicit `now` so results are reproducible.
"""
import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from contract_auditor.schemas.events import AuditEvent
from contract_auditor.schemas.findings import SeverityBreakdown
from contract_auditor.schemas.statistics import (
    AuditStatistics,
    BusinessMetrics,
    CreditTrendPoint,
    DailyStat,
    DayUsage,
    GrowthRate,
    HourlyUsage,
    ReportStatistics,
    SizeTrendPoint,
    UserSegmentation,
    UserStat,
    VulnerabilityStats,
)
from contract_auditor.services.scoring import summarize

logger = logging.getLogger(__name__)

POWER_USER_THRESHOLD = 20  # audits in the trailing 30 days, exclusive
REGULAR_USER_THRESHOLD = 5  # inclusive


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def _percentage(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole else 0.0


def _change(current: int, previous: int) -> float:
    """Percent change; 0 when the previous period had nothing to compare against."""
    return ((current - previous) / previous) * 100 if previous > 0 else 0.0


class _UserRollup:
    __slots__ = ("count", "credits", "last")

    def __init__(self):
        self.count = 0
        self.credits = 0
        self.last: Optional[datetime] = None

    def add(self, credits: int, timestamp: datetime) -> None:
        self.count += 1
        self.credits += credits
        if self.last is None or timestamp > self.last:
            self.last = timestamp

    def merge(self, other: "_UserRollup") -> None:
        self.count += other.count
        self.credits += other.credits
        if other.last is not None and (self.last is None or other.last > self.last):
            self.last = other.last


class StatisticsAccumulator:
    """
    Mergeable fold state for AuditStatistics.

    add() consumes one completion event; merge() combines two partial folds, so
    partitions can be aggregated independently and combined in any order.
    """

    def __init__(self):
        self.total = 0
        self.credits = 0
        self.successful = 0
        self.duration_sum = 0
        self.duration_count = 0
        self.vulnerabilities = 0
        self.severity = SeverityBreakdown()
        self.users: Dict[str, _UserRollup] = {}
        self.days: Dict[date, List[int]] = {}

    def add(self, event: AuditEvent) -> "StatisticsAccumulator":
        timestamp = as_utc(event.timestamp)
        self.total += 1
        self.credits += event.credits_consumed

        if event.success:
            self.successful += 1
            if event.audit_duration is not None:
                self.duration_sum += event.audit_duration
                self.duration_count += 1
            if event.severity_breakdown is not None:
                self.severity = self.severity + event.severity_breakdown
            if event.vulnerabilities_found:
                self.vulnerabilities += event.vulnerabilities_found

        self.users.setdefault(event.user_email, _UserRollup()).add(event.credits_consumed, timestamp)

        day = self.days.setdefault(timestamp.date(), [0, 0])
        day[0] += 1
        day[1] += event.credits_consumed
        return self

    def merge(self, other: "StatisticsAccumulator") -> "StatisticsAccumulator":
        self.total += other.total
        self.credits += other.credits
        self.successful += other.successful
        self.duration_sum += other.duration_sum
        self.duration_count += other.duration_count
        self.vulnerabilities += other.vulnerabilities
        self.severity = self.severity + other.severity
        for email, rollup in other.users.items():
            self.users.setdefault(email, _UserRollup()).merge(rollup)
        for day, (count, credits) in other.days.items():
            mine = self.days.setdefault(day, [0, 0])
            mine[0] += count
            mine[1] += credits
        return self

    def result(self) -> AuditStatistics:
        user_stats = [
            UserStat(email=email, audit_count=r.count, credits_consumed=r.credits, last_audit=r.last)
            for email, r in self.users.items()
        ]
        # Top users first; email breaks ties so the order is stable
        user_stats.sort(key=lambda u: (-u.audit_count, u.email))

        daily_stats = [
            DailyStat(date=day, audit_count=count, credits_consumed=credits)
            for day, (count, credits) in sorted(self.days.items())
        ]

        return AuditStatistics(
            total_audits=self.total,
            total_credits_consumed=self.credits,
            total_users=len(self.users),
            success_rate=_percentage(self.successful, self.total),
            average_audit_duration=self.duration_sum / self.duration_count if self.duration_count else 0.0,
            vulnerability_stats=VulnerabilityStats(
                total_vulnerabilities=self.vulnerabilities,
                severity_breakdown=self.severity,
            ),
            user_stats=user_stats,
            daily_stats=daily_stats,
        )


def compute_event_statistics(events: Iterable[AuditEvent]) -> AuditStatistics:
    """Totals, success rate, durations, severity and per-user/per-day rollups."""
    accumulator = StatisticsAccumulator()
    for event in events:
        accumulator.add(event)
    logger.debug(f"Aggregated {accumulator.total} audit events from {len(accumulator.users)} users")
    return accumulator.result()


def _count_between(events: Sequence[AuditEvent], start: datetime, end: Optional[datetime] = None) -> int:
    count = 0
    for event in events:
        ts = as_utc(event.timestamp)
        if ts >= start and (end is None or ts < end):
            count += 1
    return count


def compute_growth_rate(events: Sequence[AuditEvent], now: Optional[datetime] = None) -> GrowthRate:
    """
    Audit volume change for today vs yesterday, last 7 vs prior 7 days and last 30 vs
    prior 30 days.
    """
    now = _now(now)
    today = now.date()
    yesterday = today - timedelta(days=1)

    today_count = 0
    yesterday_count = 0
    for event in events:
        day = as_utc(event.timestamp).date()
        if day == today:
            today_count += 1
        elif day == yesterday:
            yesterday_count += 1

    week_start = now - timedelta(days=7)
    prior_week_start = now - timedelta(days=14)
    month_start = now - timedelta(days=30)
    prior_month_start = now - timedelta(days=60)

    return GrowthRate(
        daily=_change(today_count, yesterday_count),
        weekly=_change(
            _count_between(events, week_start),
            _count_between(events, prior_week_start, week_start),
        ),
        monthly=_change(
            _count_between(events, month_start),
            _count_between(events, prior_month_start, month_start),
        ),
    )


def active_users(events: Iterable[AuditEvent], days: int, now: Optional[datetime] = None) -> int:
    """Distinct users with at least one event in the trailing `days` days."""
    since = _now(now) - timedelta(days=days)
    return len({event.user_email for event in events if as_utc(event.timestamp) >= since})


def daily_active_users(events: Iterable[AuditEvent], now: Optional[datetime] = None) -> int:
    today = _now(now).date()
    return len({event.user_email for event in events if as_utc(event.timestamp).date() == today})


def compute_user_segmentation(events: Iterable[AuditEvent], now: Optional[datetime] = None) -> UserSegmentation:
    """Classify users by audits in the trailing 30 days: power >20, regular 5-20, light <5."""
    since = _now(now) - timedelta(days=30)
    per_user = Counter(event.user_email for event in events if as_utc(event.timestamp) >= since)

    segmentation = UserSegmentation()
    for count in per_user.values():
        if count > POWER_USER_THRESHOLD:
            segmentation.power_users += 1
        elif count >= REGULAR_USER_THRESHOLD:
            segmentation.regular_users += 1
        else:
            segmentation.light_users += 1
    return segmentation


def peak_usage_hours(events: Iterable[AuditEvent]) -> List[HourlyUsage]:
    """Audits per UTC hour of day, busiest first (all 24 hours present)."""
    hourly = Counter(as_utc(event.timestamp).hour for event in events)
    usage = [HourlyUsage(hour=hour, audits=hourly.get(hour, 0)) for hour in range(24)]
    usage.sort(key=lambda h: (-h.audits, h.hour))
    return usage


def peak_usage_days(events: Iterable[AuditEvent], days: int = 7) -> List[DayUsage]:
    daily = Counter(as_utc(event.timestamp).date() for event in events)
    usage = [DayUsage(day=day, audits=count) for day, count in daily.items()]
    usage.sort(key=lambda d: (-d.audits, d.day))
    return usage[:days]


def contract_size_trend(
    events: Iterable[AuditEvent],
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[SizeTrendPoint]:
    """Average submitted contract size per day over the trailing window."""
    since = _now(now) - timedelta(days=days)
    totals: Dict[date, List[int]] = {}
    for event in events:
        ts = as_utc(event.timestamp)
        if ts < since:
            continue
        entry = totals.setdefault(ts.date(), [0, 0])
        entry[0] += event.contract_size
        entry[1] += 1

    return [
        SizeTrendPoint(date=day, average_size=round(size / count))
        for day, (size, count) in sorted(totals.items())
    ]


def credit_consumption_trend(events: Iterable[AuditEvent], days: int = 30) -> List[CreditTrendPoint]:
    """Credits per day, ascending, limited to the last `days` days that have data."""
    credits: Dict[date, int] = {}
    for event in events:
        day = as_utc(event.timestamp).date()
        credits[day] = credits.get(day, 0) + event.credits_consumed
    trend = [CreditTrendPoint(date=day, credits=total) for day, total in sorted(credits.items())]
    return trend[-days:]


def user_retention_rate(events: Sequence[AuditEvent], now: Optional[datetime] = None) -> float:
    """Share of the previous 30-day window's users who are active again in the last 30 days."""
    now = _now(now)
    recent_start = now - timedelta(days=30)
    previous_start = now - timedelta(days=60)

    recent_users = set()
    previous_users = set()
    for event in events:
        ts = as_utc(event.timestamp)
        if ts >= recent_start:
            recent_users.add(event.user_email)
        elif ts >= previous_start:
            previous_users.add(event.user_email)

    return _percentage(len(recent_users & previous_users), len(previous_users))


def generate_business_metrics(events: Sequence[AuditEvent], now: Optional[datetime] = None) -> BusinessMetrics:
    """Engagement, usage pattern and growth metrics over completion events."""
    now = _now(now)
    events = list(events)

    total_users = len({event.user_email for event in events})
    durations = [event.audit_duration for event in events if event.success and event.audit_duration]

    return BusinessMetrics(
        monthly_active_users=active_users(events, 30, now),
        weekly_active_users=active_users(events, 7, now),
        daily_active_users=daily_active_users(events, now),
        average_audits_per_user=len(events) / total_users if total_users else 0.0,
        user_retention_rate=user_retention_rate(events, now),
        peak_usage_hours=peak_usage_hours(events),
        peak_usage_days=peak_usage_days(events),
        average_audit_duration=sum(durations) / len(durations) if durations else 0.0,
        contract_size_trend=contract_size_trend(events, now=now),
        credit_consumption_trend=credit_consumption_trend(events),
        growth_rate=compute_growth_rate(events, now),
        user_segmentation=compute_user_segmentation(events, now),
    )


def compute_report_statistics(records: Iterable) -> ReportStatistics:
    """
    Fold persisted audit records into report-level statistics.

    The pre-audit average is the mean complexity score of original records. The post-audit
    average takes, for every chain with at least one re-audit, only the latest
    re-audit's risk score.
    """
    total = 0
    users: Dict[str, _UserRollup] = {}
    days: Dict[date, List[int]] = {}
    pre_scores: List[int] = []
    latest_re_audits: Dict[int, object] = {}
    duration_sum = 0
    duration_count = 0
    severity = SeverityBreakdown()
    vulnerabilities = 0

    for record in records:
        audited_at = as_utc(record.audited_at)
        total += 1

        users.setdefault(record.user_email, _UserRollup()).add(1, audited_at)
        day = days.setdefault(audited_at.date(), [0, 0])
        day[0] += 1
        day[1] += 1

        if not record.is_re_audit:
            if record.pre_audit_score is not None:
                pre_scores.append(record.pre_audit_score)
        elif record.original_audit_id is not None and record.risk_score is not None:
            current = latest_re_audits.get(record.original_audit_id)
            if current is None or (audited_at, record.id or 0) > (as_utc(current.audited_at), current.id or 0):
                latest_re_audits[record.original_audit_id] = record

        if record.audit_duration:
            duration_sum += record.audit_duration
            duration_count += 1

        summary = summarize(record.findings or [])
        severity = severity + summary.breakdown()
        vulnerabilities += summary.total

    post_scores = [r.risk_score for r in latest_re_audits.values()]

    user_stats = [
        UserStat(email=email, audit_count=r.count, credits_consumed=r.credits, last_audit=r.last)
        for email, r in users.items()
    ]
    user_stats.sort(key=lambda u: (-u.audit_count, u.email))

    return ReportStatistics(
        total_audits=total,
        total_credits_consumed=total,  # one credit per persisted audit
        total_users=len(users),
        average_pre_audit_score=round(sum(pre_scores) / len(pre_scores), 1) if pre_scores else 0.0,
        average_post_audit_score=round(sum(post_scores) / len(post_scores), 1) if post_scores else 0.0,
        average_audit_duration=round(duration_sum / duration_count) if duration_count else 0.0,
        vulnerability_stats=VulnerabilityStats(
            total_vulnerabilities=vulnerabilities,
            severity_breakdown=severity,
        ),
        user_stats=user_stats,
        daily_stats=[
            DailyStat(date=day, audit_count=count, credits_consumed=credits)
            for day, (count, credits) in sorted(days.items())
        ],
    )
