"""
Severity scoring for audit findings.

Pure functions: severity summaries, the 0-100 risk and security scores, the pre-audit
complexity estimate and the improvement between two risk scores.
"""
import math
import re
from typing import Dict, Iterable, List, Optional, Sequence

from contract_auditor.schemas.findings import Finding, Severity, SeveritySummary

# Severity weights for risk scoring (additive, max 100).
# A single CRITICAL finding alone already reads as high risk.
SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 5,
    Severity.LOW: 1,
}

MAX_SCORE = 100

_CONTRACT_RE = re.compile(r"contract\s+\w+")
_MODIFIER_RE = re.compile(r"modifier\s+\w+")
_EVENT_RE = re.compile(r"event\s+\w+")
_FUNCTION_RE = re.compile(r"function\s+\w+")


def _severity_of(finding) -> Severity:
    if isinstance(finding, Finding):
        return finding.severity
    return Severity.normalize(finding.get("severity"))


def summarize(findings: Iterable) -> SeveritySummary:
    """
    Count findings by severity.

    Accepts Finding objects or stored finding dicts. Unknown labels count as LOW.
    """
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[_severity_of(finding)] += 1

    return SeveritySummary(
        critical=counts[Severity.CRITICAL],
        high=counts[Severity.HIGH],
        medium=counts[Severity.MEDIUM],
        low=counts[Severity.LOW],
        total=sum(counts.values()),
    )


def risk_score(summary: SeveritySummary) -> int:
    """Weighted severity sum, capped at 100."""
    score = sum(summary.count(severity) * weight for severity, weight in SEVERITY_WEIGHTS.items())
    return min(score, MAX_SCORE)


def security_score(risk: int) -> int:
    """Complement of the risk score: how clean a contract is post-audit."""
    return max(0, min(MAX_SCORE, MAX_SCORE - risk))


def complexity_score(source_text: str) -> int:
    """
    Heuristic pre-audit complexity estimate (0-100).

    Size contributes up to 40 points (one per ten non-comment lines); structural
    signals contribute the rest. This is a text heuristic, not a static analysis.
    """
    if not source_text:
        return 0

    code_lines = 0
    for line in source_text.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith("//") and not stripped.startswith("/*"):
            code_lines += 1

    contracts = len(_CONTRACT_RE.findall(source_text))
    modifiers = len(_MODIFIER_RE.findall(source_text))
    events = len(_EVENT_RE.findall(source_text))
    functions = len(_FUNCTION_RE.findall(source_text))

    score = min(40.0, code_lines / 10)
    if contracts > 1:
        score += 10
    if "is " in source_text:
        score += 8
    if "library " in source_text:
        score += 7
    if "interface " in source_text:
        score += 5
    score += min(15, modifiers * 2)
    score += min(10, events)
    score += min(15, (functions // 5) * 2)

    # Round half up
    return min(MAX_SCORE, max(0, int(math.floor(score + 0.5))))


def improvement_percentage(original_risk: Optional[int], new_risk: int) -> Optional[float]:
    """
    Relative risk reduction from original_risk to new_risk, in percent.

    Returns None (not applicable) when the original score is missing or zero.
    """
    if original_risk is None or original_risk == 0:
        return None
    return (original_risk - new_risk) / original_risk * 100


def filter_by_severity(findings: Sequence[Finding], severities: Iterable[Severity]) -> List[Finding]:
    wanted = set(severities)
    return [finding for finding in findings if finding.severity in wanted]


def group_by_function(findings: Sequence[Finding]) -> Dict[str, List[Finding]]:
    """Group findings by the function they were reported in."""
    grouped: Dict[str, List[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.function or "Unknown Function", []).append(finding)
    return grouped


def passes_security_check(summary: SeveritySummary, max_critical: int = 0, max_high: int = 0) -> bool:
    return summary.critical <= max_critical and summary.high <= max_high


def generate_summary(findings: Sequence[Finding], risk: int) -> str:
    """Generate human-readable summary of audit results."""
    if not findings:
        return "Audit complete. No vulnerabilities found."

    summary = summarize(findings)
    parts = []
    if summary.critical > 0:
        parts.append(f"{summary.critical} critical")
    if summary.high > 0:
        parts.append(f"{summary.high} high")
    if summary.medium > 0:
        parts.append(f"{summary.medium} medium")

    severity_str = ", ".join(parts) if parts else "low"
    return f"Audit complete. Found {len(findings)} vulnerabilities ({severity_str} severity). Risk score: {risk}/100."
