"""
Detection engine clients.

The vulnerability analysis itself runs in an external AI service. These clients send the
contract source with an audit prompt, classify transport failures into a fixed set of
error codes and parse the free-text answer into findings.
"""
import enum
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from contract_auditor.core.config import Settings, settings as default_settings
from contract_auditor.models.audit_record import ContractLanguage
from contract_auditor.schemas.findings import Finding, Severity
from contract_auditor.services.scoring import generate_summary, risk_score, summarize

logger = logging.getLogger(__name__)

CHAINGPT_ENGINE_VERSION = "ChainGPT-Smart-Contract-Auditor"
RAW_PREVIEW_CHARS = 500


class AuditErrorCode(str, enum.Enum):
    """Classified failure kinds of an audit attempt."""
    INVALID_INPUT = "INVALID_INPUT"
    EMPTY_CONTRACT = "EMPTY_CONTRACT"
    CONTRACT_TOO_LARGE = "CONTRACT_TOO_LARGE"
    MISSING_API_KEY = "MISSING_API_KEY"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    TIMEOUT = "TIMEOUT"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AuditError(Exception):
    """Audit failure with a classified code. Details are for diagnostics only."""

    def __init__(self, message: str, code: AuditErrorCode = AuditErrorCode.UNKNOWN_ERROR, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ContractValidationError(AuditError):
    """The submitted contract was rejected before any external call."""


class EngineReport(BaseModel):
    """Parsed detection engine answer."""
    contract_name: str
    language: ContractLanguage
    summary: str
    findings: List[Finding] = Field(default_factory=list)
    lines_of_code: Optional[int] = None
    audited_at: datetime
    audit_engine_version: Optional[str] = None
    raw_response: str = ""


def validate_contract_code(contract_code: str, max_size: Optional[int] = None) -> None:
    """
    Validate the submitted contract source.

    Raises:
        ContractValidationError: If the code is missing, blank or too large
    """
    max_size = max_size or default_settings.MAX_CONTRACT_SIZE

    if not contract_code or not isinstance(contract_code, str):
        raise ContractValidationError("Contract code must be a non-empty string", AuditErrorCode.INVALID_INPUT)

    if contract_code.strip() == "":
        raise ContractValidationError("Contract code cannot be empty", AuditErrorCode.EMPTY_CONTRACT)

    if len(contract_code) > max_size:
        raise ContractValidationError(
            f"Contract code exceeds maximum size of {max_size} characters",
            AuditErrorCode.CONTRACT_TOO_LARGE,
        )


def detect_language(contract_code: str) -> ContractLanguage:
    """Guess the contract language from source text."""
    if "pragma solidity" in contract_code or "contract " in contract_code or "function " in contract_code:
        return ContractLanguage.SOLIDITY
    if "@external" in contract_code or "@internal" in contract_code or "def " in contract_code:
        return ContractLanguage.VYPER
    return ContractLanguage.UNKNOWN


def count_lines(contract_code: str) -> int:
    return len(contract_code.split("\n"))


def build_audit_prompt(contract_code: str, contract_name: Optional[str] = None) -> str:
    name = contract_name or "Unknown"
    return f"""You are a professional smart contract security auditor. Please analyze the following smart contract for security vulnerabilities and provide a detailed audit report.

Contract Name: {name}
Contract Code:
```solidity
{contract_code}
```

Please provide your analysis in the following JSON format (return ONLY valid JSON, no additional text):

{{
  "contractName": "{name}",
  "language": "Solidity",
  "summary": "Brief summary of the audit findings",
  "vulnerabilities": [
    {{
      "id": "vuln-1",
      "title": "Vulnerability Title",
      "description": "Detailed description of the vulnerability",
      "severity": "CRITICAL|HIGH|MEDIUM|LOW",
      "recommendation": "How to fix this vulnerability",
      "function": "functionName (if applicable)",
      "lines": [10, 15],
      "category": "Reentrancy|Access Control|Integer Overflow|etc"
    }}
  ],
  "linesOfCode": {count_lines(contract_code)},
  "auditEngineVersion": "{CHAINGPT_ENGINE_VERSION}"
}}

Focus on these common vulnerability types:
- Reentrancy attacks
- Access control issues
- Integer overflow/underflow
- Unchecked external calls
- Gas limit issues
- Logic errors
- State variable manipulation
- Front-running vulnerabilities
- Denial of Service attacks

Be thorough and provide actionable recommendations for each vulnerability found."""


def _extract_json(response_text: str) -> Dict[str, Any]:
    """Parse the outermost {...} span of the response."""
    json_start = response_text.find("{")
    json_end = response_text.rfind("}") + 1
    if json_start < 0 or json_end <= json_start:
        raise ValueError("No JSON found in response")
    data = json.loads(response_text[json_start:json_end])
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


def _manual_review_payload(response_text: str, contract_code: str, contract_name: Optional[str]) -> Dict[str, Any]:
    return {
        "contractName": contract_name or "Unknown",
        "language": ContractLanguage.SOLIDITY.value,
        "summary": "Audit completed. Please review the response manually.",
        "vulnerabilities": [{
            "id": "manual-review-1",
            "title": "Manual Review Required",
            "description": (
                "The AI response could not be automatically parsed. "
                f"Raw response: {response_text[:RAW_PREVIEW_CHARS]}..."
            ),
            "severity": Severity.MEDIUM.value,
            "recommendation": "Please review the raw AI response and manually identify vulnerabilities.",
            "category": "Manual Review",
        }],
        "linesOfCode": count_lines(contract_code),
    }


def _coerce_lines(value) -> Optional[List[int]]:
    if not isinstance(value, list):
        return None
    lines = [item for item in value if isinstance(item, int) and not isinstance(item, bool)]
    return lines or None


def _text(value, default: Optional[str]) -> Optional[str]:
    """Non-blank string fields pass through; anything else falls back to the default."""
    if isinstance(value, str) and value.strip():
        return value
    return default


def _parse_findings(raw_findings) -> List[Finding]:
    findings = []
    if not isinstance(raw_findings, list):
        return findings

    for index, item in enumerate(raw_findings):
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object vulnerability entry at index {index}")
            continue
        try:
            findings.append(Finding(
                id=str(item.get("id") or f"vuln-{index + 1}"),
                title=_text(item.get("title"), "Untitled Vulnerability"),
                description=_text(item.get("description"), "No description provided"),
                severity=item.get("severity"),
                recommendation=_text(item.get("recommendation"), "Please review this issue carefully"),
                function=_text(item.get("function"), None),
                lines=_coerce_lines(item.get("lines")),
                category=_text(item.get("category"), None),
            ))
        except ValidationError as e:
            logger.warning(f"Failed to create Finding from engine data: {e}")
    return findings


def parse_engine_response(
    response_text: str,
    contract_code: str,
    contract_name: Optional[str] = None,
    engine_version: Optional[str] = None,
) -> EngineReport:
    """
    Turn the engine's free-text answer into an EngineReport.

    Text that does not contain a parseable JSON object yields a single MEDIUM
    "Manual Review Required" finding instead of failing the audit.
    """
    try:
        data = _extract_json(response_text)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"Failed to parse engine JSON response, using manual review fallback: {e}")
        data = _manual_review_payload(response_text, contract_code, contract_name)

    findings = _parse_findings(data.get("vulnerabilities"))

    try:
        language = ContractLanguage(data.get("language"))
    except (TypeError, ValueError):
        language = detect_language(contract_code)

    lines_of_code = data.get("linesOfCode")
    if not isinstance(lines_of_code, int) or isinstance(lines_of_code, bool) or lines_of_code <= 0:
        lines_of_code = count_lines(contract_code)

    return EngineReport(
        contract_name=_text(data.get("contractName"), contract_name or "UnnamedContract"),
        language=language,
        summary=_text(data.get("summary"), generate_summary(findings, risk_score(summarize(findings)))),
        findings=findings,
        lines_of_code=lines_of_code,
        audited_at=datetime.now(timezone.utc),
        audit_engine_version=_text(data.get("auditEngineVersion"), engine_version),
        raw_response=response_text,
    )


class DetectionEngine(ABC):
    """Client for an external vulnerability detection service."""

    engine_version: Optional[str] = None

    def __init__(self, timeout: Optional[float] = None, max_contract_size: Optional[int] = None):
        self.timeout = timeout or default_settings.AUDIT_TIMEOUT_SECONDS
        self.max_contract_size = max_contract_size or default_settings.MAX_CONTRACT_SIZE

    def audit(
        self,
        contract_code: str,
        contract_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EngineReport:
        """
        Audit a contract.

        Raises:
            ContractValidationError: If the input is rejected
            AuditError: If the engine call fails
        """
        validate_contract_code(contract_code, self.max_contract_size)
        prompt = build_audit_prompt(contract_code, contract_name)
        response_text = self._request(prompt, timeout or self.timeout)
        return parse_engine_response(response_text, contract_code, contract_name, self.engine_version)

    @abstractmethod
    def _request(self, prompt: str, timeout: float) -> str:
        """Send the prompt and return the raw response text."""


class ChainGPTEngine(DetectionEngine):
    """ChainGPT smart contract auditor over its streaming HTTP API."""

    engine_version = CHAINGPT_ENGINE_VERSION

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_contract_size: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(timeout=timeout, max_contract_size=max_contract_size)
        self.api_key = api_key if api_key is not None else default_settings.CHAINGPT_API_KEY
        self.api_url = api_url or default_settings.CHAINGPT_API_URL
        self.model = model or default_settings.CHAINGPT_MODEL
        self._transport = transport

    def _request(self, prompt: str, timeout: float) -> str:
        if not self.api_key or self.api_key.strip() == "":
            raise AuditError("Missing CHAINGPT_API_KEY in environment variables", AuditErrorCode.MISSING_API_KEY)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self.model, "question": prompt}

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                with client.stream("POST", self.api_url, json=payload, headers=headers) as response:
                    if response.is_error:
                        response.read()
                        response.raise_for_status()
                    return "".join(response.iter_text())
        except httpx.HTTPStatusError as e:
            raise self._classify_status(e) from e
        except httpx.TimeoutException as e:
            raise AuditError(
                "Audit request timed out. The contract may be too complex.",
                AuditErrorCode.TIMEOUT,
                str(e),
            ) from e
        except httpx.HTTPError as e:
            raise AuditError(f"Audit request failed: {e}", AuditErrorCode.API_ERROR, str(e)) from e

    @staticmethod
    def _classify_status(error: httpx.HTTPStatusError) -> AuditError:
        status_code = error.response.status_code
        body = error.response.text

        if status_code == 401:
            return AuditError("Invalid API key provided to ChainGPT", AuditErrorCode.UNAUTHORIZED, body)
        if status_code == 429:
            return AuditError("Rate limit exceeded. Please try again later.", AuditErrorCode.RATE_LIMITED, body)
        if status_code == 402:
            return AuditError(
                "Insufficient credits or quota exceeded for ChainGPT API",
                AuditErrorCode.INSUFFICIENT_CREDITS,
                body,
            )
        return AuditError(f"Audit request failed: {body or status_code}", AuditErrorCode.API_ERROR, body)


class OpenAIEngine(DetectionEngine):
    """OpenAI chat completion used as the detection engine."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_contract_size: Optional[int] = None,
    ):
        super().__init__(timeout=timeout, max_contract_size=max_contract_size)
        self.api_key = api_key if api_key is not None else default_settings.OPENAI_API_KEY
        self.model = model or default_settings.OPENAI_MODEL
        self.engine_version = f"openai-{self.model}"
        self._client = None

    @property
    def client(self):
        """Lazy-load OpenAI client."""
        if self._client is None and self.api_key:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def _request(self, prompt: str, timeout: float) -> str:
        if not self.api_key or self.api_key.strip() == "":
            raise AuditError("Missing OPENAI_API_KEY in environment variables", AuditErrorCode.MISSING_API_KEY)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You are a smart contract security auditor. Always return valid JSON."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                response_format={"type": "json_object"},
                timeout=timeout,
            )
        except openai.AuthenticationError as e:
            raise AuditError("Invalid API key provided to OpenAI", AuditErrorCode.UNAUTHORIZED, str(e)) from e
        except openai.RateLimitError as e:
            if getattr(e, "code", None) == "insufficient_quota":
                raise AuditError(
                    "Insufficient credits or quota exceeded for OpenAI API",
                    AuditErrorCode.INSUFFICIENT_CREDITS,
                    str(e),
                ) from e
            raise AuditError("Rate limit exceeded. Please try again later.", AuditErrorCode.RATE_LIMITED, str(e)) from e
        except openai.APITimeoutError as e:
            raise AuditError(
                "Audit request timed out. The contract may be too complex.",
                AuditErrorCode.TIMEOUT,
                str(e),
            ) from e
        except openai.OpenAIError as e:
            raise AuditError(f"Audit request failed: {e}", AuditErrorCode.API_ERROR, str(e)) from e

        return response.choices[0].message.content or ""


def get_detection_engine(config: Optional[Settings] = None) -> DetectionEngine:
    """Build the detection engine selected by AUDIT_ENGINE_PROVIDER."""
    config = config or default_settings
    provider = (config.AUDIT_ENGINE_PROVIDER or "chaingpt").strip().lower()

    if provider == "openai":
        return OpenAIEngine(
            api_key=config.OPENAI_API_KEY,
            model=config.OPENAI_MODEL,
            timeout=config.AUDIT_TIMEOUT_SECONDS,
            max_contract_size=config.MAX_CONTRACT_SIZE,
        )

    if provider != "chaingpt":
        logger.warning(f"Unknown AUDIT_ENGINE_PROVIDER '{provider}', falling back to chaingpt")

    return ChainGPTEngine(
        api_key=config.CHAINGPT_API_KEY,
        api_url=config.CHAINGPT_API_URL,
        model=config.CHAINGPT_MODEL,
        timeout=config.AUDIT_TIMEOUT_SECONDS,
        max_contract_size=config.MAX_CONTRACT_SIZE,
    )
