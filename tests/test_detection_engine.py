"""
Tests for detection engine clients with mocked transports.
"""
import json
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from contract_auditor.core.config import Settings
from contract_auditor.models.audit_record import ContractLanguage
from contract_auditor.schemas.findings import Severity
from contract_auditor.services.detection_engine import (
    AuditErrorCode,
    AuditError,
    ChainGPTEngine,
    ContractValidationError,
    OpenAIEngine,
    detect_language,
    get_detection_engine,
    parse_engine_response,
    validate_contract_code,
)

ENGINE_JSON = {
    "contractName": "Vault",
    "language": "Solidity",
    "summary": "One critical issue.",
    "vulnerabilities": [
        {
            "id": "vuln-1",
            "title": "Reentrancy",
            "description": "External call before state update",
            "severity": "CRITICAL",
            "recommendation": "Use checks-effects-interactions",
            "function": "withdraw",
            "lines": [7, 9],
            "category": "Reentrancy",
        }
    ],
    "linesOfCode": 12,
    "auditEngineVersion": "ChainGPT-Smart-Contract-Auditor",
}


def chaingpt(handler, **kwargs):
    return ChainGPTEngine(api_key="test-key", transport=httpx.MockTransport(handler), **kwargs)


class TestValidation:

    def test_blank_contract_rejected(self):
        with pytest.raises(ContractValidationError) as exc:
            validate_contract_code("   \n\t ")
        assert exc.value.code == AuditErrorCode.EMPTY_CONTRACT

    def test_missing_contract_rejected(self):
        with pytest.raises(ContractValidationError) as exc:
            validate_contract_code("")
        assert exc.value.code == AuditErrorCode.INVALID_INPUT

    def test_oversized_contract_rejected(self):
        with pytest.raises(ContractValidationError) as exc:
            validate_contract_code("x" * 11, max_size=10)
        assert exc.value.code == AuditErrorCode.CONTRACT_TOO_LARGE
        validate_contract_code("x" * 10, max_size=10)

    def test_validation_runs_before_any_request(self, sample_contract):
        handler = MagicMock()
        engine = chaingpt(handler, max_contract_size=10)
        with pytest.raises(ContractValidationError):
            engine.audit(sample_contract)
        handler.assert_not_called()


class TestParsing:

    def test_language_detection(self, sample_contract):
        assert detect_language(sample_contract) == ContractLanguage.SOLIDITY
        assert detect_language("@external\ndef withdraw():\n    pass") == ContractLanguage.VYPER
        assert detect_language("hello world") == ContractLanguage.UNKNOWN

    def test_extracts_outermost_json(self, sample_contract):
        text = "Sure! Here is the audit:\n" + json.dumps(ENGINE_JSON) + "\nLet me know."
        report = parse_engine_response(text, sample_contract, "Vault")

        assert report.contract_name == "Vault"
        assert report.language == ContractLanguage.SOLIDITY
        assert report.lines_of_code == 12
        assert len(report.findings) == 1
        assert report.findings[0].severity == Severity.CRITICAL
        assert report.findings[0].lines == [7, 9]
        assert report.raw_response == text

    def test_unparseable_text_becomes_manual_review(self, sample_contract):
        text = "I could not produce JSON this time. " * 30
        report = parse_engine_response(text, sample_contract, "Vault")

        assert len(report.findings) == 1
        finding = report.findings[0]
        assert finding.title == "Manual Review Required"
        assert finding.severity == Severity.MEDIUM
        assert text[:500] in finding.description
        assert text[:501] not in finding.description
        assert report.lines_of_code == len(sample_contract.split("\n"))

    def test_broken_json_becomes_manual_review(self, sample_contract):
        report = parse_engine_response("{not: valid json}", sample_contract)
        assert report.findings[0].title == "Manual Review Required"
        assert report.contract_name == "Unknown"

    def test_field_defaults(self, sample_contract):
        data = {
            "language": "Rust",
            "vulnerabilities": [{"severity": "SEV-X", "lines": "ten"}, "garbage", {"title": "Second"}],
        }
        report = parse_engine_response(json.dumps(data), sample_contract, "Named")

        assert report.contract_name == "Named"
        assert report.language == ContractLanguage.SOLIDITY
        assert [f.id for f in report.findings] == ["vuln-1", "vuln-3"]
        first = report.findings[0]
        assert first.title == "Untitled Vulnerability"
        assert first.description == "No description provided"
        assert first.recommendation == "Please review this issue carefully"
        assert first.severity == Severity.LOW
        assert first.lines is None
        assert report.summary == "Audit complete. Found 2 vulnerabilities (low severity). Risk score: 2/100."

    def test_wrongly_typed_fields_fall_back(self, sample_contract):
        data = {
            "contractName": 7,
            "language": ["Vyper"],
            "summary": ["x"],
            "auditEngineVersion": 3,
            "vulnerabilities": [
                {"title": 5, "description": {"text": "d"}, "severity": "HIGH", "recommendation": None},
                {"title": "Unchecked call", "severity": "CRITICAL", "function": 12, "category": []},
            ],
        }
        report = parse_engine_response(json.dumps(data), sample_contract, "Vault", engine_version="engine-1")

        assert report.contract_name == "Vault"
        assert report.language == ContractLanguage.SOLIDITY
        assert report.audit_engine_version == "engine-1"
        assert [f.severity for f in report.findings] == [Severity.HIGH, Severity.CRITICAL]
        first, second = report.findings
        assert first.title == "Untitled Vulnerability"
        assert first.description == "No description provided"
        assert first.recommendation == "Please review this issue carefully"
        assert second.function is None
        assert second.category is None
        assert report.summary == (
            "Audit complete. Found 2 vulnerabilities (1 critical, 1 high severity). Risk score: 40/100."
        )


class TestChainGPTEngine:

    def test_successful_stream(self, sample_contract):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, text=json.dumps(ENGINE_JSON))

        report = chaingpt(handler).audit(sample_contract, "Vault")

        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "smart_contract_auditor"
        assert "Contract Name: Vault" in seen["body"]["question"]
        assert sample_contract in seen["body"]["question"]
        assert report.findings[0].title == "Reentrancy"
        assert report.audit_engine_version == "ChainGPT-Smart-Contract-Auditor"

    @pytest.mark.parametrize("status_code, code", [
        (401, AuditErrorCode.UNAUTHORIZED),
        (429, AuditErrorCode.RATE_LIMITED),
        (402, AuditErrorCode.INSUFFICIENT_CREDITS),
        (500, AuditErrorCode.API_ERROR),
    ])
    def test_http_errors_classified(self, sample_contract, status_code, code):
        engine = chaingpt(lambda request: httpx.Response(status_code, text="nope"))
        with pytest.raises(AuditError) as exc:
            engine.audit(sample_contract)
        assert exc.value.code == code
        assert exc.value.details == "nope"

    def test_timeout_classified(self, sample_contract):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AuditError) as exc:
            chaingpt(handler).audit(sample_contract)
        assert exc.value.code == AuditErrorCode.TIMEOUT

    def test_connection_error_classified(self, sample_contract):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AuditError) as exc:
            chaingpt(handler).audit(sample_contract)
        assert exc.value.code == AuditErrorCode.API_ERROR

    def test_missing_key(self, sample_contract):
        engine = ChainGPTEngine(api_key="", transport=httpx.MockTransport(MagicMock()))
        with pytest.raises(AuditError) as exc:
            engine.audit(sample_contract)
        assert exc.value.code == AuditErrorCode.MISSING_API_KEY


@pytest.fixture
def mock_openai_client():
    """Mock OpenAI client."""
    with patch("contract_auditor.services.detection_engine.OpenAI") as mock_openai:
        mock_client = MagicMock()
        mock_openai.return_value = mock_client
        yield mock_client


def openai_response(status_code):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return httpx.Response(status_code, request=request)


class TestOpenAIEngine:

    def test_success(self, sample_contract, mock_openai_client):
        mock_response = MagicMock()
        mock_response.choices = [MagicMock()]
        mock_response.choices[0].message.content = json.dumps(ENGINE_JSON)
        mock_openai_client.chat.completions.create.return_value = mock_response

        engine = OpenAIEngine(api_key="test-key", model="gpt-4")
        report = engine.audit(sample_contract, "Vault", timeout=5)

        assert report.findings[0].severity == Severity.CRITICAL
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4"
        assert kwargs["timeout"] == 5

    def test_missing_key(self, sample_contract, mock_openai_client):
        with pytest.raises(AuditError) as exc:
            OpenAIEngine(api_key="").audit(sample_contract)
        assert exc.value.code == AuditErrorCode.MISSING_API_KEY
        mock_openai_client.chat.completions.create.assert_not_called()

    @pytest.mark.parametrize("error, code", [
        (lambda: openai.AuthenticationError("bad key", response=openai_response(401), body=None),
         AuditErrorCode.UNAUTHORIZED),
        (lambda: openai.RateLimitError("slow down", response=openai_response(429), body=None),
         AuditErrorCode.RATE_LIMITED),
        (lambda: openai.RateLimitError("quota", response=openai_response(429), body={"code": "insufficient_quota"}),
         AuditErrorCode.INSUFFICIENT_CREDITS),
        (lambda: openai.APITimeoutError(request=openai_response(408).request),
         AuditErrorCode.TIMEOUT),
        (lambda: openai.InternalServerError("boom", response=openai_response(500), body=None),
         AuditErrorCode.API_ERROR),
    ])
    def test_errors_classified(self, sample_contract, mock_openai_client, error, code):
        mock_openai_client.chat.completions.create.side_effect = error()
        with pytest.raises(AuditError) as exc:
            OpenAIEngine(api_key="test-key").audit(sample_contract)
        assert exc.value.code == code


class TestEngineSelection:

    def test_default_is_chaingpt(self):
        assert isinstance(get_detection_engine(Settings()), ChainGPTEngine)

    def test_openai_provider(self):
        engine = get_detection_engine(Settings(AUDIT_ENGINE_PROVIDER="OpenAI", OPENAI_MODEL="gpt-4o"))
        assert isinstance(engine, OpenAIEngine)
        assert engine.engine_version == "openai-gpt-4o"

    def test_unknown_provider_falls_back(self):
        assert isinstance(get_detection_engine(Settings(AUDIT_ENGINE_PROVIDER="other")), ChainGPTEngine)
