"""
Tests for the audit endpoints.
"""
from unittest.mock import patch

from fastapi import status

from contract_auditor.services.detection_engine import AuditError, AuditErrorCode

ALICE = {"X-User-Email": "alice@example.com"}
BOB = {"X-User-Email": "bob@example.com"}

LOW_ONLY = [{"id": "vuln-1", "title": "Floating pragma", "description": "d", "severity": "LOW", "recommendation": "r"}]


def post_audit(client, sample_contract, headers=ALICE, name="Vault"):
    return client.post(
        "/api/v1/audit",
        json={"contract_code": sample_contract, "contract_name": name},
        headers=headers,
    )


class TestAuditEndpoint:

    def test_audit_success(self, client, sample_contract, event_store):
        response = post_audit(client, sample_contract)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["risk_score"] == 41
        assert data["security_score"] == 59
        assert data["total_findings"] == 3
        assert data["breakdown"] == {"critical": 1, "high": 1, "medium": 0, "low": 1}
        assert data["language"] == "Solidity"
        assert data["metadata"]["request_id"].startswith("req_")
        assert data["metadata"]["credits_consumed"] == 1
        assert isinstance(data["metadata"]["audit_id"], int)
        assert data["metadata"]["is_re_audit"] is False
        assert len(event_store.buffer) == 2

    def test_requires_user(self, client, sample_contract):
        response = post_audit(client, sample_contract, headers={})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Authentication required"

    def test_email_domain_restriction(self, client, sample_contract, mock_engine):
        with patch("contract_auditor.core.config.settings.ALLOWED_EMAIL_DOMAIN", "@example.com"):
            denied = post_audit(client, sample_contract, headers={"X-User-Email": "eve@evil.io"})
            allowed = post_audit(client, sample_contract)

        assert denied.status_code == status.HTTP_403_FORBIDDEN
        assert denied.json()["detail"] == "Access denied: Invalid email domain"
        assert allowed.status_code == status.HTTP_200_OK
        assert mock_engine.audit.call_count == 1

    def test_service_api_key(self, client, sample_contract):
        with patch("contract_auditor.core.config.settings.API_KEY", "test-key"):
            missing = post_audit(client, sample_contract)
            wrong = post_audit(client, sample_contract, headers={**ALICE, "X-API-Key": "nope"})
            ok = post_audit(client, sample_contract, headers={**ALICE, "X-API-Key": "test-key"})

        assert missing.status_code == status.HTTP_401_UNAUTHORIZED
        assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
        assert ok.status_code == status.HTTP_200_OK

    def test_empty_contract_rejected(self, client, event_store, mock_engine):
        response = post_audit(client, "   ")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Contract code cannot be empty"
        assert len(event_store.buffer) == 0
        mock_engine.audit.assert_not_called()

    def test_engine_failure_is_generic_502(self, client, sample_contract, mock_engine, event_store):
        mock_engine.audit.side_effect = AuditError(
            "Invalid API key provided to ChainGPT", AuditErrorCode.UNAUTHORIZED, "secret details",
        )
        response = post_audit(client, sample_contract)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["detail"] == "Failed to audit smart contract. Please try again later."
        assert event_store.recent(1)[0].success is False


class TestReAuditEndpoint:

    def test_re_audit_reports_improvement(self, client, sample_contract, mock_engine, make_report):
        original_id = post_audit(client, sample_contract).json()["metadata"]["audit_id"]
        mock_engine.audit.return_value = make_report(LOW_ONLY)

        response = client.post(
            "/api/v1/audit/reaudit",
            json={"contract_code": sample_contract, "original_audit_id": original_id},
            headers=ALICE,
        )

        assert response.status_code == status.HTTP_200_OK
        metadata = response.json()["metadata"]
        assert metadata["is_re_audit"] is True
        assert metadata["original_audit_id"] == original_id
        assert metadata["original_risk_score"] == 41
        assert metadata["improvement"] == 97.6

    def test_missing_and_foreign_originals_look_the_same(self, client, sample_contract):
        original_id = post_audit(client, sample_contract).json()["metadata"]["audit_id"]

        foreign = client.post(
            "/api/v1/audit/reaudit",
            json={"contract_code": sample_contract, "original_audit_id": original_id},
            headers=BOB,
        )
        missing = client.post(
            "/api/v1/audit/reaudit",
            json={"contract_code": sample_contract, "original_audit_id": 987654},
            headers=ALICE,
        )

        assert foreign.status_code == missing.status_code == status.HTTP_404_NOT_FOUND
        assert foreign.json()["detail"] == missing.json()["detail"] == "Audit not found"


class TestAuditRecords:

    def test_history_lists_own_originals(self, client, sample_contract):
        first = post_audit(client, sample_contract, name="Vault").json()["metadata"]["audit_id"]
        post_audit(client, sample_contract, name="TokenSale")
        post_audit(client, sample_contract, headers=BOB)
        client.post(
            "/api/v1/audit/reaudit",
            json={"contract_code": sample_contract, "original_audit_id": first},
            headers=ALICE,
        )

        response = client.get("/api/v1/audit/history", headers=ALICE)
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 2
        assert all(item["is_re_audit"] is False for item in data["items"])

    def test_history_rejects_bad_dates(self, client):
        response = client.get("/api/v1/audit/history?start_date=June", headers=ALICE)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "start_date" in response.json()["detail"]

    def test_get_audit_is_owner_scoped(self, client, sample_contract):
        audit_id = post_audit(client, sample_contract).json()["metadata"]["audit_id"]

        own = client.get(f"/api/v1/audit/{audit_id}", headers=ALICE)
        foreign = client.get(f"/api/v1/audit/{audit_id}", headers=BOB)

        assert own.status_code == status.HTTP_200_OK
        assert own.json()["risk_score"] == 41
        assert len(own.json()["findings"]) == 3
        assert foreign.status_code == status.HTTP_404_NOT_FOUND

    def test_chain_view(self, client, sample_contract, mock_engine, make_report):
        original_id = post_audit(client, sample_contract).json()["metadata"]["audit_id"]
        mock_engine.audit.return_value = make_report(LOW_ONLY)
        re_audit_id = client.post(
            "/api/v1/audit/reaudit",
            json={"contract_code": sample_contract, "original_audit_id": original_id},
            headers=ALICE,
        ).json()["metadata"]["audit_id"]

        response = client.get(f"/api/v1/audit/{re_audit_id}/reaudit", headers=ALICE)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["original"]["id"] == original_id
        assert [r["id"] for r in data["re_audits"]] == [re_audit_id]
        assert data["latest_risk_score"] == 1
        assert data["improvement"] == 97.6
