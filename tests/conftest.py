"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from contract_auditor.api.deps import get_engine, get_event_store
from contract_auditor.core.database import Base, get_db
from contract_auditor.main import app
from contract_auditor.models import AuditRecord, ContractLanguage
from contract_auditor.schemas.findings import Finding
from contract_auditor.services.detection_engine import DetectionEngine, EngineReport
from contract_auditor.services.event_store import MemoryEventStore

# Use file-based SQLite for testing (more reliable than in-memory)
TEST_DATABASE_URL = "sqlite:///./test_contract_auditor.db"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    pool_pre_ping=False,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

CONTRACT_SOURCE = """pragma solidity ^0.8.0;

contract Vault {
    mapping(address => uint256) public balances;

    function withdraw(uint256 amount) public {
        require(balances[msg.sender] >= amount);
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] -= amount;
    }
}
"""


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create all tables before tests run and drop them after the session."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def clean_audit_records():
    """Each test starts with an empty audit_records table."""
    yield
    db = TestingSessionLocal()
    try:
        db.query(AuditRecord).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture(scope="function", autouse=True)
def disable_engine_keys():
    """No test may reach a real detection engine."""
    with patch("contract_auditor.core.config.settings.CHAINGPT_API_KEY", None):
        with patch("contract_auditor.core.config.settings.OPENAI_API_KEY", None):
            yield


@pytest.fixture(scope="function", autouse=True)
def disable_api_key():
    """Disable service key and email domain checks for all tests."""
    with patch("contract_auditor.core.config.settings.API_KEY", None):
        with patch("contract_auditor.core.config.settings.ALLOWED_EMAIL_DOMAIN", None):
            yield


@pytest.fixture
def make_report():
    """Factory for parsed engine reports."""
    def _make(findings=None, contract_name="Vault"):
        return EngineReport(
            contract_name=contract_name,
            language=ContractLanguage.SOLIDITY,
            summary="Audit complete.",
            findings=[Finding(**f) for f in (findings or [])],
            lines_of_code=12,
            audited_at=datetime.now(timezone.utc),
            audit_engine_version="test-engine",
            raw_response="{}",
        )
    return _make


@pytest.fixture
def mock_engine(make_report):
    """Detection engine returning one CRITICAL, one HIGH and one LOW finding."""
    engine = MagicMock(spec=DetectionEngine)
    engine.max_contract_size = 100_000
    engine.audit.return_value = make_report([
        {"id": "vuln-1", "title": "Reentrancy", "description": "d", "severity": "CRITICAL",
         "recommendation": "r", "function": "withdraw"},
        {"id": "vuln-2", "title": "Unchecked call", "description": "d", "severity": "HIGH",
         "recommendation": "r", "function": "withdraw"},
        {"id": "vuln-3", "title": "Floating pragma", "description": "d", "severity": "LOW",
         "recommendation": "r"},
    ])
    return engine


@pytest.fixture
def event_store():
    return MemoryEventStore(buffer_size=100)


@pytest.fixture
def sample_contract():
    return CONTRACT_SOURCE


@pytest.fixture(scope="function")
def client(event_store, mock_engine):
    """
    Test client with database, event store and engine overrides.

    The lifespan is not run; the overrides stand in for app.state.
    """
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_store] = lambda: event_store
    app.dependency_overrides[get_engine] = lambda: mock_engine

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def db_session():
    """Database session for tests that need direct DB access."""
    db = TestingSessionLocal()
    try:
        yield db
        db.rollback()
    finally:
        db.close()
