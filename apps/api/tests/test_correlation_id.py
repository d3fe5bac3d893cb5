from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import User
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def alice(db_session: Session) -> User:
    user = User(username="alice", email="alice@example.com", role="others")
    db_session.add(user)
    db_session.commit()
    return user


def _auth(user: User) -> dict[str, str]:
    settings = get_settings()
    token = jwt.encode(
        {"sub": str(user.id), "role": user.role, "username": user.username},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient, alice: User) -> None:
    response = client.get(f"/api/entries/{uuid.uuid4()}", headers=_auth(alice))
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient, alice: User) -> None:
    response = client.get(
        f"/api/entries/{uuid.uuid4()}",
        headers={**_auth(alice), "X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_header_is_accepted_as_fallback(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-Id": "req-789"})
    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") == "req-789"


def test_audit_and_events_use_request_correlation_id(client: TestClient, alice: User) -> None:
    response = client.post(
        "/api/entries",
        json={"customer_name": "Corr Shop", "status": "Maybe", "live_location": "Pune"},
        headers={**_auth(alice), "X-Correlation-Id": "corr-audit-1"},
    )
    assert response.status_code == 201

    entry_audits = audit.entries_for("tracker.entry", response.json()["id"])
    assert entry_audits
    assert entry_audits[-1]["correlation_id"] == "corr-audit-1"

    created_events = [item for item in events.published_events if item.get("event_type") == "tracker.entry.created"]
    assert created_events
    assert created_events[-1].get("correlation_id") == "corr-audit-1"
