from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
def configure_limits(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, User]:
    created = {
        "alice": User(username="alice", email="alice@example.com"),
        "bob": User(username="bob", email="bob@example.com"),
    }
    db_session.add_all(created.values())
    db_session.commit()
    return created


def _auth(user: User) -> dict[str, str]:
    settings = get_settings()
    token = jwt.encode(
        {"sub": str(user.id), "role": user.role, "username": user.username},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


def _create(client: TestClient, user: User, index: int):
    return client.post(
        "/api/entries",
        json={"customer_name": f"Rate Shop {index}", "status": "Maybe", "live_location": "Pune"},
        headers=_auth(user),
    )


def test_mutating_endpoints_are_rate_limited(client: TestClient, users: dict[str, User]) -> None:
    responses = [_create(client, users["alice"], index) for index in range(5)]

    limited = [response for response in responses if response.status_code == 429]
    assert len(limited) == 2

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "rate_limited"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_buckets_are_per_user(client: TestClient, users: dict[str, User]) -> None:
    for index in range(3):
        assert _create(client, users["alice"], index).status_code == 201

    assert _create(client, users["alice"], 3).status_code == 429
    assert _create(client, users["bob"], 0).status_code == 201


def test_get_endpoints_are_not_rate_limited(client: TestClient, users: dict[str, User]) -> None:
    assert _create(client, users["alice"], 0).status_code == 201

    responses = [client.get("/api/entries", headers=_auth(users["alice"])) for _ in range(10)]
    assert all(response.status_code == 200 for response in responses)
