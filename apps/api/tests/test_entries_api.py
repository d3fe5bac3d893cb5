from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import User, UserAdminLink
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.notifications.models import Notification
from app.tracker.models import Entry
from app.tracker.phone_validation import OWN_NUMBER_MESSAGE


LAPTOP = {"name": "Laptop", "specification": "i7", "size": "15 inch", "quantity": 2}


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
def users(db_session: Session) -> dict[str, User]:
    created = {
        "alice": User(username="alice", email="alice@example.com", role="others"),
        "bob": User(username="bob", email="bob@example.com", role="others"),
        "asha": User(username="asha", email="asha@example.com", role="admin"),
        "root": User(username="root", email="root@example.com", role="superadmin"),
    }
    db_session.add_all(created.values())
    db_session.commit()
    db_session.add(
        UserAdminLink(
            user_id=created["alice"].id,
            admin_id=created["asha"].id,
            established_by_id=created["asha"].id,
            established_by_role="admin",
        )
    )
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


def _messages(session: Session, user: User) -> list[str]:
    session.expire_all()
    return list(
        session.scalars(
            select(Notification.message).where(Notification.user_id == user.id).order_by(Notification.created_at)
        ).all()
    )


def _create(client: TestClient, user: User, **overrides) -> dict:
    payload = {
        "customer_name": "Sharma Traders",
        "status": "Interested",
        "live_location": "Pune",
        "products": [LAPTOP],
    }
    payload.update(overrides)
    response = client.post("/api/entries", json=payload, headers=_auth(user))
    assert response.status_code == 201, response.text
    return response.json()


def test_create_entry_records_initial_history_and_notifies(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    body = _create(client, users["alice"], assigned_to=[str(users["bob"].id)], remarks="  ")

    assert body["created_by_id"] == str(users["alice"].id)
    assert body["assigned_to"] == [str(users["bob"].id)]
    assert body["close_type"] == ""
    assert len(body["history"]) == 1
    assert body["history"][0]["remarks"] == "Initial entry created"
    assert body["history"][0]["status"] == "Interested"

    assert _messages(db_session, users["alice"]) == ["New entry created: Sharma Traders"]
    assert _messages(db_session, users["bob"]) == ["Assigned to new entry: Sharma Traders"]
    assert audit.entries_for("tracker.entry", body["id"])[0]["action"] == "create"
    assert any(event["event_type"] == "tracker.entry.created" for event in events.published_events)


def test_create_entry_rejects_unknown_fields_and_missing_location(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    unknown = client.post(
        "/api/entries",
        json={"status": "Maybe", "live_location": "Pune", "priority": "high"},
        headers=_auth(users["alice"]),
    )
    assert unknown.status_code == 422

    missing = client.post("/api/entries", json={"status": "Maybe"}, headers=_auth(users["alice"]))
    assert missing.status_code == 422

    invalid_product = client.post(
        "/api/entries",
        json={"status": "Maybe", "live_location": "Pune", "products": [{"name": "Laptop", "quantity": 1}]},
        headers=_auth(users["alice"]),
    )
    assert invalid_product.status_code == 422
    assert db_session.scalar(select(Entry.id)) is None


def test_no_requirement_product_is_normalized(client: TestClient, users: dict[str, User]) -> None:
    body = _create(client, users["alice"], products=[{"name": "No Requirement", "quantity": 4}])

    assert body["products"] == [
        {
            "name": "No Requirement",
            "specification": "No specific requirement",
            "size": "Not Applicable",
            "quantity": 0,
        }
    ]


def test_missing_token_returns_error_envelope(client: TestClient) -> None:
    response = client.get("/api/entries", headers={"X-Correlation-Id": "corr-401"})

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "authentication_required"
    assert body["correlation_id"] == "corr-401"


def test_visibility_follows_the_hierarchy(client: TestClient, users: dict[str, User]) -> None:
    entry = _create(client, users["alice"])

    hidden = client.get(f"/api/entries/{entry['id']}", headers=_auth(users["bob"]))
    assert hidden.status_code == 403
    assert hidden.json()["code"] == "forbidden"
    assert client.get("/api/entries", headers=_auth(users["bob"])).json() == []

    admin_view = client.get(f"/api/entries/{entry['id']}", headers=_auth(users["asha"]))
    assert admin_view.status_code == 200

    root_list = client.get("/api/entries", headers=_auth(users["root"]))
    assert [item["id"] for item in root_list.json()] == [entry["id"]]

    missing = client.get(f"/api/entries/{uuid.uuid4()}", headers=_auth(users["alice"]))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"


def test_assignee_can_see_entry(client: TestClient, users: dict[str, User]) -> None:
    entry = _create(client, users["alice"], assigned_to=[str(users["bob"].id)])

    response = client.get("/api/entries", headers=_auth(users["bob"]))

    assert [item["id"] for item in response.json()] == [entry["id"]]


def test_closing_an_entry_appends_history_and_notifies_everyone(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    entry = _create(client, users["alice"], assigned_to=[str(users["bob"].id)])

    response = client.patch(
        f"/api/entries/{entry['id']}",
        json={"status": "Closed", "close_type": "Closed Won", "close_amount": 125000},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Closed"
    assert body["close_type"] == "Closed Won"
    assert len(body["history"]) == 2
    assert body["history"][1]["remarks"] == "Status updated"
    assert body["history"][1]["live_location"] == "Pune"

    update_message = 'Entry "Sharma Traders" has been updated.'
    assert update_message in _messages(db_session, users["alice"])
    assert update_message in _messages(db_session, users["bob"])


def test_identical_edit_does_not_touch_history(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    entry = _create(client, users["alice"])

    response = client.patch(
        f"/api/entries/{entry['id']}",
        json={"status": "Interested", "products": [LAPTOP]},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 200
    assert len(response.json()["history"]) == 1
    assert _messages(db_session, users["alice"]) == ["New entry created: Sharma Traders"]


def test_resending_an_offset_follow_up_date_is_not_a_change(client: TestClient, users: dict[str, User]) -> None:
    entry = _create(client, users["alice"], follow_up_date="2026-03-11T10:00:00+05:30")

    response = client.patch(
        f"/api/entries/{entry['id']}",
        json={"follow_up_date": "2026-03-11T10:00:00+05:30"},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 200
    assert len(response.json()["history"]) == 1


def test_reassignment_notifies_added_and_removed_users(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    entry = _create(client, users["alice"], assigned_to=[str(users["bob"].id)])

    response = client.patch(
        f"/api/entries/{entry['id']}",
        json={"assigned_to": [str(users["asha"].id)]},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 200
    assert response.json()["history"][-1]["remarks"] == "Assigned users updated"
    assert "Unassigned from entry: Sharma Traders" in _messages(db_session, users["bob"])
    assert "Assigned to updated entry: Sharma Traders" in _messages(db_session, users["asha"])


def test_edit_with_unknown_assignee_is_rejected(client: TestClient, users: dict[str, User]) -> None:
    entry = _create(client, users["alice"])

    response = client.patch(
        f"/api/entries/{entry['id']}",
        json={"assigned_to": [str(uuid.uuid4())]},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "validation_failed"


def test_own_phone_number_is_rejected(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RESERVED_PHONE_NUMBERS", '{"alice": "98765-43210"}')
    get_settings.cache_clear()

    response = client.post(
        "/api/entries",
        json={"status": "Maybe", "live_location": "Pune", "mobile_number": "9876543210"},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 422
    assert response.json()["code"] == "own_phone_number"
    assert response.json()["message"] == OWN_NUMBER_MESSAGE
    assert db_session.scalar(select(Entry.id)) is None

    allowed = client.post(
        "/api/entries",
        json={"status": "Maybe", "live_location": "Pune", "mobile_number": "9876543210"},
        headers=_auth(users["bob"]),
    )
    assert allowed.status_code == 201


def test_bulk_create_inserts_valid_rows_and_reports_the_rest(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    response = client.post(
        "/api/entries/bulk",
        json={
            "entries": [
                {
                    "customer_name": "Bulk One",
                    "status": "",
                    "assigned_to": [str(users["bob"].id), str(uuid.uuid4())],
                    "created_at": "2026-01-15T09:30:00Z",
                    "legacy_column": "ignored",
                },
                {"customer_name": "Bulk Two", "mobile_number": "123"},
            ]
        },
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["inserted"] == 1
    assert [error["index"] for error in body["errors"]] == [1]
    created = body["entries"][0]
    assert created["status"] == "Not Found"
    assert created["assigned_to"] == [str(users["bob"].id)]
    assert created["history"][0]["remarks"] == "Bulk upload entry"
    assert created["history"][0]["timestamp"].startswith("2026-01-15T09:30:00")

    assert _messages(db_session, users["alice"]) == ["Bulk entry created: Bulk One"]
    assert _messages(db_session, users["bob"]) == ["Assigned to bulk entry: Bulk One"]


def test_bulk_create_without_valid_rows_fails(client: TestClient, users: dict[str, User]) -> None:
    response = client.post(
        "/api/entries/bulk",
        json={"entries": [{"mobile_number": "12"}]},
        headers=_auth(users["alice"]),
    )

    assert response.status_code == 422
    assert response.json()["details"]["errors"][0]["index"] == 0


def test_delete_entry_notifies_and_removes(
    client: TestClient,
    db_session: Session,
    users: dict[str, User],
) -> None:
    entry = _create(client, users["alice"], assigned_to=[str(users["bob"].id)])

    forbidden = client.delete(f"/api/entries/{entry['id']}", headers=_auth(users["bob"]))
    assert forbidden.status_code == 403

    response = client.delete(f"/api/entries/{entry['id']}", headers=_auth(users["alice"]))
    assert response.status_code == 204

    assert client.get(f"/api/entries/{entry['id']}", headers=_auth(users["alice"])).status_code == 404
    assert "Entry deleted: Sharma Traders" in _messages(db_session, users["alice"])
    assert "Entry deleted: Sharma Traders" in _messages(db_session, users["bob"])
    assert audit.entries_for("tracker.entry", entry["id"])[-1]["action"] == "delete"


def test_list_filters_by_status_and_search(client: TestClient, users: dict[str, User]) -> None:
    _create(client, users["alice"], customer_name="Gupta Stores", status="Maybe")
    _create(client, users["alice"], customer_name="Mehta Agencies", status="Interested")

    by_status = client.get("/api/entries", params={"status": "Maybe"}, headers=_auth(users["alice"]))
    assert [item["customer_name"] for item in by_status.json()] == ["Gupta Stores"]

    by_search = client.get("/api/entries", params={"q": "mehta"}, headers=_auth(users["alice"]))
    assert [item["customer_name"] for item in by_search.json()] == ["Mehta Agencies"]
