from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.database import Base
from app.core.errors import NotFoundError, ValidationFailure
from app.identity.models import User, UserAdminLink
from app.identity.schemas import UserCreate
from app.identity.service import hierarchy_service
from app.platform.security import ActorContext, AuthorizationError, resolve_scope


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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


def _user(session: Session, username: str, role: str = "others") -> User:
    user = User(username=username, email=f"{username}@example.com", role=role)
    session.add(user)
    session.commit()
    return user


def _actor(user: User) -> ActorContext:
    return ActorContext(user_id=user.id, role=user.role, username=user.username, correlation_id="corr-hierarchy")


def _admin_ids(session: Session, user: User) -> set:
    return set(session.scalars(select(UserAdminLink.admin_id).where(UserAdminLink.user_id == user.id)).all())


def test_admin_assigns_user_to_itself(db_session: Session) -> None:
    admin = _user(db_session, "asha", "admin")
    member = _user(db_session, "manoj")

    mutation = hierarchy_service.assign(db_session, _actor(admin), member.id)

    assert mutation.result.admin_id == admin.id
    assert mutation.result.user.assigned_admin_ids == [admin.id]
    assert [(intent.user_id, intent.message) for intent in mutation.intents] == [
        (member.id, "Assigned to admin: asha"),
    ]
    link = db_session.scalar(select(UserAdminLink).where(UserAdminLink.user_id == member.id))
    assert link.established_by_role == "admin"
    assert audit.entries_for("identity.user", str(member.id))[-1]["action"] == "assign"
    assert events.published_events[-1]["event_type"] == "identity.user.assign"


def test_assigning_an_admin_carries_the_new_admin_down_its_subtree(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_b = _user(db_session, "admin-b", "admin")
    member_c = _user(db_session, "member-c")
    hierarchy_service.assign(db_session, _actor(admin_b), member_c.id)

    mutation = hierarchy_service.assign(db_session, _actor(root), admin_b.id, admin_a.id)

    assert mutation.result.propagated_to == [member_c.id]
    assert _admin_ids(db_session, member_c) == {admin_a.id, admin_b.id}
    assert _admin_ids(db_session, admin_b) == {admin_a.id}
    messages = {(intent.user_id, intent.message) for intent in mutation.intents}
    assert (member_c.id, "Assigned to admin: admin-a via admin admin-b") in messages
    assert (admin_b.id, "Assigned to admin: admin-a") in messages

    scope = resolve_scope(db_session, _actor(admin_a))
    assert {admin_a.id, admin_b.id, member_c.id} <= scope.user_ids


def test_admin_unassign_strips_admin_from_subtree(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_b = _user(db_session, "admin-b", "admin")
    member_c = _user(db_session, "member-c")
    hierarchy_service.assign(db_session, _actor(admin_b), member_c.id)
    hierarchy_service.assign(db_session, _actor(root), admin_b.id, admin_a.id)

    mutation = hierarchy_service.unassign(db_session, _actor(root), admin_b.id, admin_a.id)

    assert _admin_ids(db_session, admin_b) == set()
    assert _admin_ids(db_session, member_c) == {admin_b.id}
    assert mutation.result.removed_links == 2
    assert {intent.user_id for intent in mutation.intents} == {admin_b.id, member_c.id}
    assert all(intent.message == "Unassigned from admin: admin-a" for intent in mutation.intents)


def test_superadmin_force_unassign_removes_every_link(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_x = _user(db_session, "admin-x", "admin")
    admin_b = _user(db_session, "admin-b", "admin")
    member_c = _user(db_session, "member-c")
    hierarchy_service.assign(db_session, _actor(admin_b), member_c.id)
    hierarchy_service.assign(db_session, _actor(root), admin_b.id, admin_a.id)
    hierarchy_service.assign(db_session, _actor(root), admin_b.id, admin_x.id)

    mutation = hierarchy_service.unassign(db_session, _actor(root), admin_b.id)

    assert mutation.result.admin_id is None
    assert _admin_ids(db_session, admin_b) == set()
    # the admin itself leaves its reports; inherited admins stay
    assert _admin_ids(db_session, member_c) == {admin_a.id, admin_x.id}
    assert all(intent.message == "Unassigned from admin: root" for intent in mutation.intents)


def test_admin_cannot_unassign_user_placed_by_superadmin_elsewhere(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_x = _user(db_session, "admin-x", "admin")
    member = _user(db_session, "member")
    hierarchy_service.assign(db_session, _actor(root), member.id, admin_a.id)

    with pytest.raises(AuthorizationError):
        hierarchy_service.unassign(db_session, _actor(admin_x), member.id)

    assert _admin_ids(db_session, member) == {admin_a.id}
    denials = audit.entries_for("identity.user", str(admin_x.id), action="authz_denied")
    assert denials[-1]["after"]["operation"] == "unassign"


def test_admin_cannot_unassign_user_outside_its_scope(db_session: Session) -> None:
    admin_a = _user(db_session, "admin-a", "admin")
    admin_b = _user(db_session, "admin-b", "admin")
    admin_u = _user(db_session, "admin-u", "admin")
    report = _user(db_session, "report")
    hierarchy_service.assign(db_session, _actor(admin_b), admin_u.id)
    hierarchy_service.assign(db_session, _actor(admin_u), report.id)
    hierarchy_service.assign(db_session, _actor(admin_a), report.id)
    assert admin_u.id not in resolve_scope(db_session, _actor(admin_a)).user_ids

    with pytest.raises(AuthorizationError):
        hierarchy_service.unassign(db_session, _actor(admin_a), admin_u.id)

    assert _admin_ids(db_session, admin_u) == {admin_b.id}
    assert _admin_ids(db_session, report) == {admin_u.id, admin_a.id}
    denials = audit.entries_for("identity.user", str(admin_a.id), action="authz_denied")
    assert denials[-1]["after"]["reason"] == "User is outside your team"


def test_unassign_notifies_only_reports_that_lost_a_link(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_b = _user(db_session, "admin-b", "admin")
    linked = _user(db_session, "linked")
    late = _user(db_session, "late")
    hierarchy_service.assign(db_session, _actor(admin_b), linked.id)
    hierarchy_service.assign(db_session, _actor(root), admin_b.id, admin_a.id)
    # joins after the propagation, so never carried admin-a
    hierarchy_service.assign(db_session, _actor(admin_b), late.id)

    mutation = hierarchy_service.unassign(db_session, _actor(root), admin_b.id, admin_a.id)

    assert mutation.result.removed_links == 2
    assert mutation.result.propagated_to == [linked.id]
    assert {intent.user_id for intent in mutation.intents} == {admin_b.id, linked.id}


def test_admin_can_unassign_own_member_placed_by_superadmin(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    member = _user(db_session, "member")
    hierarchy_service.assign(db_session, _actor(root), member.id, admin_a.id)

    hierarchy_service.unassign(db_session, _actor(admin_a), member.id)

    assert _admin_ids(db_session, member) == set()


def test_admin_cannot_name_another_admin(db_session: Session) -> None:
    admin_a = _user(db_session, "admin-a", "admin")
    admin_x = _user(db_session, "admin-x", "admin")
    member = _user(db_session, "member")

    with pytest.raises(AuthorizationError):
        hierarchy_service.assign(db_session, _actor(admin_a), member.id, admin_x.id)


def test_others_cannot_manage_team(db_session: Session) -> None:
    member = _user(db_session, "member")
    other = _user(db_session, "other")

    with pytest.raises(AuthorizationError):
        hierarchy_service.assign(db_session, _actor(member), other.id)


def test_assignment_guards(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin = _user(db_session, "admin-a", "admin")
    member = _user(db_session, "member")

    with pytest.raises(ValidationFailure) as superadmin_target:
        hierarchy_service.assign(db_session, _actor(admin), root.id)
    assert superadmin_target.value.code == "superadmin_target"

    with pytest.raises(ValidationFailure) as missing_admin:
        hierarchy_service.assign(db_session, _actor(root), member.id)
    assert missing_admin.value.code == "admin_required"

    with pytest.raises(ValidationFailure) as not_admin:
        hierarchy_service.assign(db_session, _actor(root), admin.id, member.id)
    assert not_admin.value.code == "not_an_admin"

    with pytest.raises(ValidationFailure) as self_assignment:
        hierarchy_service.assign(db_session, _actor(admin), admin.id)
    assert self_assignment.value.code == "self_assignment"

    hierarchy_service.assign(db_session, _actor(admin), member.id)
    with pytest.raises(ValidationFailure) as duplicate:
        hierarchy_service.assign(db_session, _actor(admin), member.id)
    assert duplicate.value.code == "already_assigned"


def test_unassign_of_unlinked_user_fails(db_session: Session) -> None:
    admin = _user(db_session, "admin-a", "admin")
    member = _user(db_session, "member")

    with pytest.raises(ValidationFailure) as exc:
        hierarchy_service.unassign(db_session, _actor(admin), member.id)
    assert exc.value.code == "not_assigned"


def test_register_user_requires_superadmin_and_unique_username(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin = _user(db_session, "admin-a", "admin")

    created = hierarchy_service.register_user(
        db_session, _actor(root), UserCreate(username=" priya ", email="priya@example.com", role="admin")
    )
    assert created.username == "priya"
    assert created.role == "admin"

    with pytest.raises(ValidationFailure) as duplicate:
        hierarchy_service.register_user(
            db_session, _actor(root), UserCreate(username="priya", email="other@example.com")
        )
    assert duplicate.value.code == "username_taken"

    with pytest.raises(AuthorizationError):
        hierarchy_service.register_user(db_session, _actor(admin), UserCreate(username="x", email="x@example.com"))


def test_team_views_per_role(db_session: Session) -> None:
    root = _user(db_session, "root", "superadmin")
    admin_a = _user(db_session, "admin-a", "admin")
    admin_x = _user(db_session, "admin-x", "admin")
    mine = _user(db_session, "mine")
    theirs = _user(db_session, "theirs")
    loose = _user(db_session, "loose")
    hierarchy_service.assign(db_session, _actor(admin_a), mine.id)
    hierarchy_service.assign(db_session, _actor(admin_x), theirs.id)

    admin_view = {row.username for row in hierarchy_service.list_team(db_session, _actor(admin_a))}
    assert admin_view == {"admin-x", "mine", "loose"}

    member_view = hierarchy_service.list_team(db_session, _actor(mine))
    assert [row.username for row in member_view] == ["admin-a"]

    loose_view = hierarchy_service.list_team(db_session, _actor(loose))
    assert [(row.username, row.assigned_admin_usernames) for row in loose_view] == [("loose", "Unassigned")]

    root_view = {row.username for row in hierarchy_service.list_team(db_session, _actor(root))}
    assert root_view == {"admin-a", "admin-x", "mine", "theirs", "loose"}


def test_get_current_user_requires_a_stored_user(db_session: Session) -> None:
    ghost = ActorContext(user_id=uuid.uuid4(), role="others")

    with pytest.raises(NotFoundError):
        hierarchy_service.get_current_user(db_session, ghost)
