from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import ColumnElement, or_, select, true
from sqlalchemy.orm import Session

from app.core.database import storage_guard
from app.identity.models import User, UserAdminLink
from app.platform.security.context import ROLE_ADMIN, ActorContext
from app.tracker.models import Entry, EntryAssignee


@dataclass(frozen=True)
class VisibilityScope:
    """The set of users an actor may see, and the entries that follows from it.

    ``unrestricted`` is set for superadmins; ``user_ids`` is then empty and
    every membership check passes.
    """

    actor_id: uuid.UUID
    unrestricted: bool = False
    user_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    def includes_user(self, user_id: uuid.UUID | None) -> bool:
        if self.unrestricted:
            return True
        return user_id is not None and user_id in self.user_ids

    def can_see_entry(self, created_by: uuid.UUID, assigned_to: Iterable[uuid.UUID]) -> bool:
        if self.unrestricted:
            return True
        if created_by in self.user_ids:
            return True
        return any(user_id in self.user_ids for user_id in assigned_to)

    def entry_filter(self) -> ColumnElement[bool]:
        if self.unrestricted:
            return true()
        members = list(self.user_ids)
        assigned = select(EntryAssignee.entry_id).where(EntryAssignee.user_id.in_(members))
        return or_(Entry.created_by_id.in_(members), Entry.id.in_(assigned))


def _direct_reports(session: Session, admin_ids: Iterable[uuid.UUID]) -> list[tuple[uuid.UUID, str]]:
    ids = list(admin_ids)
    if not ids:
        return []
    rows = session.execute(
        select(User.id, User.role)
        .join(UserAdminLink, UserAdminLink.user_id == User.id)
        .where(UserAdminLink.admin_id.in_(ids))
    ).all()
    return [(row[0], row[1]) for row in rows]


def resolve_scope(session: Session, actor: ActorContext) -> VisibilityScope:
    """Walk the admin hierarchy two levels down from the actor.

    An admin sees itself, its direct reports and the direct reports of those
    reports that are admins themselves. Everyone else sees only themselves.
    """

    if actor.is_superadmin:
        return VisibilityScope(actor_id=actor.user_id, unrestricted=True)
    if actor.role != ROLE_ADMIN:
        return VisibilityScope(actor_id=actor.user_id, user_ids=frozenset({actor.user_id}))

    members: set[uuid.UUID] = {actor.user_id}
    with storage_guard(session, "Could not resolve the team hierarchy"):
        first_hop = _direct_reports(session, [actor.user_id])
        members.update(user_id for user_id, _ in first_hop)
        nested_admins = {user_id for user_id, role in first_hop if role == ROLE_ADMIN and user_id != actor.user_id}
        members.update(user_id for user_id, _ in _direct_reports(session, nested_admins))
    return VisibilityScope(actor_id=actor.user_id, user_ids=frozenset(members))
