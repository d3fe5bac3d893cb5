from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.identity.models import User, UserAdminLink


class HierarchyRepository:
    """Queries over users and the ``user -> admin`` adjacency table."""

    def get_user(self, session: Session, user_id: uuid.UUID) -> User | None:
        return session.get(User, user_id)

    def get_by_username(self, session: Session, username: str) -> User | None:
        return session.scalar(select(User).where(User.username == username))

    def existing_ids(self, session: Session, user_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        ids = list(user_ids)
        if not ids:
            return set()
        return set(session.scalars(select(User.id).where(User.id.in_(ids))).all())

    def list_users(self, session: Session, user_ids: Iterable[uuid.UUID] | None = None) -> list[User]:
        stmt = select(User).order_by(User.username)
        if user_ids is not None:
            stmt = stmt.where(User.id.in_(list(user_ids)))
        return list(session.scalars(stmt).all())

    def usernames(self, session: Session, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        ids = list(user_ids)
        if not ids:
            return {}
        rows = session.execute(select(User.id, User.username).where(User.id.in_(ids))).all()
        return {row[0]: row[1] for row in rows}

    def get_link(self, session: Session, user_id: uuid.UUID, admin_id: uuid.UUID) -> UserAdminLink | None:
        return session.scalar(
            select(UserAdminLink).where(UserAdminLink.user_id == user_id, UserAdminLink.admin_id == admin_id)
        )

    def links_for_user(self, session: Session, user_id: uuid.UUID) -> list[UserAdminLink]:
        return list(
            session.scalars(
                select(UserAdminLink).where(UserAdminLink.user_id == user_id).order_by(UserAdminLink.created_at)
            ).all()
        )

    def report_ids(self, session: Session, admin_id: uuid.UUID) -> list[uuid.UUID]:
        return list(session.scalars(select(UserAdminLink.user_id).where(UserAdminLink.admin_id == admin_id)).all())

    def add_link(
        self,
        session: Session,
        *,
        user_id: uuid.UUID,
        admin_id: uuid.UUID,
        established_by_id: uuid.UUID,
        established_by_role: str,
    ) -> UserAdminLink:
        link = UserAdminLink(
            user_id=user_id,
            admin_id=admin_id,
            established_by_id=established_by_id,
            established_by_role=established_by_role,
        )
        session.add(link)
        return link

    def remove_link(self, session: Session, user_id: uuid.UUID, admin_id: uuid.UUID) -> int:
        result = session.execute(
            delete(UserAdminLink).where(UserAdminLink.user_id == user_id, UserAdminLink.admin_id == admin_id)
        )
        return int(result.rowcount or 0)

    def remove_all_links(self, session: Session, user_id: uuid.UUID) -> int:
        result = session.execute(delete(UserAdminLink).where(UserAdminLink.user_id == user_id))
        return int(result.rowcount or 0)

    def linked_user_ids(self, session: Session) -> set[uuid.UUID]:
        return set(session.scalars(select(UserAdminLink.user_id).distinct()).all())
