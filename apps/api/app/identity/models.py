from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "tracker_user"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="others", server_default="others")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    admin_links: Mapped[list[UserAdminLink]] = relationship(
        "UserAdminLink",
        foreign_keys="UserAdminLink.user_id",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def assigned_admin_ids(self) -> list[uuid.UUID]:
        return [link.admin_id for link in self.admin_links]


class UserAdminLink(Base):
    """One edge of the reporting graph: ``user`` reports to ``admin``."""

    __tablename__ = "tracker_user_admin_link"
    __table_args__ = (
        UniqueConstraint("user_id", "admin_id", name="uq_tracker_user_admin_link_pair"),
        Index("ix_tracker_user_admin_link_admin_id", "admin_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    established_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    established_by_role: Mapped[str] = mapped_column(String(16), nullable=False, default="admin")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[User] = relationship("User", foreign_keys=[user_id], back_populates="admin_links")
    admin: Mapped[User] = relationship("User", foreign_keys=[admin_id])
