from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


ENTRY_STATUSES = ("Not Found", "Maybe", "Interested", "Not Interested", "Closed")
CLOSE_TYPES = ("Closed Won", "Closed Lost", "")
PERSON_MET_FIELDS = ("first_person_meet", "second_person_meet", "third_person_meet", "fourth_person_meet")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored value is UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Entry(Base):
    __tablename__ = "tracker_entry"
    __table_args__ = (
        Index("ix_tracker_entry_created_by_id", "created_by_id"),
        Index("ix_tracker_entry_status", "status"),
        Index("ix_tracker_entry_follow_up_date", "follow_up_date"),
        Index("ix_tracker_entry_expected_closing_date", "expected_closing_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(10), nullable=True)
    contact_person: Mapped[str | None] = mapped_column(Text, nullable=True)
    organization: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_value: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    close_amount: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    close_type: Mapped[str] = mapped_column(String(16), nullable=False, default="", server_default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Not Found", server_default="Not Found")
    next_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    follow_up_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expected_closing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    first_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    first_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    second_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    third_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    fourth_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    live_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    products: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_user.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    assignees: Mapped[list[EntryAssignee]] = relationship(
        "EntryAssignee",
        back_populates="entry",
        order_by="EntryAssignee.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    history: Mapped[list[EntryHistory]] = relationship(
        "EntryHistory",
        back_populates="entry",
        order_by="EntryHistory.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def assigned_to(self) -> list[uuid.UUID]:
        return [assignee.user_id for assignee in self.assignees]

    def set_assignees(self, user_ids: list[uuid.UUID]) -> None:
        """Replace the assignee set, keeping rows for users that stay."""

        current = {assignee.user_id: assignee for assignee in self.assignees}
        self.assignees = [current.get(user_id) or EntryAssignee(user_id=user_id) for user_id in user_ids]
        self.assignees.reorder()


class EntryAssignee(Base):
    __tablename__ = "tracker_entry_assignee"
    __table_args__ = (
        UniqueConstraint("entry_id", "user_id", name="uq_tracker_entry_assignee_pair"),
        Index("ix_tracker_entry_assignee_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_entry.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry: Mapped[Entry] = relationship("Entry", back_populates="assignees")


class EntryHistory(Base):
    """One immutable snapshot of an entry's tracked fields."""

    __tablename__ = "tracker_entry_history"
    __table_args__ = (Index("ix_tracker_entry_history_entry_id", "entry_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tracker_entry.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    live_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_value: Mapped[float | None] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    products: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    assigned_to: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    follow_up_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    first_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    second_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    third_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    fourth_person_meet: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entry: Mapped[Entry] = relationship("Entry", back_populates="history")
