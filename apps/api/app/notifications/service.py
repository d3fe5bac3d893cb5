from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DependencyFailure, ValidationFailure
from app.identity.models import User
from app.metrics import observe_notification
from app.notifications.channel import LiveChannel
from app.notifications.models import Notification
from app.notifications.schemas import NotificationEntryRef, NotificationPage, NotificationRead, Pagination
from app.platform.security import ActorContext
from app.tracker.models import Entry


logger = logging.getLogger("app.notifications")

NEW_NOTIFICATION_EVENT = "newNotification"
NOTIFICATIONS_CLEARED_EVENT = "notificationsCleared"


def _coerce_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


@dataclass
class NotificationService:
    """Persists notifications and pushes them to connected users.

    ``notify`` is the fan-out primitive used after a mutation has committed.
    It logs and swallows every failure so a notification problem can never
    surface to the caller of the original mutation.
    """

    channel: LiveChannel | None = None

    def set_channel(self, channel: LiveChannel | None) -> None:
        self.channel = channel

    def notify(
        self,
        session: Session,
        user_id: uuid.UUID | str,
        message: str,
        entry_id: uuid.UUID | str | None = None,
    ) -> NotificationRead | None:
        target = _coerce_uuid(user_id)
        if target is None:
            logger.warning("notification.invalid_user", extra={"user_id": str(user_id)})
            observe_notification("invalid_user")
            return None

        entry_ref = _coerce_uuid(entry_id) if entry_id is not None else None
        try:
            if session.get(User, target) is None:
                logger.warning("notification.unknown_user", extra={"user_id": str(target)})
                observe_notification("invalid_user")
                return None
            row = Notification(user_id=target, message=message, entry_id=entry_ref, read=False)
            session.add(row)
            session.commit()
            session.refresh(row)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "notification.store_failed",
                extra={"user_id": str(target), "error": str(exc)[:500]},
            )
            observe_notification("store_failed")
            return None

        notification = self._to_read(row, NotificationEntryRef(id=entry_ref) if entry_ref else None)
        delivered = self._push(target, NEW_NOTIFICATION_EVENT, notification.model_dump(mode="json"))
        observe_notification("delivered" if delivered else "persisted")
        logger.info(
            "notification.sent",
            extra={"user_id": str(target), "entry_id": str(entry_ref) if entry_ref else None, "sent": delivered},
        )
        return notification

    def list_notifications(
        self,
        session: Session,
        actor: ActorContext,
        *,
        page: int = 1,
        limit: int = 10,
        read_status: str | None = None,
    ) -> NotificationPage:
        if page < 1:
            raise ValidationFailure("Invalid page number", details={"page": page})
        if limit < 1 or limit > 100:
            raise ValidationFailure("Limit must be between 1 and 100", details={"limit": limit})
        if read_status not in (None, "read", "unread"):
            raise ValidationFailure("read_status must be 'read' or 'unread'", details={"read_status": read_status})

        conditions = [Notification.user_id == actor.user_id]
        if read_status is not None:
            conditions.append(Notification.read.is_(read_status == "read"))

        total = session.scalar(select(func.count()).select_from(Notification).where(*conditions)) or 0
        rows = session.scalars(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        entry_ids = {row.entry_id for row in rows if row.entry_id is not None}
        names: dict[uuid.UUID, str | None] = {}
        if entry_ids:
            names = {
                item[0]: item[1]
                for item in session.execute(select(Entry.id, Entry.customer_name).where(Entry.id.in_(entry_ids))).all()
            }

        items = [
            self._to_read(
                row,
                NotificationEntryRef(id=row.entry_id, customer_name=names[row.entry_id])
                if row.entry_id in names
                else None,
            )
            for row in rows
        ]
        return NotificationPage(
            items=items,
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total / limit),
                total_records=total,
                limit=limit,
            ),
        )

    def mark_read(self, session: Session, actor: ActorContext, ids: list[uuid.UUID]) -> int:
        if not ids:
            raise ValidationFailure("Notification IDs required")
        try:
            result = session.execute(
                update(Notification)
                .where(Notification.id.in_(ids), Notification.user_id == actor.user_id)
                .values(read=True)
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise DependencyFailure("Could not update notifications") from exc
        return int(result.rowcount or 0)

    def clear(self, session: Session, actor: ActorContext) -> int:
        try:
            result = session.execute(delete(Notification).where(Notification.user_id == actor.user_id))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise DependencyFailure("Could not clear notifications") from exc

        self._push(actor.user_id, NOTIFICATIONS_CLEARED_EVENT, {"user_id": str(actor.user_id)})
        return int(result.rowcount or 0)

    def _push(self, user_id: uuid.UUID, event: str, payload: dict[str, Any]) -> bool:
        channel = self.channel
        if channel is None:
            return False
        try:
            return bool(channel.emit(user_id, event, payload))
        except Exception as exc:
            logger.warning(
                "notification.push_failed",
                extra={"user_id": str(user_id), "event_name": event, "error": str(exc)[:500]},
            )
            return False

    def _to_read(self, row: Notification, entry: NotificationEntryRef | None) -> NotificationRead:
        return NotificationRead(
            id=row.id,
            user_id=row.user_id,
            message=row.message,
            entry=entry,
            read=row.read,
            created_at=row.created_at,
        )


notification_service = NotificationService()
