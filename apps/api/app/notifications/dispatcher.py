from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager

from sqlalchemy.orm import Session

from app.core.database import session_scope
from app.metrics import observe_notification
from app.notifications.intents import NotificationIntent
from app.notifications.service import NotificationService, notification_service


logger = logging.getLogger("app.notifications.dispatcher")

SessionScope = Callable[[], AbstractContextManager[Session]]


class NotificationDispatcher:
    """Fans intents out through the notification service in its own session.

    Runs after the originating transaction has committed; nothing raised here
    reaches the mutation that produced the intents.
    """

    def __init__(self, service: NotificationService | None = None, session_factory: SessionScope | None = None) -> None:
        self.service = service or notification_service
        self._session_factory = session_factory or session_scope

    def set_session_factory(self, session_factory: SessionScope) -> None:
        self._session_factory = session_factory

    def session(self) -> AbstractContextManager[Session]:
        return self._session_factory()

    def dispatch(self, intents: Iterable[NotificationIntent]) -> int:
        pending = list(intents)
        if not pending:
            return 0

        sent = 0
        try:
            with self.session() as session:
                for intent in pending:
                    if self.service.notify(session, intent.user_id, intent.message, intent.entry_id) is not None:
                        sent += 1
        except Exception as exc:
            observe_notification("dispatch_failed")
            logger.exception("notification.dispatch_failed", extra={"error": str(exc)[:500]})

        logger.info("notification.dispatched", extra={"recipients": len(pending), "sent": sent})
        return sent


dispatcher = NotificationDispatcher()
