"""Daily sweep for entries whose follow-up or expected closing falls tomorrow."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import get_settings
from app.metrics import observe_reminder_sweep
from app.notifications.dispatcher import NotificationDispatcher
from app.notifications.intents import NotificationIntent
from app.otel import traced
from app.tracker.models import Entry, as_utc


logger = logging.getLogger("app.notifications.reminders")


def tomorrow_window(now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return tomorrow's local calendar day as a half-open UTC range."""

    local_now = as_utc(now).astimezone(tz)
    start_local = datetime.combine(local_now.date() + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    end_local = datetime.combine(local_now.date() + timedelta(days=2), datetime.min.time(), tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def _within(value: datetime | None, start: datetime, end: datetime) -> bool:
    value = as_utc(value)
    return value is not None and start <= value < end


def collect_reminders(session: Session, *, now: datetime | None = None, tz_name: str | None = None) -> list[NotificationIntent]:
    tz = ZoneInfo(tz_name or get_settings().reminder_timezone)
    start, end = tomorrow_window(now or datetime.now(timezone.utc), tz)

    entries = session.scalars(
        select(Entry)
        .where(
            or_(
                and_(Entry.follow_up_date >= start, Entry.follow_up_date < end),
                and_(Entry.expected_closing_date >= start, Entry.expected_closing_date < end),
            )
        )
        .options(selectinload(Entry.assignees))
        .order_by(Entry.created_at)
    ).all()

    intents: list[NotificationIntent] = []
    for entry in entries:
        name = entry.customer_name or "Unknown"
        if _within(entry.follow_up_date, start, end):
            message = f"Follow-up due tomorrow for {name}"
        elif _within(entry.expected_closing_date, start, end):
            message = f"Expected closing date tomorrow for {name}"
        else:
            continue
        for user_id in dict.fromkeys([entry.created_by_id, *entry.assigned_to]):
            intents.append(NotificationIntent(user_id=user_id, message=message, entry_id=entry.id))
    return intents


def run_reminder_sweep(dispatcher: NotificationDispatcher, *, now: datetime | None = None) -> int:
    started = time.perf_counter()
    status = "ok"
    try:
        with traced("app.notifications", "reminders.sweep"):
            with dispatcher.session() as session:
                intents = collect_reminders(session, now=now)
            sent = dispatcher.dispatch(intents)
    except Exception:
        status = "error"
        logger.exception("reminders.sweep_failed")
        raise
    finally:
        observe_reminder_sweep(status, time.perf_counter() - started)

    logger.info("reminders.sweep_completed", extra={"recipients": len(intents), "sent": sent})
    return sent
