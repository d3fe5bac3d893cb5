from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings
from app.notifications.dispatcher import dispatcher
from app.notifications.reminders import run_reminder_sweep

settings = get_settings()

celery_app = Celery("salestrack_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.timezone = settings.reminder_timezone
celery_app.conf.beat_schedule = {
    "follow-up-reminders": {
        "task": "app.tasks.follow_up_reminders",
        "schedule": crontab(hour=settings.reminder_hour, minute=settings.reminder_minute),
    },
}


@celery_app.task(name="app.tasks.follow_up_reminders")
def follow_up_reminders_task() -> int:
    return run_reminder_sweep(dispatcher)
