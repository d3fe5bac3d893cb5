from app.identity.models import User, UserAdminLink
from app.notifications.models import Notification
from app.tracker.models import Entry, EntryAssignee, EntryHistory

__all__ = [
	"Entry",
	"EntryAssignee",
	"EntryHistory",
	"Notification",
	"User",
	"UserAdminLink",
]
