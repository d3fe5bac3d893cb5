from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    """A notification a mutation wants sent once its transaction has committed."""

    user_id: uuid.UUID
    message: str
    entry_id: uuid.UUID | None = None
