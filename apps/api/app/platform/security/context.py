from __future__ import annotations

import uuid
from dataclasses import dataclass

ROLE_OTHERS = "others"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"
VALID_ROLES = (ROLE_OTHERS, ROLE_ADMIN, ROLE_SUPERADMIN)


@dataclass(slots=True)
class ActorContext:
    """The authenticated caller as seen by services."""

    user_id: uuid.UUID
    role: str = ROLE_OTHERS
    username: str = ""
    correlation_id: str | None = None

    @property
    def is_superadmin(self) -> bool:
        return self.role == ROLE_SUPERADMIN

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
