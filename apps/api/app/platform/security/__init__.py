from app.platform.security.context import ROLE_ADMIN, ROLE_OTHERS, ROLE_SUPERADMIN, VALID_ROLES, ActorContext
from app.platform.security.errors import AuthorizationError
from app.platform.security.locks import LockRegistry, hierarchy_locks
from app.platform.security.scope import VisibilityScope, resolve_scope

__all__ = [
    "ActorContext",
    "AuthorizationError",
    "LockRegistry",
    "ROLE_ADMIN",
    "ROLE_OTHERS",
    "ROLE_SUPERADMIN",
    "VALID_ROLES",
    "VisibilityScope",
    "hierarchy_locks",
    "resolve_scope",
]
