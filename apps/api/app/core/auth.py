from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    role: str
    username: str


ANONYMOUS = AuthUser(sub="anonymous", role="guest", username="anonymous")


def decode_token(token: str) -> AuthUser:
    if not token:
        return ANONYMOUS

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return ANONYMOUS

    subject = payload.get("sub") or payload.get("id")
    if subject is None:
        return ANONYMOUS
    return AuthUser(
        sub=str(subject),
        role=str(payload.get("role", "others")),
        username=str(payload.get("username", "")),
    )


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


def resolve_actor(request: Request) -> AuthUser:
    context = getattr(request.state, "context", None)
    actor = getattr(context, "actor", None)
    if isinstance(actor, AuthUser):
        return actor
    return decode_token(bearer_token(request))


async def get_current_user(request: Request) -> AuthUser:
    return resolve_actor(request)
