"""
Session handling: bearer tokens decoded into an explicit Actor
"""
import datetime
from dataclasses import dataclass
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import get_settings
from exceptions import NotAuthorized
from models import Role

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of one request"""

    id: int
    role: Role

    @property
    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT


def create_access_token(user_id: int, role: str, expires_in: Optional[datetime.timedelta] = None) -> str:
    """Issue a signed token for a user. Used by the seeding script and tests."""
    settings = get_settings()
    if expires_in is None:
        expires_in = datetime.timedelta(hours=settings.token_expiry_hours)

    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "exp": datetime.datetime.now(datetime.timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.token_algorithm)


def decode_access_token(token: str) -> Actor:
    """Decode and validate a token into an Actor, or raise HTTP 401"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
        return Actor(id=int(payload["sub"]), role=Role(payload["role"]))
    except jwt.ExpiredSignatureError:
        logger.info("Expired token presented")
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        logger.info("Invalid token presented")
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """FastAPI dependency resolving the request's Actor"""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_access_token(credentials.credentials)


def require_teacher(actor: Actor) -> None:
    if not actor.is_teacher:
        raise NotAuthorized()


def require_student(actor: Actor) -> None:
    if not actor.is_student:
        raise NotAuthorized()


def sanitize_text_input(text: Optional[str]) -> str:
    """Trim and collapse whitespace in single-line user input"""
    if not text:
        return ""

    return ' '.join(text.split())
